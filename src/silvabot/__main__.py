"""Entry point for `python -m silvabot` / `silvabot`.

Subcommands:
    silvabot                    Run the bot (default)
    silvabot auth [--phone N]   Pair with WhatsApp interactively
    silvabot session export     Print a session token for the stored credentials
    silvabot plugins            Load the plugin directory and list what it provides
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from pydantic import ValidationError

from silvabot.config import Settings, get_settings
from silvabot.errors import DuplicateCommandError, PluginDirectoryError
from silvabot.logger import logger


def _settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as exc:
        logger.error("Invalid configuration", err=str(exc))
        sys.exit(1)


def _run() -> None:
    from silvabot.app import SilvaApp

    app = SilvaApp(_settings())
    try:
        code = asyncio.run(app.run())
    except (PluginDirectoryError, DuplicateCommandError) as exc:
        logger.error("Startup failed", err=str(exc))
        sys.exit(1)
    sys.exit(code)


def _auth(phone: str | None) -> None:
    from silvabot.auth import authenticate

    settings = _settings()
    try:
        code = asyncio.run(authenticate(settings, phone or settings.pairing.phone_number))
    except KeyboardInterrupt:
        print("\nAuthentication cancelled.")
        sys.exit(1)
    sys.exit(code)


def _session_export() -> None:
    from silvabot.session import dump_session

    s = _settings()
    if not s.credentials_path.exists():
        print(
            f"Error: no credentials at {s.credentials_path}. Run 'silvabot auth' first.",
            file=sys.stderr,
        )
        sys.exit(1)
    print(dump_session(s.credentials_path, magic=s.session.magic))


def _plugins() -> None:
    from silvabot.builtins import build_builtin_registry
    from silvabot.plugins import PluginRegistry

    s = _settings()
    registry = PluginRegistry(max_plugins=s.bot.max_plugins)
    try:
        registry.load_all(s.plugins_dir)
    except (PluginDirectoryError, DuplicateCommandError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    builtins = build_builtin_registry()
    print(f"Plugin directory: {s.plugins_dir}\n")
    print("Built-in:")
    for command in builtins.commands:
        print(f"  {s.bot.prefix}{' / '.join(command.names)}")
    for name in registry.plugin_names():
        print(f"\n{name}:")
        for command in registry.commands:
            if command.source != name:
                continue
            flags = [f for f in ("owner", "group", "admin", "bot_admin") if getattr(command, f)]
            suffix = f"  [{', '.join(flags)}]" if flags else ""
            print(f"  {s.bot.prefix}{' / '.join(command.names)}{suffix}")
    if registry.rejected:
        print("\nRejected:")
        for name, reason in sorted(registry.rejected.items()):
            print(f"  {name}: {reason}")
        sys.exit(1)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="silvabot",
        description="Plugin-driven WhatsApp bot",
    )
    sub = parser.add_subparsers(dest="command")

    auth = sub.add_parser("auth", help="Pair with WhatsApp (QR code or pair code)")
    auth.add_argument("--phone", help="Request a pair code for this number instead of a QR")

    session = sub.add_parser("session", help="Session token utilities")
    session_sub = session.add_subparsers(dest="session_command", required=True)
    session_sub.add_parser("export", help="Print a session token for the stored credentials")

    sub.add_parser("plugins", help="Load and list plugins")

    args = parser.parse_args()

    match args.command:
        case "auth":
            _auth(args.phone)
        case "session":
            _session_export()
        case "plugins":
            _plugins()
        case _:
            _run()


if __name__ == "__main__":
    main()
