"""Commands that ship with the core and resolve before any plugin."""

from __future__ import annotations

import os
import platform
import resource
import time
from collections import defaultdict

from silvabot.plugins import Command, CommandContext, PluginRegistry
from silvabot.utils import format_bytes, format_uptime

BUILTIN_SOURCE = "builtin"


def _rss_bytes() -> int:
    # ru_maxrss is KiB on Linux, bytes on macOS
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return rss if platform.system() == "Darwin" else rss * 1024


async def ping(ctx: CommandContext) -> None:
    start = time.perf_counter()
    await ctx.reply("🏓 Pong!")
    latency_ms = (time.perf_counter() - start) * 1000
    await ctx.reply(
        "*Ping Statistics:*\n\n"
        f"⚡ Latency: {latency_ms:.0f}ms\n"
        f"📊 Uptime: {format_uptime(ctx.app.uptime())}\n"
        f"💾 RAM: {format_bytes(_rss_bytes())}"
    )


async def menu(ctx: CommandContext) -> None:
    app = ctx.app
    bot = app.settings.bot
    by_category: defaultdict[str, list[Command]] = defaultdict(list)
    for command in (*app.builtins.commands, *app.registry.commands):
        if command.owner and not ctx.permissions.is_owner:
            continue
        by_category[command.category].append(command)

    lines = [
        f"┌─「 *{bot.name.upper()}* 」─",
        "│",
        "│ ⚡ *BOT STATUS*",
        f"│ • Mode: {bot.mode}",
        f"│ • Prefix: {bot.prefix}",
        f"│ • Version: {app.version}",
        f"│ • Uptime: {format_uptime(app.uptime())}",
    ]
    for category in sorted(by_category):
        lines += ["│", f"│ 📋 *{category.upper()}*"]
        for command in sorted(by_category[category], key=lambda c: c.name):
            desc = f" - {command.description}" if command.description else ""
            lines.append(f"│ • {bot.prefix}{command.name}{desc}")
    lines += ["│", "└─「 *SILVA TECH* 」"]
    await ctx.reply("\n".join(lines))


async def list_plugins(ctx: CommandContext) -> None:
    registry = ctx.app.registry
    names = registry.plugin_names()
    lines = [f"🧩 *Loaded plugins* ({len(names)})", ""]
    for name in names:
        commands = [c.name for c in registry.commands if c.source == name]
        lines.append(f"• {name}: {', '.join(commands)}")
    if registry.rejected:
        lines += ["", f"⚠️ *Rejected* ({len(registry.rejected)})"]
        lines += [f"• {name}: {reason}" for name, reason in sorted(registry.rejected.items())]
    await ctx.reply("\n".join(lines))


async def runtime(ctx: CommandContext) -> None:
    cores = os.cpu_count() or 1
    text = (
        f"🧠 *{ctx.app.settings.bot.name.upper()} — SYSTEM STATUS*\n\n"
        f"⏳ *Uptime*\n🗓️ {format_uptime(ctx.app.uptime())}\n\n"
        f"🖥️ *Platform:* {platform.system()} {platform.machine()}\n"
        f"🔩 *Cores:* {cores}\n"
        f"🐍 *Python:* {platform.python_version()}\n"
        f"💾 *RAM:* {format_bytes(_rss_bytes())}"
    )
    await ctx.reply(text)


def builtin_commands() -> list[Command]:
    return [
        Command(names=("ping",), execute=ping, description="Check bot status", category="info"),
        Command(
            names=("menu", "help"), execute=menu, description="Show this menu", category="info"
        ),
        Command(
            names=("plugins",), execute=list_plugins, description="List plugins", category="info"
        ),
        Command(
            names=("uptime", "runtime"),
            execute=runtime,
            description="Bot uptime and system health",
            category="info",
        ),
    ]


def build_builtin_registry() -> PluginRegistry:
    registry = PluginRegistry(label="builtins")
    for command in builtin_commands():
        registry.register(command, source=BUILTIN_SOURCE)
    registry.freeze()
    return registry
