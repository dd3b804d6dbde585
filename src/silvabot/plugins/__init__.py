"""Plugin system for silvabot.

Commands live in plugin modules: every ``*.py`` file in the plugin
directory (non-recursive, ``_``-prefixed files skipped) is imported and
registered with a pluggy ``PluginManager``. A module qualifies by
implementing the ``silvabot_commands`` hook::

    from silvabot.plugins import Command, hookimpl

    async def ping(ctx):
        await ctx.reply("pong")

    @hookimpl
    def silvabot_commands():
        return [Command(names=("ping",), execute=ping)]

Installed packages can contribute the same hook through the ``silvabot``
entry-point group.

A module that fails to import or does not satisfy the interface is rejected
with a warning and the rest keep loading. Two plugins claiming the same
command name abort startup.
"""

from __future__ import annotations

import asyncio
import importlib.util
import sys
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

import pluggy

from silvabot.errors import (
    DuplicateCommandError,
    PluginDirectoryError,
    PluginError,
    PluginLoadError,
)
from silvabot.logger import logger
from silvabot.plugins.base import Command, CommandContext
from silvabot.plugins.hookspecs import SilvaBotSpec, hookimpl

__all__ = [
    "Command",
    "CommandContext",
    "PluginRegistry",
    "hookimpl",
]

_MODULE_NAMESPACE = "silvabot_plugins"


class PluginRegistry:
    """Maps command tokens to ``Command`` descriptors.

    Populated at startup, then frozen; lookups after that never mutate it.
    """

    def __init__(self, *, label: str = "plugins", max_plugins: int | None = None) -> None:
        self.label = label
        self.max_plugins = max_plugins
        self.rejected: dict[str, str] = {}
        self._pm = pluggy.PluginManager("silvabot")
        self._pm.add_hookspecs(SilvaBotSpec)
        self._commands: list[Command] = []
        self._by_name: dict[str, Command] = {}
        self._frozen = False

    # --- Introspection ---

    @property
    def plugin_manager(self) -> pluggy.PluginManager:
        return self._pm

    @property
    def commands(self) -> tuple[Command, ...]:
        return tuple(self._commands)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def plugin_names(self) -> list[str]:
        return sorted({c.source for c in self._commands})

    def mapping(self) -> Mapping[str, Command]:
        return MappingProxyType(dict(self._by_name))

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and self.resolve(token) is not None

    # --- Registration ---

    def freeze(self) -> None:
        self._frozen = True

    def register(self, command: Command, *, source: str) -> Command:
        """Add one command. Raises DuplicateCommandError on a name clash."""
        if self._frozen:
            raise RuntimeError(f"{self.label} registry is frozen")
        if command.source != source:
            command = replace(command, source=source)
        self._check_duplicates(command)
        self._commands.append(command)
        for name in command.names:
            self._by_name[name] = command
        return command

    def _check_duplicates(self, command: Command) -> None:
        for name in command.names:
            existing = self.resolve(name)
            if existing is not None:
                raise DuplicateCommandError(name, existing.source, command.source)
        for name, existing in self._by_name.items():
            if command.matches(name):
                raise DuplicateCommandError(name, existing.source, command.source)

    def load_all(self, directory: Path, *, entry_points: bool = True) -> Mapping[str, Command]:
        """Load every plugin module in ``directory``.

        Returns the name → descriptor mapping. Raises PluginDirectoryError if
        the directory cannot be read and DuplicateCommandError on a clash.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise PluginDirectoryError(f"Plugin directory not found: {directory}")
        try:
            paths = sorted(
                p
                for p in directory.iterdir()
                if p.suffix == ".py" and p.is_file() and not p.name.startswith("_")
            )
        except OSError as exc:
            raise PluginDirectoryError(f"Cannot read plugin directory {directory}: {exc}") from exc

        loaded = 0
        for index, path in enumerate(paths):
            if self.max_plugins is not None and loaded >= self.max_plugins:
                logger.warning(
                    "Plugin limit reached, skipping the rest",
                    limit=self.max_plugins,
                    skipped=[p.stem for p in paths[index:]],
                )
                break
            try:
                commands = self._load_module(path)
            except PluginLoadError as exc:
                self._reject(exc)
                continue
            for command in commands:
                self.register(command, source=path.stem)
            loaded += 1
            logger.info("Plugin loaded", plugin=path.stem, commands=[c.name for c in commands])

        if entry_points:
            self._load_entry_points()

        logger.info(
            "Plugin registry ready",
            registry=self.label,
            plugins=self.plugin_names(),
            commands=len(self._commands),
            rejected=sorted(self.rejected),
        )
        return self.mapping()

    def _reject(self, exc: PluginLoadError) -> None:
        self.rejected[exc.plugin] = exc.reason
        logger.warning("Plugin rejected", plugin=exc.plugin, reason=exc.reason)

    def _load_module(self, path: Path) -> list[Command]:
        plugin_name = path.stem
        module_name = f"{_MODULE_NAMESPACE}.{plugin_name}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginLoadError(plugin_name, "not an importable module")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            sys.modules.pop(module_name, None)
            raise PluginLoadError(plugin_name, f"import failed: {exc}") from exc

        try:
            self._pm.register(module, name=plugin_name)
        except (pluggy.PluginValidationError, ValueError) as exc:
            sys.modules.pop(module_name, None)
            raise PluginLoadError(plugin_name, f"invalid plugin: {exc}") from exc

        try:
            return self._collect(plugin_name)
        except PluginLoadError:
            self._pm.unregister(name=plugin_name)
            sys.modules.pop(module_name, None)
            raise

    def _collect(self, plugin_name: str) -> list[Command]:
        impls = [
            impl
            for impl in self._pm.hook.silvabot_commands.get_hookimpls()
            if impl.plugin_name == plugin_name
        ]
        if not impls:
            raise PluginLoadError(plugin_name, "does not implement silvabot_commands()")

        try:
            result: Any = impls[0].function()
        except Exception as exc:
            raise PluginLoadError(plugin_name, f"silvabot_commands() failed: {exc}") from exc

        if isinstance(result, Command):
            result = [result]
        if not isinstance(result, list | tuple) or not result:
            raise PluginLoadError(plugin_name, "silvabot_commands() must return a list of Command")
        bad = [type(item).__name__ for item in result if not isinstance(item, Command)]
        if bad:
            raise PluginLoadError(plugin_name, f"not Command instances: {bad}")
        return list(result)

    def _load_entry_points(self) -> None:
        """Pick up plugins published under the ``silvabot`` entry-point group."""
        known = {name for name, _ in self._pm.list_name_plugin()}
        try:
            discovered = self._pm.load_setuptools_entrypoints("silvabot")
        except Exception as exc:
            logger.warning("Entry-point plugin discovery failed", error=str(exc))
            return
        if not discovered:
            return

        for name, plugin in self._pm.list_name_plugin():
            if name in known or plugin is None:
                continue
            try:
                commands = self._collect(name)
            except PluginLoadError as exc:
                self._pm.unregister(name=name)
                self._reject(exc)
                continue
            for command in commands:
                self.register(command, source=name)
            logger.info("Entry-point plugin loaded", plugin=name)

    # --- Lookup & execution ---

    def resolve(self, token: str) -> Command | None:
        """Case-insensitive, whole-token lookup. Exact names win over patterns."""
        token = token.lower()
        command = self._by_name.get(token)
        if command is not None:
            return command
        for command in self._commands:
            if command.matches(token):
                return command
        return None

    async def execute(
        self, name: str, ctx: CommandContext, *, timeout: float | None = None
    ) -> None:
        """Run the handler for ``name``. Any failure surfaces as PluginError."""
        command = self.resolve(name)
        if command is None:
            raise PluginError(name, "unknown command")

        try:
            if timeout:
                await asyncio.wait_for(command.execute(ctx), timeout)
            else:
                await command.execute(ctx)
        except TimeoutError as exc:
            logger.error("Command timed out", command=name, plugin=command.source, timeout=timeout)
            raise PluginError(name, f"timed out after {timeout:g}s") from exc
        except Exception as exc:
            logger.exception("Command handler failed", command=name, plugin=command.source)
            raise PluginError(name, str(exc) or type(exc).__name__) from exc
