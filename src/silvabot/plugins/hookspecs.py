"""Pluggy hook specifications for silvabot plugins.

A plugin is any module (a ``*.py`` file in the plugin directory, or an object
published under the ``silvabot`` entry-point group) that implements these
hooks. pluggy validates the hook signatures at registration time.
"""

from __future__ import annotations

import pluggy

from silvabot.plugins.base import Command

hookspec = pluggy.HookspecMarker("silvabot")
hookimpl = pluggy.HookimplMarker("silvabot")


class SilvaBotSpec:
    """Hook specifications for silvabot plugins."""

    @hookspec
    def silvabot_commands(self) -> list[Command]:
        """Provide the commands this plugin handles.

        Returns:
            List of ``Command`` descriptors. Each must claim at least one
            name and carry an async ``execute(ctx)`` handler. Names must be
            unique across all plugins; a clash aborts startup.
        """
