"""Exception hierarchy for silvabot.

Only startup errors (plugin directory, duplicate commands) are allowed to
reach the process boundary. Everything raised while handling a single
message is caught by the dispatcher or the auxiliary handler that owns it.
"""

from __future__ import annotations


class SilvaError(Exception):
    """Base class for all silvabot errors."""


# --- Session -----------------------------------------------------------------


class SessionError(SilvaError):
    """The session token could not be turned into credentials."""


class InvalidSessionFormat(SessionError):
    """Token is not ``<magic>~<base64 payload>``."""


class SessionDecodeError(SessionError):
    """Payload is not valid base64 or does not decompress."""


# --- Transport ---------------------------------------------------------------


class TransportError(SilvaError):
    """Handshake or network failure reported by the transport."""


class SendError(TransportError):
    """An outbound message could not be delivered."""


# --- Plugins -----------------------------------------------------------------


class PluginError(SilvaError):
    """A command handler failed while executing."""

    def __init__(self, command: str, message: str) -> None:
        super().__init__(f"{command}: {message}")
        self.command = command


class PluginLoadError(SilvaError):
    """A plugin module does not satisfy the plugin interface."""

    def __init__(self, plugin: str, reason: str) -> None:
        super().__init__(f"{plugin}: {reason}")
        self.plugin = plugin
        self.reason = reason


class PluginDirectoryError(SilvaError):
    """The plugin directory is missing or unreadable."""


class DuplicateCommandError(SilvaError):
    """Two plugins claim the same command name."""

    def __init__(self, name: str, existing: str, incoming: str) -> None:
        super().__init__(
            f"Command {name!r} from {incoming!r} is already registered by {existing!r}"
        )
        self.name = name
        self.existing = existing
        self.incoming = incoming
