"""Transport layer: the socket protocol and its neonize implementation."""

from __future__ import annotations

from silvabot.transport.base import Presence, Socket, SocketCapabilities, SocketFactory

__all__ = [
    "Presence",
    "Socket",
    "SocketCapabilities",
    "SocketFactory",
]
