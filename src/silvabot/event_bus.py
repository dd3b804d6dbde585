"""Lightweight asyncio event bus: one instance per transport socket.

The transport adapter emits the events below; the connection manager, the
dispatcher and the auxiliary handlers subscribe. A replaced socket takes its
bus (and every subscription on it) with it.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, Literal

from silvabot.logger import logger
from silvabot.types import DisconnectReason, InboundMessage, MessageKey

# --- Event types ---


@dataclass
class ConnectionUpdate:
    """Transport lifecycle change. ``qr`` is set while waiting for a scan."""

    state: Literal["connecting", "open", "close"]
    reason: DisconnectReason | None = None
    qr: str | None = None


@dataclass
class MessagesUpsert:
    """A batch of inbound messages, in delivery order."""

    messages: list[InboundMessage]
    type: Literal["notify", "append"] = "notify"


@dataclass
class MessagesDelete:
    """Messages revoked by their sender."""

    keys: list[MessageKey]


@dataclass
class CredsUpdate:
    """Credential material changed and must be persisted."""

    delta: dict[str, Any] = field(default_factory=dict)


@dataclass
class GroupsUpdate:
    """Group metadata changed for these JIDs."""

    jids: list[str]


type Event = ConnectionUpdate | MessagesUpsert | MessagesDelete | CredsUpdate | GroupsUpdate
type Listener = Callable[[Any], Coroutine[Any, Any, None]]


class EventBus:
    """Fire-and-forget async event dispatcher."""

    def __init__(self) -> None:
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event type. Returns an unsubscribe function."""
        self._listeners[event_type].append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event_type].remove(listener)

        return _unsubscribe

    def emit(self, event: Event) -> None:
        """Emit an event to all subscribers. Non-blocking, fire-and-forget."""
        for listener in list(self._listeners[type(event)]):
            asyncio.ensure_future(_safe_call(listener, event))

    def clear(self) -> None:
        """Drop every subscription."""
        self._listeners.clear()

    def listener_count(self, event_type: type | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(v) for v in self._listeners.values())


async def _safe_call(listener: Listener, event: Event) -> None:
    try:
        await listener(event)
    except Exception as exc:
        logger.warning(
            "EventBus listener error",
            event=type(event).__name__,
            err=str(exc),
            exc_info=exc,
        )
