"""Transport boundary.

The core never touches neonize directly. It talks to a ``Socket`` created by
a ``SocketFactory`` and listens on the socket's ``EventBus``. The factory
receives the capabilities the transport may call back into.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

from silvabot.event_bus import EventBus
from silvabot.types import BotIdentity, GroupMetadata, InboundMessage, MessageKey, Outgoing, Receipt

type Presence = Literal["composing", "recording", "paused", "available", "unavailable"]
type ParticipantAction = Literal["add", "remove", "promote", "demote"]


@dataclass(frozen=True)
class SocketCapabilities:
    """Callbacks injected into every socket the factory builds."""

    get_group_metadata: Callable[[str], Awaitable[GroupMetadata | None]]
    get_message: Callable[[MessageKey], InboundMessage | None]
    persist_credentials: Callable[[dict[str, Any]], None]


@runtime_checkable
class Socket(Protocol):
    ev: EventBus
    user: BotIdentity | None

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def send_message(
        self, chat_id: str, content: Outgoing, *, quoted: InboundMessage | None = None
    ) -> Receipt: ...

    async def send_reaction(self, message: InboundMessage, emoji: str) -> None: ...

    async def send_presence(self, chat_id: str, presence: Presence) -> None: ...

    async def read_messages(self, messages: list[InboundMessage]) -> None: ...

    async def group_metadata(self, chat_id: str) -> GroupMetadata: ...

    async def group_participants_update(
        self, chat_id: str, participants: list[str], action: ParticipantAction
    ) -> None: ...

    async def group_invite_code(self, chat_id: str) -> str: ...

    async def group_info_from_invite(self, code: str) -> GroupMetadata: ...

    async def newsletter_follow(self, jid: str) -> None: ...

    async def download_media(self, message: InboundMessage) -> bytes: ...

    async def request_pair_code(self, phone_number: str) -> str: ...


class SocketFactory(Protocol):
    async def fetch_version(self) -> str | None: ...

    def create(self, capabilities: SocketCapabilities, *, version: str | None = None) -> Socket: ...
