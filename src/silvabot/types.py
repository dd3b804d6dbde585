"""Data models for silvabot.

Transport-neutral shapes: the WhatsApp adapter converts neonize protobufs
into these, and everything above the transport only ever sees these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

STATUS_BROADCAST = "status@broadcast"
GROUP_SUFFIX = "@g.us"
NEWSLETTER_SUFFIX = "@newsletter"
USER_SERVER = "s.whatsapp.net"

type MediaKind = Literal["text", "image", "video", "audio", "document", "sticker", "other"]


def is_group_jid(jid: str) -> bool:
    return jid.endswith(GROUP_SUFFIX)


def is_newsletter_jid(jid: str) -> bool:
    return jid.endswith(NEWSLETTER_SUFFIX)


def user_jid(number: str) -> str:
    """Build a user JID from anything containing a phone number."""
    digits = "".join(ch for ch in number.split("@")[0].split(":")[0] if ch.isdigit())
    return f"{digits}@{USER_SERVER}"


class DisconnectReason(StrEnum):
    LOGGED_OUT = "logged_out"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_FAILED = "connection_failed"
    STREAM_REPLACED = "stream_replaced"


@dataclass(frozen=True)
class MessageKey:
    chat_id: str
    id: str
    from_me: bool = False
    participant: str | None = None


@dataclass
class MessageContent:
    """The subset of the WhatsApp content union the bot cares about."""

    conversation: str = ""
    extended_text: str = ""
    image_caption: str = ""
    video_caption: str = ""
    document_caption: str = ""
    document_name: str = ""
    kind: MediaKind = "text"
    quoted_id: str | None = None
    quoted_sender: str | None = None
    mentions: list[str] = field(default_factory=list)

    def text(self) -> str:
        """First non-empty text field, in fixed priority order."""
        return (
            self.conversation
            or self.extended_text
            or self.image_caption
            or self.video_caption
            or self.document_caption
            or ""
        )


@dataclass
class InboundMessage:
    id: str
    chat_id: str
    sender_id: str
    content: MessageContent
    timestamp: float
    is_group: bool = False
    push_name: str = ""
    from_me: bool = False
    raw: Any = None  # transport-native message, used for replies and media download

    @property
    def key(self) -> MessageKey:
        return MessageKey(
            chat_id=self.chat_id,
            id=self.id,
            from_me=self.from_me,
            participant=self.sender_id if self.is_group else None,
        )

    @property
    def text(self) -> str:
        return self.content.text()


@dataclass
class Outgoing:
    """Outbound message content. ``context_info`` is merged with the defaults."""

    text: str = ""
    mentions: list[str] = field(default_factory=list)
    media: bytes | None = None
    media_kind: MediaKind | None = None
    mimetype: str | None = None
    file_name: str | None = None
    context_info: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Receipt:
    id: str
    chat_id: str
    timestamp: float


@dataclass
class BotIdentity:
    id: str  # phone JID, e.g. "254700000000:12@s.whatsapp.net"
    lid: str | None = None
    push_name: str = ""

    @property
    def number(self) -> str:
        return self.id.split("@")[0].split(":")[0]

    @property
    def jid(self) -> str:
        return user_jid(self.id)


@dataclass
class Participant:
    id: str
    lid: str | None = None
    is_admin: bool = False


@dataclass
class GroupMetadata:
    id: str
    subject: str = ""
    participants: list[Participant] = field(default_factory=list)
    owner: str | None = None
    description: str = ""
    created_at: float | None = None

    @property
    def admins(self) -> list[Participant]:
        return [p for p in self.participants if p.is_admin]
