"""WhatsApp transport using neonize (whatsmeow Python bindings).

Translates neonize events into ``silvabot.event_bus`` events and silvabot
``Outgoing`` content into waE2E protobuf messages. Nothing above this module
sees a neonize type except through ``InboundMessage.raw``.
"""

from __future__ import annotations

import asyncio
import contextlib

from neonize.aioze import client as neonize_client
from neonize.aioze import events as neonize_events
from neonize.aioze.client import NewAClient
from neonize.events import (
    ConnectedEv,
    ConnectFailureEv,
    DisconnectedEv,
    GroupInfoEv,
    LoggedOutEv,
    MessageEv,
    PairStatusEv,
    StreamReplacedEv,
)
from neonize.proto.Neonize_pb2 import JID
from neonize.proto.waE2E.WAWebProtobufsE2E_pb2 import (
    ContextInfo,
    ExtendedTextMessage,
    Message,
    ProtocolMessage,
)
from neonize.utils.enum import (
    ChatPresence,
    ChatPresenceMedia,
    ParticipantChange,
    Presence,
    ReceiptType,
)
from neonize.utils.jid import Jid2String, build_jid

from silvabot.config import Settings
from silvabot.errors import SendError, TransportError
from silvabot.event_bus import (
    ConnectionUpdate,
    CredsUpdate,
    EventBus,
    GroupsUpdate,
    MessagesDelete,
    MessagesUpsert,
)
from silvabot.logger import logger
from silvabot.transport.base import ParticipantAction, SocketCapabilities
from silvabot.transport.base import Presence as PresenceState
from silvabot.types import (
    BotIdentity,
    DisconnectReason,
    GroupMetadata,
    InboundMessage,
    MediaKind,
    MessageContent,
    MessageKey,
    Outgoing,
    Participant,
    Receipt,
    is_group_jid,
)

_PARTICIPANT_CHANGES = {
    "add": ParticipantChange.ADD,
    "remove": ParticipantChange.REMOVE,
    "promote": ParticipantChange.PROMOTE,
    "demote": ParticipantChange.DEMOTE,
}

# Content wrappers whose payload is another Message
_WRAPPERS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "documentWithCaptionMessage",
)

_MEDIA_FIELDS: tuple[tuple[str, MediaKind], ...] = (
    ("imageMessage", "image"),
    ("videoMessage", "video"),
    ("audioMessage", "audio"),
    ("documentMessage", "document"),
    ("stickerMessage", "sticker"),
)


def parse_jid(jid_str: str) -> JID:
    """Parse a string JID into a neonize JID protobuf object."""
    if "@" not in jid_str:
        return build_jid(jid_str)
    user, server = jid_str.split("@", 1)
    return build_jid(user, server)


def _unwrap(msg: Message) -> Message:
    for _ in range(3):
        for wrapper in _WRAPPERS:
            if msg.HasField(wrapper):
                msg = getattr(msg, wrapper).message
                break
        else:
            return msg
    return msg


def _context_of(msg: Message) -> ContextInfo | None:
    for field_name in ("extendedTextMessage", *(f for f, _ in _MEDIA_FIELDS)):
        if msg.HasField(field_name):
            part = getattr(msg, field_name)
            if part.HasField("contextInfo"):
                return part.contextInfo
    return None


def _kind_of(msg: Message) -> MediaKind:
    for field_name, kind in _MEDIA_FIELDS:
        if msg.HasField(field_name):
            return kind
    if msg.conversation or msg.HasField("extendedTextMessage"):
        return "text"
    return "other"


def to_inbound(ev: MessageEv) -> InboundMessage:
    info = ev.Info
    source = info.MessageSource
    chat_id = Jid2String(source.Chat)
    msg = _unwrap(ev.Message)
    ctx = _context_of(msg)

    ts = info.Timestamp
    if ts > 1e10:  # milliseconds → seconds
        ts = ts / 1000

    content = MessageContent(
        conversation=msg.conversation,
        extended_text=msg.extendedTextMessage.text,
        image_caption=msg.imageMessage.caption,
        video_caption=msg.videoMessage.caption,
        document_caption=msg.documentMessage.caption,
        document_name=msg.documentMessage.fileName,
        kind=_kind_of(msg),
        quoted_id=(ctx.stanzaID or None) if ctx is not None else None,
        quoted_sender=(ctx.participant or None) if ctx is not None else None,
        mentions=list(ctx.mentionedJID) if ctx is not None else [],
    )
    return InboundMessage(
        id=info.ID,
        chat_id=chat_id,
        sender_id=Jid2String(source.Sender),
        content=content,
        timestamp=float(ts),
        is_group=source.IsGroup or is_group_jid(chat_id),
        push_name=info.Pushname,
        from_me=source.IsFromMe,
        raw=ev,
    )


def _revoked_key(ev: MessageEv) -> MessageKey | None:
    msg = ev.Message
    if not msg.HasField("protocolMessage"):
        return None
    proto = msg.protocolMessage
    if proto.type != ProtocolMessage.REVOKE:
        return None
    source = ev.Info.MessageSource
    return MessageKey(
        chat_id=Jid2String(source.Chat),
        id=proto.key.ID,
        from_me=proto.key.fromMe,
        participant=proto.key.participant or None,
    )


def build_context(content: Outgoing, quoted: InboundMessage | None) -> ContextInfo:
    info = content.context_info
    ctx = ContextInfo()
    if info.get("forwarding_score"):
        ctx.forwardingScore = int(info["forwarding_score"])
    if info.get("is_forwarded"):
        ctx.isForwarded = True
    newsletter = info.get("newsletter")
    if newsletter:
        ctx.forwardedNewsletterMessageInfo.newsletterJID = newsletter["jid"]
        ctx.forwardedNewsletterMessageInfo.newsletterName = newsletter.get("name", "")
        ctx.forwardedNewsletterMessageInfo.serverMessageID = int(
            newsletter.get("server_message_id", 0)
        )
    if content.mentions:
        ctx.mentionedJID.extend(content.mentions)
    if quoted is not None:
        ctx.stanzaID = quoted.id
        ctx.participant = quoted.sender_id
        if quoted.is_group or quoted.chat_id != quoted.sender_id:
            ctx.remoteJID = quoted.chat_id
        if isinstance(quoted.raw, MessageEv):
            ctx.quotedMessage.CopyFrom(quoted.raw.Message)
    return ctx


class NeonizeSocket:
    """One neonize client. Replaced wholesale by the connection manager."""

    def __init__(self, settings: Settings, capabilities: SocketCapabilities) -> None:
        self.ev = EventBus()
        self.user: BotIdentity | None = None
        self._capabilities = capabilities
        self._idle_task: asyncio.Task[None] | None = None

        # Neonize creates its own event loop at import time. Patch both modules
        # so events and tasks land on our running loop.
        loop = asyncio.get_running_loop()
        neonize_events.event_global_loop = loop
        neonize_client.event_global_loop = loop

        store_dir = settings.store_dir
        store_dir.mkdir(parents=True, exist_ok=True)
        self._client = NewAClient(str(settings.credentials_path))
        self._register_events()

    def _register_events(self) -> None:
        client = self._client

        @client.event(ConnectedEv)
        async def on_connected(_client: NewAClient, _ev: ConnectedEv) -> None:
            self.user = self._identity()
            self.ev.emit(ConnectionUpdate(state="open"))

        @client.event(DisconnectedEv)
        async def on_disconnected(_client: NewAClient, _ev: DisconnectedEv) -> None:
            self.ev.emit(ConnectionUpdate(state="close", reason=DisconnectReason.CONNECTION_LOST))

        @client.event(StreamReplacedEv)
        async def on_stream_replaced(_client: NewAClient, _ev: StreamReplacedEv) -> None:
            self.ev.emit(ConnectionUpdate(state="close", reason=DisconnectReason.STREAM_REPLACED))

        @client.event(LoggedOutEv)
        async def on_logged_out(_client: NewAClient, _ev: LoggedOutEv) -> None:
            self.ev.emit(ConnectionUpdate(state="close", reason=DisconnectReason.LOGGED_OUT))

        @client.event(ConnectFailureEv)
        async def on_connect_failure(_client: NewAClient, _ev: ConnectFailureEv) -> None:
            self.ev.emit(
                ConnectionUpdate(state="close", reason=DisconnectReason.CONNECTION_FAILED)
            )

        @client.event(PairStatusEv)
        async def on_pair_status(_client: NewAClient, ev: PairStatusEv) -> None:
            logger.info("WhatsApp paired", user=ev.ID.User)
            self.ev.emit(CredsUpdate(delta={"me": Jid2String(ev.ID)}))

        @client.event(GroupInfoEv)
        async def on_group_info(_client: NewAClient, ev: GroupInfoEv) -> None:
            self.ev.emit(GroupsUpdate(jids=[Jid2String(ev.JID)]))

        @client.event(MessageEv)
        async def on_message(_client: NewAClient, message: MessageEv) -> None:
            try:
                revoked = _revoked_key(message)
                if revoked is not None:
                    self.ev.emit(MessagesDelete(keys=[revoked]))
                    return
                self.ev.emit(MessagesUpsert(messages=[to_inbound(message)], type="notify"))
            except Exception:
                logger.exception(
                    "Unhandled error converting message",
                    message_id=getattr(getattr(message, "Info", None), "ID", "unknown"),
                )

        @client.event.qr
        async def on_qr(_client: NewAClient, qr_data: bytes) -> None:
            data = qr_data.decode() if isinstance(qr_data, bytes) else str(qr_data)
            self.ev.emit(ConnectionUpdate(state="connecting", qr=data))

    def _identity(self) -> BotIdentity | None:
        # client.me is a Device protobuf with .JID and .LID sub-fields.
        device = self._client.me
        if not device:
            return None
        jid = getattr(device, "JID", None)
        lid = getattr(device, "LID", None)
        if jid is None or not jid.User:
            return None
        return BotIdentity(
            id=Jid2String(jid),
            lid=Jid2String(lid) if lid is not None and lid.User else None,
            push_name=getattr(device, "PushName", "") or "",
        )

    # --- Lifecycle ---

    async def connect(self) -> None:
        self.ev.emit(ConnectionUpdate(state="connecting"))
        await self._client.connect()
        # idle() keeps the event loop receiving events
        self._idle_task = asyncio.ensure_future(self._client.idle())

    async def close(self) -> None:
        if self._idle_task:
            self._idle_task.cancel()
        with contextlib.suppress(Exception):
            await self._client.disconnect()

    # --- Messaging ---

    async def send_message(
        self, chat_id: str, content: Outgoing, *, quoted: InboundMessage | None = None
    ) -> Receipt:
        target = parse_jid(chat_id)
        ctx = build_context(content, quoted)
        try:
            if content.media is not None:
                message = await self._build_media(content, ctx)
            else:
                message = Message(
                    extendedTextMessage=ExtendedTextMessage(text=content.text, contextInfo=ctx)
                )
            response = await self._client.send_message(target, message)
        except Exception as exc:
            raise SendError(f"send to {chat_id} failed: {exc}") from exc
        return Receipt(id=response.ID, chat_id=chat_id, timestamp=float(response.Timestamp))

    async def _build_media(self, content: Outgoing, ctx: ContextInfo) -> Message:
        kind = content.media_kind or "document"
        data = content.media
        caption = content.text or None
        if kind == "image":
            message = await self._client.build_image_message(data, caption=caption)
            message.imageMessage.contextInfo.CopyFrom(ctx)
        elif kind == "video":
            message = await self._client.build_video_message(data, caption=caption)
            message.videoMessage.contextInfo.CopyFrom(ctx)
        elif kind == "audio":
            message = await self._client.build_audio_message(data)
            message.audioMessage.contextInfo.CopyFrom(ctx)
        else:
            message = await self._client.build_document_message(
                data,
                caption=caption,
                filename=content.file_name,
                mimetype=content.mimetype,
            )
            message.documentMessage.contextInfo.CopyFrom(ctx)
        return message

    async def send_reaction(self, message: InboundMessage, emoji: str) -> None:
        chat = parse_jid(message.chat_id)
        sender = parse_jid(message.sender_id)
        reaction = await self._client.build_reaction(chat, sender, message.id, emoji)
        await self._client.send_message(chat, reaction)

    async def send_presence(self, chat_id: str, presence: PresenceState) -> None:
        if presence == "available":
            await self._client.send_presence(Presence.AVAILABLE)
            return
        if presence == "unavailable":
            await self._client.send_presence(Presence.UNAVAILABLE)
            return
        state = (
            ChatPresence.CHAT_PRESENCE_PAUSED
            if presence == "paused"
            else ChatPresence.CHAT_PRESENCE_COMPOSING
        )
        media = (
            ChatPresenceMedia.CHAT_PRESENCE_MEDIA_AUDIO
            if presence == "recording"
            else ChatPresenceMedia.CHAT_PRESENCE_MEDIA_TEXT
        )
        await self._client.send_chat_presence(parse_jid(chat_id), state, media)

    async def read_messages(self, messages: list[InboundMessage]) -> None:
        for message in messages:
            await self._client.mark_read(
                message.id,
                chat=parse_jid(message.chat_id),
                sender=parse_jid(message.sender_id),
                receipt=ReceiptType.READ,
            )

    async def download_media(self, message: InboundMessage) -> bytes:
        raw = message.raw
        if not isinstance(raw, MessageEv):
            stored = self._capabilities.get_message(message.key)
            raw = stored.raw if stored is not None else None
        if not isinstance(raw, MessageEv):
            raise TransportError(f"message {message.id} carries no downloadable media")
        return await self._client.download_any(_unwrap(raw.Message))

    # --- Groups ---

    async def group_metadata(self, chat_id: str) -> GroupMetadata:
        info = await self._client.get_group_info(parse_jid(chat_id))
        participants = [
            Participant(
                id=Jid2String(p.JID),
                lid=Jid2String(p.LID) if p.LID.User else None,
                is_admin=p.IsAdmin or p.IsSuperAdmin,
            )
            for p in info.Participants
        ]
        return GroupMetadata(
            id=Jid2String(info.JID),
            subject=info.GroupName.Name,
            participants=participants,
            owner=Jid2String(info.OwnerJID) if info.OwnerJID.User else None,
            description=info.GroupTopic.Topic,
            created_at=float(info.GroupCreated) if info.GroupCreated else None,
        )

    async def group_participants_update(
        self, chat_id: str, participants: list[str], action: ParticipantAction
    ) -> None:
        await self._client.update_group_participants(
            parse_jid(chat_id),
            [parse_jid(p) for p in participants],
            _PARTICIPANT_CHANGES[action],
        )

    async def group_invite_code(self, chat_id: str) -> str:
        link = await self._client.get_group_invite_link(parse_jid(chat_id))
        return link.rstrip("/").rsplit("/", 1)[-1]

    async def group_info_from_invite(self, code: str) -> GroupMetadata:
        info = await self._client.get_group_info_from_link(code)
        return GroupMetadata(
            id=Jid2String(info.JID),
            subject=info.GroupName.Name,
            participants=[Participant(id=Jid2String(p.JID)) for p in info.Participants],
            owner=Jid2String(info.OwnerJID) if info.OwnerJID.User else None,
            description=info.GroupTopic.Topic,
            created_at=float(info.GroupCreated) if info.GroupCreated else None,
        )

    # --- Misc ---

    async def newsletter_follow(self, jid: str) -> None:
        await self._client.follow_newsletter(parse_jid(jid))

    async def request_pair_code(self, phone_number: str) -> str:
        digits = "".join(ch for ch in phone_number if ch.isdigit())
        return await self._client.PairPhone(digits, show_push_notification=True)


class NeonizeSocketFactory:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def fetch_version(self) -> str | None:
        # whatsmeow negotiates the web client version itself
        return None

    def create(
        self, capabilities: SocketCapabilities, *, version: str | None = None
    ) -> NeonizeSocket:
        return NeonizeSocket(self._settings, capabilities)
