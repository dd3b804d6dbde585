"""Recover revoked messages.

Every eligible inbound message is remembered for a while. When its sender
revokes it, the owner gets an alert with what was said and, for groups, the
group gets a short notice.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING

from silvabot.cache import RetentionCache
from silvabot.config import Settings
from silvabot.event_bus import MessagesDelete, MessagesUpsert
from silvabot.logger import logger
from silvabot.types import (
    STATUS_BROADCAST,
    InboundMessage,
    MessageContent,
    Outgoing,
    is_group_jid,
    is_newsletter_jid,
    user_jid,
)

if TYPE_CHECKING:
    from silvabot.connection import ConnectionManager
    from silvabot.transport import Socket

_MEDIA_LABELS = {
    "image": "📷 Image",
    "video": "🎥 Video",
    "audio": "🎵 Audio Message",
    "document": "📄 Document",
    "sticker": "🖼️ Sticker",
}


def describe_content(content: MessageContent) -> str:
    text = content.text()
    if text:
        return text
    if content.kind == "document" and content.document_name:
        return content.document_name
    return _MEDIA_LABELS.get(content.kind, "📦 Unknown content type")


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class AntiDeleteHandler:
    def __init__(
        self,
        settings: Settings,
        connection: ConnectionManager,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._connection = connection
        self._sleep = sleep
        cfg = settings.anti_delete
        self.store: RetentionCache[str, InboundMessage] = RetentionCache(
            cfg.max_entries, max_age=cfg.retention_seconds, clock=clock
        )

    def bind(self, socket: Socket) -> None:
        if not self._settings.anti_delete.enabled:
            return
        socket.ev.subscribe(MessagesUpsert, self._on_upsert)
        socket.ev.subscribe(MessagesDelete, self._on_delete)

    def _watches(self, chat_id: str) -> bool:
        cfg = self._settings.anti_delete
        if chat_id == STATUS_BROADCAST or is_newsletter_jid(chat_id):
            return False
        return cfg.group if is_group_jid(chat_id) else cfg.private

    async def _on_upsert(self, event: MessagesUpsert) -> None:
        for message in event.messages:
            if message.from_me or not self._watches(message.chat_id):
                continue
            self.store.put(message.id, message)
        self.store.prune()

    async def _on_delete(self, event: MessagesDelete) -> None:
        for key in event.keys:
            stored = self.store.pop(key.id)
            if stored is None or not self._watches(stored.chat_id):
                continue
            try:
                await self._report(stored)
            except Exception:
                logger.exception("Anti-delete alert failed", message_id=key.id)

    def _owner_chat(self) -> str | None:
        owners = self._settings.bot.owner_numbers
        if owners:
            return user_jid(owners[0])
        identity = self._connection.identity
        return identity.jid if identity is not None else None

    async def _report(self, message: InboundMessage) -> None:
        is_group = message.is_group or is_group_jid(message.chat_id)
        sender = message.sender_id.split("@")[0]
        content = describe_content(message.content)
        logger.info(
            "Message deleted",
            chat_id=message.chat_id,
            sender=message.sender_id,
            kind="group" if is_group else "private",
        )

        chat_kind = "Group" if is_group else "Private"
        owner_chat = self._owner_chat()
        if owner_chat is not None:
            alert = (
                "⚠️ *MESSAGE DELETED*\n\n"
                f"👤 Sender: {sender}\n"
                f"💬 Chat: {chat_kind} ({message.chat_id.split('@')[0]})\n"
                f"📝 Content: {_truncate(content, 200)}\n"
                f"⏰ Time: {datetime.now().strftime('%H:%M:%S')}"
            )
            await self._connection.send_message(owner_chat, Outgoing(text=alert))

        if is_group and self._settings.anti_delete.notify_group:
            await self._sleep(1.0)
            notice = (
                "⚠️ *Message Deleted Alert*\n\n"
                "A message was deleted in this group.\n"
                f"Sender: {sender}\n"
                f"Content: {_truncate(content, 100)}"
            )
            await self._connection.send_message(message.chat_id, Outgoing(text=notice))
