"""Status (stories) automation: view, react, reply and save."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from silvabot.cache import RetentionCache
from silvabot.config import Settings
from silvabot.event_bus import MessagesUpsert
from silvabot.logger import logger
from silvabot.types import STATUS_BROADCAST, InboundMessage, Outgoing

if TYPE_CHECKING:
    from silvabot.connection import ConnectionManager
    from silvabot.transport import Socket

_SAVEABLE_MEDIA = ("image", "video", "audio")


class StatusHandler:
    def __init__(
        self,
        settings: Settings,
        connection: ConnectionManager,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._connection = connection
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.seen: RetentionCache[str, bool] = RetentionCache(settings.status.max_tracked)

    def bind(self, socket: Socket) -> None:
        cfg = self._settings.status
        if cfg.auto_view or cfg.auto_react or cfg.auto_reply or cfg.auto_save:
            socket.ev.subscribe(MessagesUpsert, self._on_upsert)

    async def _on_upsert(self, event: MessagesUpsert) -> None:
        if event.type not in ("notify", "append"):
            return
        for message in event.messages:
            if message.chat_id != STATUS_BROADCAST or message.from_me:
                continue
            if not self.seen.add(message.id, True):
                continue
            try:
                await self.handle(message)
            except Exception:
                logger.exception("Status handler failed", status_id=message.id)

    async def handle(self, message: InboundMessage) -> None:
        socket = self._connection.socket
        if socket is None:
            return
        cfg = self._settings.status
        poster = message.sender_id
        logger.debug("Status update", poster=poster, status_id=message.id)

        if cfg.auto_view:
            try:
                await socket.read_messages([message])
                logger.info("Status viewed", poster=poster, status_id=message.id)
            except Exception as exc:
                logger.warning("Status view failed", err=str(exc))

        if cfg.auto_react and cfg.react_emojis:
            emoji = self._rng.choice(cfg.react_emojis)
            await self._sleep(cfg.react_delay)
            try:
                await socket.send_reaction(message, emoji)
                logger.info("Status reacted", poster=poster, emoji=emoji)
            except Exception as exc:
                logger.warning("Status react failed", err=str(exc))

        if cfg.auto_reply:
            await self._connection.send_message(
                poster,
                Outgoing(text=cfg.reply_message),
                quoted=message,
            )

        if cfg.auto_save:
            await self._save(socket, message)

    async def _save(self, socket: Socket, message: InboundMessage) -> None:
        identity = self._connection.identity
        if identity is None:
            return
        own_chat = identity.jid
        name = message.push_name or message.sender_id.split("@")[0]
        caption = f"AUTO STATUS SAVER\n\n🩵 Status From: {name}"
        content = message.content

        if content.kind in _SAVEABLE_MEDIA:
            try:
                data = await socket.download_media(message)
            except Exception as exc:
                logger.error("Status save failed", status_id=message.id, err=str(exc))
                return
            if content.text():
                caption = f"{caption}\n\n{content.text()}"
            await self._connection.send_message(
                own_chat, Outgoing(text=caption, media=data, media_kind=content.kind)
            )
        elif content.kind == "text" and content.text():
            await self._connection.send_message(own_chat, Outgoing(text=content.text()))
        else:
            logger.warning("Unsupported status type", kind=content.kind, status_id=message.id)
            return
        logger.info("Status saved", status_id=message.id)
