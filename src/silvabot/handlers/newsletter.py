"""Follow the configured newsletters every time the connection opens."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from silvabot.config import Settings
from silvabot.event_bus import ConnectionUpdate
from silvabot.logger import logger

if TYPE_CHECKING:
    from silvabot.transport import Socket


class NewsletterFollower:
    def __init__(
        self,
        settings: Settings,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._sleep = sleep

    def bind(self, socket: Socket) -> None:
        if not self._settings.newsletter.follow or not self._settings.newsletter.ids:
            return

        async def on_update(event: ConnectionUpdate) -> None:
            if event.state == "open":
                await self.follow_all(socket)

        socket.ev.subscribe(ConnectionUpdate, on_update)

    async def follow_all(self, socket: Socket) -> int:
        """Follow each id in order, pausing between requests. Returns successes."""
        cfg = self._settings.newsletter
        followed = 0
        for index, jid in enumerate(cfg.ids):
            if index:
                await self._sleep(cfg.delay_seconds)
            try:
                await socket.newsletter_follow(jid)
            except Exception as exc:
                logger.warning("Failed to follow newsletter", jid=jid, err=str(exc))
                continue
            followed += 1
            logger.info("Followed newsletter", jid=jid)
        return followed
