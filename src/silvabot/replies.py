"""Reply correlation for multi-step commands.

A command sends a prompt, then waits for the user to reply *to that prompt*
(WhatsApp quote). Pending waits live in one table keyed by
``(chat_id, prompt_id)``; the dispatcher offers every inbound message to the
table before treating it as a command. A single sweep task resolves overdue
waits with ``None`` so nothing lingers after its deadline.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass

from silvabot.logger import logger
from silvabot.permissions import normalize_id
from silvabot.types import InboundMessage


@dataclass
class _PendingReply:
    future: asyncio.Future[InboundMessage | None]
    deadline: float
    sender_id: str | None


class ReplyCollector:
    def __init__(
        self,
        *,
        sweep_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pending: dict[tuple[str, str], _PendingReply] = {}
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._pending)

    def pending_keys(self) -> list[tuple[str, str]]:
        return list(self._pending)

    async def wait_for_reply(
        self,
        chat_id: str,
        prompt_id: str,
        *,
        sender_id: str | None = None,
        timeout: float = 120.0,
    ) -> InboundMessage | None:
        """Wait for a message in ``chat_id`` quoting ``prompt_id``.

        Restricted to ``sender_id`` when given. Returns None on expiry.
        """
        key = (chat_id, prompt_id)
        if key in self._pending:
            raise RuntimeError(f"Already waiting for a reply to {prompt_id} in {chat_id}")

        future: asyncio.Future[InboundMessage | None] = asyncio.get_running_loop().create_future()
        self._pending[key] = _PendingReply(
            future=future,
            deadline=self._clock() + timeout,
            sender_id=normalize_id(sender_id) if sender_id else None,
        )
        try:
            # The sweep normally expires the entry; wait_for is the backstop
            # when no sweeper is running.
            return await asyncio.wait_for(future, timeout + self._sweep_interval)
        except TimeoutError:
            return None
        finally:
            self._pending.pop(key, None)

    def offer(self, message: InboundMessage) -> bool:
        """Hand ``message`` to a pending wait. True if it was consumed."""
        quoted = message.content.quoted_id
        if not quoted:
            return False
        entry = self._pending.get((message.chat_id, quoted))
        if entry is None or entry.future.done():
            return False
        if entry.sender_id and normalize_id(message.sender_id) != entry.sender_id:
            return False
        entry.future.set_result(message)
        return True

    def sweep(self, now: float | None = None) -> int:
        """Resolve overdue waits with None. Returns how many expired."""
        now = self._clock() if now is None else now
        expired = 0
        for entry in list(self._pending.values()):
            if entry.deadline <= now and not entry.future.done():
                entry.future.set_result(None)
                expired += 1
        if expired:
            logger.debug("Expired pending replies", count=expired)
        return expired

    # --- Sweep task lifecycle ---

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="reply-sweeper")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        for entry in self._pending.values():
            if not entry.future.done():
                entry.future.set_result(None)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()
