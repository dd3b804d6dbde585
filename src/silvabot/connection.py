"""Connection supervision.

``ConnectionManager`` owns the one live transport socket. It creates it
through a ``SocketFactory``, re-binds every subscriber whenever the socket is
replaced and reconnects with exponential backoff until the session is logged
out (terminal) or the process stops.

States::

    DISCONNECTED → CONNECTING → OPEN → RECONNECTING → CONNECTING → ...
                                   └──→ CLOSED (logged out / stopped)
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import time
from collections.abc import Awaitable, Callable
from dataclasses import replace
from enum import StrEnum
from typing import Any

import qrcode

from silvabot.cache import RetentionCache
from silvabot.config import Settings
from silvabot.event_bus import (
    ConnectionUpdate,
    CredsUpdate,
    GroupsUpdate,
    MessagesUpsert,
)
from silvabot.logger import logger
from silvabot.transport import Socket, SocketCapabilities, SocketFactory
from silvabot.types import (
    BotIdentity,
    DisconnectReason,
    GroupMetadata,
    InboundMessage,
    MessageKey,
    Outgoing,
    Receipt,
    user_jid,
)
from silvabot.utils import create_background_task, read_json, write_json_atomic

type Binder = Callable[[Socket], None]


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


def backoff_delay(attempt: int, *, base: float, maximum: float) -> float:
    """Delay before reconnect ``attempt`` (1-based): base, 2·base, 4·base, ... capped."""
    if attempt < 1:
        return 0.0
    return min(base * 2 ** (attempt - 1), maximum)


class ConnectionManager:
    def __init__(
        self,
        settings: Settings,
        factory: SocketFactory,
        *,
        version: str = "",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._factory = factory
        self._version = version
        self._sleep = sleep
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._socket: Socket | None = None
        self._identity: BotIdentity | None = None
        self._binders: list[Binder] = []
        self._attempts = 0
        self._has_opened = False
        self._stopping = False
        self._closed: asyncio.Future[DisconnectReason | None] | None = None
        self._pair_requested = False

        conn = settings.connection
        self._group_cache: RetentionCache[str, GroupMetadata] = RetentionCache(
            256, max_age=conn.group_metadata_ttl, clock=clock
        )
        self._message_store: RetentionCache[tuple[str, str], InboundMessage] = RetentionCache(
            conn.message_store_size
        )
        self.capabilities = SocketCapabilities(
            get_group_metadata=self.group_metadata,
            get_message=self.get_message,
            persist_credentials=self.persist_credentials,
        )

    # --- Introspection ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def socket(self) -> Socket | None:
        return self._socket

    @property
    def identity(self) -> BotIdentity | None:
        return self._identity

    @property
    def attempts(self) -> int:
        return self._attempts

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug("Connection state changed", old=self._state.value, new=state.value)
        self._state = state

    def add_binder(self, binder: Binder) -> None:
        """Register a subscriber that is re-bound to every new socket."""
        self._binders.append(binder)
        if self._socket is not None:
            binder(self._socket)

    # --- Lifecycle ---

    async def open(self) -> Socket:
        """Create a fresh socket, bind every subscriber and start connecting."""
        await self._teardown()
        self._set_state(ConnectionState.CONNECTING)
        self._pair_requested = False

        version = await self._factory.fetch_version()
        socket = self._factory.create(self.capabilities, version=version)
        self._socket = socket

        socket.ev.subscribe(ConnectionUpdate, self._on_connection_update)
        socket.ev.subscribe(CredsUpdate, self._on_creds_update)
        socket.ev.subscribe(GroupsUpdate, self._on_groups_update)
        socket.ev.subscribe(MessagesUpsert, self._remember_messages)
        for binder in self._binders:
            binder(socket)

        logger.info("Connecting to WhatsApp", version=version or "default")
        await socket.connect()
        return socket

    async def run(self) -> DisconnectReason | None:
        """Supervise the connection. Returns LOGGED_OUT or None when stopped."""
        conn = self._settings.connection
        self._stopping = False
        while not self._stopping:
            reason = await self._run_once()
            if self._stopping:
                break
            if reason == DisconnectReason.LOGGED_OUT:
                await self._handle_logged_out()
                return reason

            self._attempts += 1
            delay = backoff_delay(
                self._attempts, base=conn.base_backoff_seconds, maximum=conn.max_backoff_seconds
            )
            self._set_state(ConnectionState.RECONNECTING)
            if self._attempts >= conn.alert_after_attempts:
                logger.error(
                    "WhatsApp connection keeps failing",
                    attempts=self._attempts,
                    reason=str(reason),
                    retry_in=delay,
                )
            else:
                logger.warning(
                    "Connection closed, reconnecting",
                    reason=str(reason),
                    attempt=self._attempts,
                    retry_in=delay,
                )
            await self._sleep(delay)

        await self._teardown()
        self._set_state(ConnectionState.CLOSED)
        return None

    async def _run_once(self) -> DisconnectReason | None:
        self._closed = asyncio.get_running_loop().create_future()
        try:
            await self.open()
        except Exception as exc:
            logger.warning("Connect attempt failed", err=str(exc))
            return DisconnectReason.CONNECTION_FAILED
        return await self._closed

    async def stop(self) -> None:
        self._stopping = True
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)
        await self._teardown()
        self._set_state(ConnectionState.CLOSED)

    async def _teardown(self) -> None:
        socket, self._socket = self._socket, None
        if socket is None:
            return
        socket.ev.clear()
        try:
            await socket.close()
        except Exception as exc:
            logger.debug("Error closing old socket", err=str(exc))

    async def _handle_logged_out(self) -> None:
        await self._teardown()
        self._set_state(ConnectionState.CLOSED)
        for path in (self._settings.credentials_path, self._settings.creds_sidecar_path):
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
        logger.error(
            "Logged out from WhatsApp. Credentials removed; run 'silvabot auth' "
            "or set a new SESSION__SESSION_ID to re-authenticate."
        )

    # --- Event handlers ---

    async def _on_connection_update(self, event: ConnectionUpdate) -> None:
        if event.qr:
            await self._on_qr(event.qr)

        if event.state == "open":
            socket = self._socket
            self._identity = socket.user if socket is not None else None
            self._attempts = 0
            self._set_state(ConnectionState.OPEN)
            logger.info(
                "Connected to WhatsApp",
                user=self._identity.id if self._identity else None,
            )
            if not self._has_opened:
                self._has_opened = True
                if self._settings.connection.notify_owner_on_connect:
                    create_background_task(self._notify_owner(), name="owner-notify")

        elif event.state == "close":
            self._set_state(ConnectionState.DISCONNECTED)
            reason = event.reason or DisconnectReason.CONNECTION_LOST
            logger.info("Disconnected from WhatsApp", reason=str(reason))
            if self._closed is not None and not self._closed.done():
                self._closed.set_result(reason)

    async def _on_qr(self, qr: str) -> None:
        phone = self._settings.pairing.phone_number
        socket = self._socket
        if phone and socket is not None:
            if self._pair_requested:
                return
            self._pair_requested = True
            try:
                code = await socket.request_pair_code(phone)
            except Exception as exc:
                logger.error("Pair code request failed, falling back to QR", err=str(exc))
            else:
                logger.warning("Enter this pair code in WhatsApp > Linked Devices", code=code)
                return
        logger.warning("WhatsApp authentication required, scan the QR code below")
        print(render_qr(qr), flush=True)

    async def _on_creds_update(self, event: CredsUpdate) -> None:
        self.persist_credentials(event.delta)

    async def _on_groups_update(self, event: GroupsUpdate) -> None:
        for jid in event.jids:
            self._group_cache.pop(jid)

    async def _remember_messages(self, event: MessagesUpsert) -> None:
        for message in event.messages:
            self._message_store.put((message.chat_id, message.id), message)

    async def _notify_owner(self) -> None:
        bot = self._settings.bot
        if bot.owner_numbers:
            target = user_jid(bot.owner_numbers[0])
        elif self._identity is not None:
            target = self._identity.jid
        else:
            return
        text = self._settings.messages.connected.format(
            name=bot.name, version=self._version, prefix=bot.prefix
        )
        await self.send_message(target, Outgoing(text=text))

    # --- Capabilities ---

    def persist_credentials(self, delta: dict[str, Any]) -> None:
        """Merge a credential delta into the JSON sidecar (atomic write)."""
        if not delta:
            return
        path = self._settings.creds_sidecar_path
        creds = read_json(path)
        creds.update(delta)
        write_json_atomic(path, creds)
        logger.debug("Credentials persisted", keys=sorted(delta))

    def get_message(self, key: MessageKey) -> InboundMessage | None:
        return self._message_store.get((key.chat_id, key.id))

    async def group_metadata(self, jid: str) -> GroupMetadata | None:
        """Cached group metadata. None when unavailable."""
        self._group_cache.prune()
        cached = self._group_cache.get(jid)
        if cached is not None:
            return cached
        socket = self._socket
        if socket is None:
            return None
        try:
            metadata = await socket.group_metadata(jid)
        except Exception as exc:
            logger.warning("Failed to fetch group metadata", jid=jid, err=str(exc))
            return None
        self._group_cache.put(jid, metadata)
        return metadata

    # --- Outbound ---

    def default_context(self) -> dict[str, Any]:
        ctx = self._settings.context
        info: dict[str, Any] = {
            "forwarding_score": ctx.forwarding_score,
            "is_forwarded": ctx.is_forwarded,
        }
        if ctx.newsletter_jid:
            info["newsletter"] = {
                "jid": ctx.newsletter_jid,
                "name": ctx.newsletter_name,
                "server_message_id": ctx.server_message_id,
            }
        return info

    async def send_message(
        self, chat_id: str, content: Outgoing, *, quoted: InboundMessage | None = None
    ) -> Receipt | None:
        """Send with the default context merged in. Failures are logged, never raised."""
        socket = self._socket
        if socket is None:
            logger.warning("No active socket, message dropped", chat_id=chat_id)
            return None
        content = replace(content, context_info={**self.default_context(), **content.context_info})
        try:
            return await socket.send_message(chat_id, content, quoted=quoted)
        except Exception as exc:
            logger.warning("Failed to send message", chat_id=chat_id, err=str(exc))
            return None


def render_qr(data: str) -> str:
    qr = qrcode.QRCode(border=1)
    qr.add_data(data)
    qr.make()
    buf = io.StringIO()
    qr.print_ascii(out=buf, invert=True)
    return buf.getvalue()
