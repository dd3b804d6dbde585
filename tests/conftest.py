"""Shared test fixtures for silvabot."""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass

import pytest

from silvabot.errors import SendError, TransportError
from silvabot.event_bus import ConnectionUpdate, EventBus
from silvabot.transport import SocketCapabilities
from silvabot.types import (
    BotIdentity,
    GroupMetadata,
    InboundMessage,
    MessageContent,
    Outgoing,
    Receipt,
    is_group_jid,
)

BOT_ID = "254700000001:5@s.whatsapp.net"
BOT_LID = "99990000111@lid"
OWNER = "254700143167"

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "project_root",
        "store_dir",
        "credentials_path",
        "creds_sidecar_path",
        "plugins_dir",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (bot, features, etc.) and cached property
    overrides (project_root, store_dir, plugins_dir, ...). Defaults keep
    tests quiet: no health server, no newsletter follow, no owner
    notification, no presence reset delay.

    Usage::

        s = make_settings(project_root=tmp_path)
        s = make_settings(bot=BotConfig(mode="private"))
    """
    from silvabot.config import (
        AntiDeleteConfig,
        BotConfig,
        ConnectionConfig,
        ContextConfig,
        FeaturesConfig,
        LoggingConfig,
        MessagesConfig,
        NewsletterConfig,
        PairingConfig,
        ServerConfig,
        SessionConfig,
        Settings,
        StatusConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "bot": BotConfig(owner_numbers=[OWNER]),
        "features": FeaturesConfig(auto_read=False, presence_reset_delay=0),
        "anti_delete": AntiDeleteConfig(),
        "status": StatusConfig(auto_view=False),
        "newsletter": NewsletterConfig(follow=False),
        "connection": ConnectionConfig(notify_owner_on_connect=False),
        "session": SessionConfig(),
        "pairing": PairingConfig(),
        "context": ContextConfig(),
        "messages": MessagesConfig(),
        "server": ServerConfig(enabled=False),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


async def settle(rounds: int = 10) -> None:
    """Let fire-and-forget event listeners run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_message(
    text: str = "hello",
    *,
    chat_id: str = "254711111111@s.whatsapp.net",
    sender_id: str | None = None,
    id: str | None = None,
    from_me: bool = False,
    kind: str = "text",
    quoted_id: str | None = None,
    quoted_sender: str | None = None,
    push_name: str = "Alice",
) -> InboundMessage:
    is_group = is_group_jid(chat_id)
    if sender_id is None:
        sender_id = "254722222222@s.whatsapp.net" if is_group else chat_id
    return InboundMessage(
        id=id or f"MSG{next(_ids)}",
        chat_id=chat_id,
        sender_id=sender_id,
        content=MessageContent(
            conversation=text if kind == "text" else "",
            image_caption=text if kind == "image" else "",
            kind=kind,
            quoted_id=quoted_id,
            quoted_sender=quoted_sender,
        ),
        timestamp=time.time(),
        is_group=is_group,
        push_name=push_name,
        from_me=from_me,
    )


_ids = itertools.count(1)


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------


@dataclass
class Sent:
    chat_id: str
    content: Outgoing
    quoted: InboundMessage | None


class FakeSocket:
    """In-memory ``Socket`` that records every call."""

    def __init__(self, *, user: BotIdentity | None = None, fail_connect: bool = False) -> None:
        self.ev = EventBus()
        self.user = user
        self.fail_connect = fail_connect
        self.connected = False
        self.closed = False
        self.fail_send = False
        self.fail_follow: set[str] = set()
        self.media = b"\x89PNG"
        self.groups: dict[str, GroupMetadata] = {}
        self.group_fetches = 0
        self.invite_codes: dict[str, GroupMetadata] = {}
        self.sent: list[Sent] = []
        self.reactions: list[tuple[str, str]] = []
        self.presences: list[tuple[str, str]] = []
        self.read: list[str] = []
        self.participant_updates: list[tuple[str, list[str], str]] = []
        self.followed: list[str] = []
        self.pair_requests: list[str] = []
        self._next_id = itertools.count(1)

    async def connect(self) -> None:
        if self.fail_connect:
            raise TransportError("handshake failed")
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def send_message(
        self, chat_id: str, content: Outgoing, *, quoted: InboundMessage | None = None
    ) -> Receipt:
        if self.fail_send:
            raise SendError("socket closed")
        self.sent.append(Sent(chat_id, content, quoted))
        return Receipt(id=f"OUT{next(self._next_id)}", chat_id=chat_id, timestamp=time.time())

    async def send_reaction(self, message: InboundMessage, emoji: str) -> None:
        self.reactions.append((message.id, emoji))

    async def send_presence(self, chat_id: str, presence: str) -> None:
        self.presences.append((chat_id, presence))

    async def read_messages(self, messages: list[InboundMessage]) -> None:
        self.read.extend(m.id for m in messages)

    async def group_metadata(self, chat_id: str) -> GroupMetadata:
        self.group_fetches += 1
        if chat_id not in self.groups:
            raise TransportError(f"not a participant of {chat_id}")
        return self.groups[chat_id]

    async def group_participants_update(
        self, chat_id: str, participants: list[str], action: str
    ) -> None:
        self.participant_updates.append((chat_id, participants, action))

    async def group_invite_code(self, chat_id: str) -> str:
        return "AbCdEf123"

    async def group_info_from_invite(self, code: str) -> GroupMetadata:
        if code not in self.invite_codes:
            raise TransportError("invite expired")
        return self.invite_codes[code]

    async def newsletter_follow(self, jid: str) -> None:
        if jid in self.fail_follow:
            raise TransportError("rate limited")
        self.followed.append(jid)

    async def download_media(self, message: InboundMessage) -> bytes:
        return self.media

    async def request_pair_code(self, phone_number: str) -> str:
        self.pair_requests.append(phone_number)
        return "ABCD-1234"

    # --- Test helpers ---

    def texts(self, chat_id: str | None = None) -> list[str]:
        return [s.content.text for s in self.sent if chat_id is None or s.chat_id == chat_id]


class FakeFactory:
    """``SocketFactory`` producing FakeSockets; the first ``fail_connects`` fail."""

    def __init__(self, *, fail_connects: int = 0, user: BotIdentity | None = None) -> None:
        self.fail_connects = fail_connects
        self.user = user or BotIdentity(id=BOT_ID, lid=BOT_LID, push_name="Silva")
        self.sockets: list[FakeSocket] = []
        self.capabilities: SocketCapabilities | None = None
        self.versions: list[str | None] = []

    async def fetch_version(self) -> str | None:
        return "2.3000.1"

    def create(self, capabilities: SocketCapabilities, *, version: str | None = None) -> FakeSocket:
        self.capabilities = capabilities
        self.versions.append(version)
        socket = FakeSocket(user=self.user, fail_connect=len(self.sockets) < self.fail_connects)
        self.sockets.append(socket)
        return socket

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


async def open_connection(app) -> FakeSocket:
    """Open a socket on ``app`` and report it as connected."""
    socket = await app.connection.open()
    socket.ev.emit(ConnectionUpdate(state="open"))
    await settle()
    return socket


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Built from pure defaults: no config.toml, no .env, no file I/O.
    """
    monkeypatch.setattr("silvabot.config._settings", make_settings())


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    plugins = tmp_path / "plugins"
    plugins.mkdir()
    return make_settings(
        project_root=tmp_path,
        store_dir=tmp_path / "store",
        credentials_path=tmp_path / "store" / "neonize.db",
        creds_sidecar_path=tmp_path / "store" / "creds.json",
        plugins_dir=plugins,
    )


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def make_app(settings, factory):
    """Factory fixture building a SilvaApp on the fake transport."""
    from silvabot.app import SilvaApp

    def _make(s=None, f=None) -> SilvaApp:
        return SilvaApp(s or settings, factory=f or factory)

    return _make
