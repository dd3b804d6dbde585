"""Tests for connection supervision, socket replacement and outbound sends."""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import OWNER, FakeFactory, make_message, make_settings, settle

from silvabot.config import ConnectionConfig, ContextConfig, PairingConfig
from silvabot.connection import ConnectionManager, ConnectionState, backoff_delay
from silvabot.event_bus import (
    ConnectionUpdate,
    CredsUpdate,
    GroupsUpdate,
    MessagesUpsert,
)
from silvabot.types import DisconnectReason, GroupMetadata, MessageKey, Outgoing

GROUP = "120363000000000001@g.us"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def _settings(tmp_path, **overrides):
    return make_settings(
        store_dir=tmp_path / "store",
        credentials_path=tmp_path / "store" / "neonize.db",
        creds_sidecar_path=tmp_path / "store" / "creds.json",
        **overrides,
    )


async def _wait_for(predicate, rounds: int = 500) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class TestBackoffDelay:
    def test_doubles_then_caps(self):
        delays = [backoff_delay(n, base=2, maximum=30) for n in range(1, 7)]
        assert delays == [2, 4, 8, 16, 30, 30]

    def test_non_decreasing(self):
        delays = [backoff_delay(n, base=1.5, maximum=120) for n in range(1, 20)]
        assert delays == sorted(delays)
        assert max(delays) == 120


@pytest.mark.asyncio
class TestSupervisor:
    async def test_backoff_grows_until_connect_succeeds(self, tmp_path):
        settings = _settings(
            tmp_path,
            connection=ConnectionConfig(
                base_backoff_seconds=1,
                max_backoff_seconds=5,
                notify_owner_on_connect=False,
            ),
        )
        factory = FakeFactory(fail_connects=4)
        sleep = RecordingSleep()
        manager = ConnectionManager(settings, factory, sleep=sleep)

        task = asyncio.create_task(manager.run())
        await _wait_for(lambda: len(factory.sockets) == 5 and factory.latest.connected)

        assert sleep.delays == [1, 2, 4, 5]
        assert manager.state == ConnectionState.CONNECTING

        factory.latest.ev.emit(ConnectionUpdate(state="open"))
        await settle()
        assert manager.state == ConnectionState.OPEN
        assert manager.attempts == 0

        await manager.stop()
        assert await task is None
        assert manager.state == ConnectionState.CLOSED

    async def test_lost_connection_reconnects_with_new_socket(self, tmp_path):
        factory = FakeFactory()
        manager = ConnectionManager(_settings(tmp_path), factory, sleep=RecordingSleep())
        task = asyncio.create_task(manager.run())
        await _wait_for(lambda: len(factory.sockets) == 1 and factory.latest.connected)
        first = factory.latest

        first.ev.emit(ConnectionUpdate(state="close", reason=DisconnectReason.CONNECTION_LOST))
        await _wait_for(lambda: len(factory.sockets) == 2)

        assert first.closed
        assert first.ev.listener_count() == 0
        assert manager.socket is factory.latest

        await manager.stop()
        await task

    async def test_logged_out_is_terminal_and_clears_credentials(self, tmp_path):
        settings = _settings(tmp_path)
        settings.store_dir.mkdir(parents=True)
        settings.credentials_path.write_bytes(b"creds")
        settings.creds_sidecar_path.write_text("{}")
        factory = FakeFactory()
        sleep = RecordingSleep()
        manager = ConnectionManager(settings, factory, sleep=sleep)

        task = asyncio.create_task(manager.run())
        await _wait_for(lambda: factory.sockets and factory.latest.connected)
        factory.latest.ev.emit(ConnectionUpdate(state="close", reason=DisconnectReason.LOGGED_OUT))

        assert await task == DisconnectReason.LOGGED_OUT
        assert manager.state == ConnectionState.CLOSED
        assert not settings.credentials_path.exists()
        assert not settings.creds_sidecar_path.exists()
        assert len(factory.sockets) == 1
        assert sleep.delays == []

    async def test_factory_receives_fetched_version(self, tmp_path):
        factory = FakeFactory()
        manager = ConnectionManager(_settings(tmp_path), factory)

        await manager.open()

        assert factory.versions == ["2.3000.1"]
        assert factory.capabilities is manager.capabilities


@pytest.mark.asyncio
class TestRebinding:
    async def test_binders_run_for_every_socket(self, tmp_path):
        factory = FakeFactory()
        manager = ConnectionManager(_settings(tmp_path), factory)
        bound: list = []
        manager.add_binder(bound.append)

        first = await manager.open()
        second = await manager.open()

        assert bound == [first, second]
        assert first.ev.listener_count() == 0
        assert first.closed
        assert second.ev.listener_count(MessagesUpsert) >= 1

    async def test_late_binder_binds_current_socket(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        socket = await manager.open()
        bound: list = []

        manager.add_binder(bound.append)

        assert bound == [socket]

    async def test_identity_set_on_open(self, tmp_path):
        factory = FakeFactory()
        manager = ConnectionManager(_settings(tmp_path), factory)
        socket = await manager.open()

        socket.ev.emit(ConnectionUpdate(state="open"))
        await settle()

        assert manager.identity is factory.user


@pytest.mark.asyncio
class TestOutbound:
    async def test_default_context_merged(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        socket = await manager.open()

        receipt = await manager.send_message(
            "254711111111@s.whatsapp.net",
            Outgoing(text="hi", context_info={"forwarding_score": 1}),
        )

        assert receipt is not None
        info = socket.sent[0].content.context_info
        assert info["forwarding_score"] == 1
        assert info["is_forwarded"] is True
        assert info["newsletter"]["jid"] == "120363200367779016@newsletter"
        assert info["newsletter"]["server_message_id"] == 144

    async def test_newsletter_context_optional(self, tmp_path):
        settings = _settings(tmp_path, context=ContextConfig(newsletter_jid=None))
        manager = ConnectionManager(settings, FakeFactory())

        assert "newsletter" not in manager.default_context()

    async def test_send_failure_returns_none(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        socket = await manager.open()
        socket.fail_send = True

        assert await manager.send_message("254711111111@s.whatsapp.net", Outgoing(text="x")) is None

    async def test_send_without_socket_returns_none(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())

        assert await manager.send_message("254711111111@s.whatsapp.net", Outgoing(text="x")) is None

    async def test_owner_notified_once(self, tmp_path):
        settings = _settings(
            tmp_path, connection=ConnectionConfig(notify_owner_on_connect=True)
        )
        manager = ConnectionManager(settings, FakeFactory(), version="3.0.0")
        socket = await manager.open()

        socket.ev.emit(ConnectionUpdate(state="open"))
        await settle()
        socket.ev.emit(ConnectionUpdate(state="open"))
        await settle()

        owner_chat = f"{OWNER}@s.whatsapp.net"
        assert socket.texts(owner_chat) == ["✅ Silva MD connected (v3.0.0). Prefix: ."]


@pytest.mark.asyncio
class TestCapabilities:
    async def test_group_metadata_cached(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        socket = await manager.open()
        socket.groups[GROUP] = GroupMetadata(id=GROUP, subject="Team")

        first = await manager.group_metadata(GROUP)
        second = await manager.group_metadata(GROUP)

        assert first is second
        assert socket.group_fetches == 1

    async def test_groups_update_invalidates(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        socket = await manager.open()
        socket.groups[GROUP] = GroupMetadata(id=GROUP, subject="Team")
        await manager.group_metadata(GROUP)

        socket.groups[GROUP] = GroupMetadata(id=GROUP, subject="Renamed")
        socket.ev.emit(GroupsUpdate(jids=[GROUP]))
        await settle()

        assert (await manager.group_metadata(GROUP)).subject == "Renamed"
        assert socket.group_fetches == 2

    async def test_group_metadata_expires(self, tmp_path):
        clock = FakeClock()
        settings = _settings(tmp_path, connection=ConnectionConfig(group_metadata_ttl=60))
        manager = ConnectionManager(settings, FakeFactory(), clock=clock)
        socket = await manager.open()
        socket.groups[GROUP] = GroupMetadata(id=GROUP)

        await manager.group_metadata(GROUP)
        clock.now = 61
        await manager.group_metadata(GROUP)

        assert socket.group_fetches == 2

    async def test_group_metadata_failure_is_none(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        await manager.open()

        assert await manager.group_metadata("999@g.us") is None

    async def test_credentials_delta_merged(self, tmp_path):
        settings = _settings(tmp_path)
        manager = ConnectionManager(settings, FakeFactory())
        socket = await manager.open()

        socket.ev.emit(CredsUpdate(delta={"me": {"id": "254700000001"}}))
        await settle()
        socket.ev.emit(CredsUpdate(delta={"platform": "android"}))
        await settle()

        stored = json.loads(settings.creds_sidecar_path.read_text())
        assert stored == {"me": {"id": "254700000001"}, "platform": "android"}

    async def test_get_message_from_store(self, tmp_path):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        socket = await manager.open()
        message = make_message("remember me")

        socket.ev.emit(MessagesUpsert(messages=[message]))
        await settle()

        key = MessageKey(chat_id=message.chat_id, id=message.id)
        assert manager.get_message(key) is message
        assert manager.get_message(MessageKey(chat_id=message.chat_id, id="nope")) is None


@pytest.mark.asyncio
class TestPairing:
    async def test_pair_code_requested_once_per_socket(self, tmp_path):
        settings = _settings(tmp_path, pairing=PairingConfig(phone_number="254700143167"))
        manager = ConnectionManager(settings, FakeFactory())
        socket = await manager.open()

        socket.ev.emit(ConnectionUpdate(state="connecting", qr="2@abc"))
        await settle()
        socket.ev.emit(ConnectionUpdate(state="connecting", qr="2@def"))
        await settle()

        assert socket.pair_requests == ["254700143167"]

    async def test_qr_printed_without_phone(self, tmp_path, capsys):
        manager = ConnectionManager(_settings(tmp_path), FakeFactory())
        socket = await manager.open()

        socket.ev.emit(ConnectionUpdate(state="connecting", qr="2@abc"))
        await settle()

        assert socket.pair_requests == []
        assert capsys.readouterr().out.strip()
