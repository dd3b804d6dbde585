"""Tests for SilvaApp startup phases and lifecycle."""

from __future__ import annotations

import asyncio
import base64
import gzip
import json
import logging

import pytest
from conftest import FakeFactory

from silvabot.builtins import BUILTIN_SOURCE
from silvabot.config import SessionConfig
from silvabot.connection import ConnectionState
from silvabot.errors import DuplicateCommandError, PluginDirectoryError

MENU_PLUGIN = """
from silvabot.plugins import Command, hookimpl

async def menu(ctx):
    pass

@hookimpl
def silvabot_commands():
    return [Command(names=("mymenu", "menu"), execute=menu)]
"""

SHADOW_PLUGIN = """
from silvabot.plugins import Command, hookimpl

async def pingall(ctx):
    pass

@hookimpl
def silvabot_commands():
    return [Command(names=("pingall",), pattern=r"ping.*", execute=pingall)]
"""

ECHO_PLUGIN = """
from silvabot.plugins import Command, hookimpl

async def echo(ctx):
    await ctx.reply(" ".join(ctx.args))

@hookimpl
def silvabot_commands():
    return [Command(names=("echo",), execute=echo)]
"""


def _token(data: bytes, magic: str = "Silva") -> str:
    return f"{magic}~{base64.b64encode(gzip.compress(data)).decode()}"


class TestLoadPlugins:
    def test_loads_and_freezes(self, make_app, settings):
        (settings.plugins_dir / "echo.py").write_text(ECHO_PLUGIN)
        app = make_app()

        app.load_plugins()

        assert app.registry.frozen
        assert app.registry.resolve("echo") is not None

    def test_clash_with_builtin_is_fatal(self, make_app, settings):
        (settings.plugins_dir / "mymenu.py").write_text(MENU_PLUGIN)
        app = make_app()

        with pytest.raises(DuplicateCommandError) as exc_info:
            app.load_plugins()

        assert exc_info.value.name == "menu"
        assert exc_info.value.existing == BUILTIN_SOURCE
        assert exc_info.value.incoming == "mymenu"

    def test_pattern_claiming_builtin_is_fatal(self, make_app, settings):
        (settings.plugins_dir / "shadow.py").write_text(SHADOW_PLUGIN)
        app = make_app()

        with pytest.raises(DuplicateCommandError) as exc_info:
            app.load_plugins()

        assert exc_info.value.name == "ping"
        assert exc_info.value.existing == BUILTIN_SOURCE
        assert exc_info.value.incoming == "shadow"

    def test_missing_directory_is_fatal(self, make_app, settings):
        settings.plugins_dir.rmdir()
        app = make_app()

        with pytest.raises(PluginDirectoryError):
            app.load_plugins()


class TestPrepareSession:
    def test_token_written_to_credentials(self, make_app, settings):
        settings.__dict__["session"] = SessionConfig(session_id=_token(b"sqlite-bytes"))
        app = make_app()

        app.prepare_session()

        assert settings.credentials_path.read_bytes() == b"sqlite-bytes"

    def test_new_token_drops_previous_creds_sidecar(self, make_app, settings):
        settings.creds_sidecar_path.parent.mkdir(parents=True)
        settings.creds_sidecar_path.write_text('{"me": "111@s.whatsapp.net"}')
        settings.__dict__["session"] = SessionConfig(session_id=_token(b"new-session"))
        app = make_app()

        app.prepare_session()
        app.connection.persist_credentials({"platform": "android"})

        assert settings.credentials_path.read_bytes() == b"new-session"
        assert json.loads(settings.creds_sidecar_path.read_text()) == {"platform": "android"}

    def test_bad_token_logged_not_raised(self, make_app, settings, caplog):
        settings.__dict__["session"] = SessionConfig(session_id="Other~abc")
        app = make_app()

        with caplog.at_level(logging.ERROR):
            app.prepare_session()

        assert not settings.credentials_path.exists()
        assert "Session token rejected" in caplog.text

    def test_no_token_keeps_existing_credentials(self, make_app, settings):
        settings.credentials_path.parent.mkdir(parents=True)
        settings.credentials_path.write_bytes(b"old")
        app = make_app()

        app.prepare_session()

        assert settings.credentials_path.read_bytes() == b"old"


@pytest.mark.asyncio
class TestLifecycle:
    async def test_run_until_shutdown(self, make_app):
        factory = FakeFactory()
        app = make_app(f=factory)

        task = asyncio.create_task(app.run())
        for _ in range(200):
            if factory.sockets:
                break
            await asyncio.sleep(0)
        assert factory.sockets

        await app.shutdown("SIGTERM")

        assert await asyncio.wait_for(task, timeout=5) == 0
        assert app.connection.state == ConnectionState.CLOSED
        assert factory.latest.closed
        assert app.registry.frozen

    async def test_uptime_increases(self, make_app):
        app = make_app()
        first = app.uptime()
        await asyncio.sleep(0.01)
        assert app.uptime() > first
