"""Application context.

``SilvaApp`` owns every long-lived collaborator (settings, registries,
connection manager, dispatcher, auxiliary handlers) and is handed explicitly
to whatever needs it; there are no module-level singletons past config.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time

from aiohttp import web

from silvabot import __version__
from silvabot.builtins import build_builtin_registry
from silvabot.config import Settings, get_settings
from silvabot.connection import ConnectionManager
from silvabot.dispatcher import MessageDispatcher
from silvabot.errors import DuplicateCommandError, SessionError
from silvabot.handlers import AntiDeleteHandler, NewsletterFollower, StatusHandler
from silvabot.health import start_health_server
from silvabot.logger import logger, set_level
from silvabot.plugins import PluginRegistry
from silvabot.replies import ReplyCollector
from silvabot.session import load_session
from silvabot.transport import SocketFactory
from silvabot.types import DisconnectReason


class SilvaApp:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        factory: SocketFactory | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.version = __version__
        self.started_at = time.monotonic()

        if factory is None:
            from silvabot.transport.whatsapp import NeonizeSocketFactory

            factory = NeonizeSocketFactory(self.settings)

        self.builtins = build_builtin_registry()
        self.registry = PluginRegistry(max_plugins=self.settings.bot.max_plugins)
        self.replies = ReplyCollector()
        self.connection = ConnectionManager(self.settings, factory, version=self.version)
        self.dispatcher = MessageDispatcher(self)
        self.anti_delete = AntiDeleteHandler(self.settings, self.connection)
        self.status = StatusHandler(self.settings, self.connection)
        self.newsletter = NewsletterFollower(self.settings)

        self.connection.add_binder(self.dispatcher.bind)
        self.connection.add_binder(self.anti_delete.bind)
        self.connection.add_binder(self.status.bind)
        self.connection.add_binder(self.newsletter.bind)

        self._http_runner: web.AppRunner | None = None
        self._shutting_down = False

    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    # --- Startup phases ---

    def prepare_session(self) -> None:
        """Decode SESSION_ID into the credential store, if one is configured."""
        s = self.settings
        token = s.session.session_id
        if token is None:
            if not s.credentials_path.exists():
                logger.warning("No session token and no stored credentials; pairing required")
            return
        try:
            load_session(
                token.get_secret_value(),
                s.credentials_path,
                magic=s.session.magic,
                sidecars=(s.creds_sidecar_path,),
            )
        except SessionError as exc:
            logger.error("Session token rejected, falling back to pairing", err=str(exc))

    def load_plugins(self) -> None:
        """Load plugin modules, reject clashes with built-ins and freeze the registry."""
        self.registry.load_all(self.settings.plugins_dir)
        for command in self.registry.commands:
            for name in command.names:
                builtin = self.builtins.resolve(name)
                if builtin is not None:
                    raise DuplicateCommandError(name, builtin.source, command.source)
            for name, builtin in self.builtins.mapping().items():
                if command.matches(name):
                    raise DuplicateCommandError(name, builtin.source, command.source)
        self.registry.freeze()

    # --- Run / shutdown ---

    async def run(self) -> int:
        """Start everything and supervise the connection. Returns the exit code."""
        set_level(self.settings.logging.effective_level)
        logger.info("Starting", bot=self.settings.bot.name, version=self.version)

        self.prepare_session()
        self.load_plugins()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self.shutdown(s.name)),
            )

        if self.settings.server.enabled:
            self._http_runner = await start_health_server(self)
        self.replies.start()

        try:
            reason = await self.connection.run()
        finally:
            await self._cleanup()

        if reason == DisconnectReason.LOGGED_OUT:
            logger.info("Stopped after logout")
        return 0

    async def shutdown(self, sig_name: str) -> None:
        """Graceful shutdown handler. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)
        await self.connection.stop()

    async def _cleanup(self) -> None:
        await self.replies.stop()
        if self._http_runner is not None:
            await self._http_runner.cleanup()
            self._http_runner = None
