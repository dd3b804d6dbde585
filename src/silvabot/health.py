"""Embedded HTTP server for health checks.

Keeps hosting platforms that probe a port (Heroku, Render, Koyeb) happy and
gives operators a quick view of the connection state.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from aiohttp import web

from silvabot.logger import logger

if TYPE_CHECKING:
    from silvabot.app import SilvaApp


silva_key: web.AppKey[SilvaApp] = web.AppKey("silva")


async def _handle_health(request: web.Request) -> web.Response:
    app = request.app[silva_key]
    return web.json_response(
        {
            "status": "online",
            "bot": app.settings.bot.name,
            "version": app.version,
            "state": app.connection.state.value,
            "uptime": round(app.uptime(), 3),
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )


def create_health_app(app: SilvaApp) -> web.Application:
    web_app = web.Application()
    web_app[silva_key] = app
    web_app.router.add_get("/", _handle_health)
    web_app.router.add_get("/health", _handle_health)
    return web_app


async def start_health_server(app: SilvaApp) -> web.AppRunner:
    """Create, start, and return the HTTP server runner."""
    server = app.settings.server
    runner = web.AppRunner(create_health_app(app))
    await runner.setup()
    site = web.TCPSite(runner, server.host, server.port)
    await site.start()
    logger.info("Health check server listening", host=server.host, port=server.port)
    return runner
