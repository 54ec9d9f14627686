"""HTTP status endpoints for the dictation WebSocket server.

- ``GET /health``: liveness plus a summary of sessions and clients
- ``GET /sessions``: one entry per registered recognition session
"""

import time
from typing import TYPE_CHECKING

from aiohttp import web

from ..core.config import setup_logging

if TYPE_CHECKING:
    from .core import DictationWebSocketServer

logger = setup_logging(__name__, log_filename="server.txt")


async def health_handler(server: "DictationWebSocketServer", request: web.Request) -> web.Response:
    """HTTP health check endpoint for service monitoring."""
    return web.json_response(
        {
            "status": "healthy",
            "service": "dictation",
            "version": server.adapter.get_version(),
            "vendor": server.config.vendor,
            "backup_vendor": server.config.backup_vendor if server.config.backup_enabled else None,
            "external_api_enabled": server.adapter.enabled,
            "connected_clients": len(server.connected_clients),
            "active_sessions": len(server.service.registry),
            "recording": server.adapter.is_any_recording(),
            "timestamp": time.time(),
        }
    )


async def sessions_handler(server: "DictationWebSocketServer", request: web.Request) -> web.Response:
    owners = {sid: client_id for client_id, sids in server.client_sessions.items() for sid in sids}
    sessions = server.service.registry.describe()
    for entry in sessions:
        entry["client_id"] = owners.get(entry["session_id"])
    return web.json_response({"sessions": sessions, "timestamp": time.time()})


def build_status_app(server: "DictationWebSocketServer") -> web.Application:
    app = web.Application()
    app.router.add_get("/health", lambda req: health_handler(server, req))
    app.router.add_get("/sessions", lambda req: sessions_handler(server, req))
    return app


async def start_health_server(
    server: "DictationWebSocketServer",
    host: str,
    port: int,
) -> web.AppRunner:
    """Start the HTTP status server.

    Returns:
        The aiohttp AppRunner instance

    """
    runner = web.AppRunner(build_status_app(server))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"HTTP status endpoints available at http://{host}:{port}/health and /sessions")
    return runner
