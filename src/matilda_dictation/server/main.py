"""Server startup for the dictation WebSocket API.

This module provides:
- start_server: Async method to start the WebSocket server
- main: Main entry point function
"""

import asyncio
import sys
import traceback
from typing import TYPE_CHECKING

import websockets

from ..core.config import setup_logging
from .health import start_health_server

if TYPE_CHECKING:
    from .core import DictationWebSocketServer

logger = setup_logging(__name__, log_filename="server.txt")


async def start_server(
    server: "DictationWebSocketServer",
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Start the WebSocket server and its health endpoint.

    Args:
        server: The DictationWebSocketServer instance
        host: Host to bind to (optional, uses the configured bind host)
        port: Port to bind to (optional, uses the configured port)
    """
    server_host = host or server.bind_host
    server_port = port or server.port

    # Health lives on port+1, falling back to port+100
    health_port = server_port + 1
    try:
        server._health_runner = await start_health_server(server, server_host, health_port)
    except OSError as e:
        logger.warning(f"Failed to start health server on port {health_port}: {e}")
        try:
            health_port = server_port + 100
            server._health_runner = await start_health_server(server, server_host, health_port)
        except OSError as e2:
            logger.warning(f"Health server disabled: {e2}")

    logger.info(f"Starting WebSocket server on ws://{server_host}:{server_port}")
    logger.info(f"Primary vendor: {server.config.vendor}")
    if server.config.backup_enabled:
        logger.info(f"Backup vendor: {server.config.backup_vendor} ({server.config.failover_mode})")
    if not server.adapter.enabled:
        logger.warning("External speech API is disabled; start requests will be refused")

    server_kwargs = {
        "ping_interval": 30,
        "ping_timeout": 10,
        "max_size": server.config.max_message_mb * 1024 * 1024,
    }

    try:
        async with websockets.serve(server.handle_client, server_host, server_port, **server_kwargs):
            logger.info("Matilda Dictation server is ready for connections!")
            await asyncio.Future()
    finally:
        await server.shutdown()


def main(host: str | None = None, port: int | None = None) -> None:
    """Main function to start the server."""
    from .core import DictationWebSocketServer

    server = DictationWebSocketServer()

    try:
        asyncio.run(server.start_server(host, port))
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        logger.exception(traceback.format_exc())
        sys.exit(1)
