"""Sending helpers for the WebSocket connection."""

import websockets
from pydantic import BaseModel

from ..core.config import setup_logging
from ..schemas.responses import ErrorMessage

logger = setup_logging(__name__, log_filename="server.txt")


async def send_message(websocket, message: BaseModel) -> bool:
    """Send a schema message to the client.

    Returns:
        False if the connection was already closed

    """
    try:
        await websocket.send(message.model_dump_json())
        return True
    except websockets.exceptions.ConnectionClosed as e:
        logger.debug(f"Connection closed while sending {getattr(message, 'type', 'message')}: {e}")
        return False


async def send_error(websocket, message: str) -> None:
    """Send error message to client.

    Args:
        websocket: The WebSocket connection
        message: Error message to send

    """
    await send_message(websocket, ErrorMessage(message=message))
