"""Message handlers for the external speech WebSocket API.

Every handler has the signature ``(server, websocket, data, client_ip, client_id)``
and is registered in ``DictationWebSocketServer.message_handlers``.
"""

import base64
import binascii
import time
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ..adapters.multi_session import SpeechConfig
from ..core.config import setup_logging
from ..schemas.requests import (
    PcmChunkRequest,
    SessionRequest,
    StartPcmSessionRequest,
    StartSessionRequest,
)
from ..schemas.responses import PongMessage, RecordingStatus, SessionStarted, VersionMessage
from .transport import send_error, send_message

if TYPE_CHECKING:
    from .core import DictationWebSocketServer

logger = setup_logging(__name__, log_filename="server.txt")


async def handle_ping(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    """Handle ping messages."""
    await send_message(websocket, PongMessage(timestamp=time.time()))


async def handle_get_version(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    await send_message(websocket, VersionMessage(version=server.adapter.get_version()))


async def handle_start_session(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    """Open a recording session for this client."""
    try:
        request = StartSessionRequest.model_validate(data)
    except ValidationError:
        await send_error(websocket, "Invalid start_session request")
        return

    callback = server.callback_for(websocket)
    session_id = await server.adapter.start_session(SpeechConfig(vendor_id=request.vendor_id), callback)
    await _reply_started(server, websocket, client_id, session_id)


async def handle_start_pcm_session(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    """Open a session fed by pcm_chunk messages."""
    try:
        request = StartPcmSessionRequest.model_validate(data)
    except ValidationError:
        await send_error(websocket, "Invalid start_pcm_session request")
        return

    callback = server.callback_for(websocket)
    session_id = await server.adapter.start_pcm_session(SpeechConfig(vendor_id=request.vendor_id), callback)
    await _reply_started(server, websocket, client_id, session_id)


async def handle_pcm_chunk(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    """Decode a base64 PCM chunk and push it into the session."""
    try:
        request = PcmChunkRequest.model_validate(data)
    except ValidationError:
        await send_error(websocket, "Invalid pcm_chunk request")
        return

    if not server.owns_session(client_id, request.session_id):
        await send_error(websocket, f"Unknown session: {request.session_id}")
        return

    try:
        pcm = base64.b64decode(request.audio_data, validate=True)
    except (binascii.Error, ValueError):
        await send_error(websocket, "Invalid audio data: expected base64 encoded PCM")
        return

    server.adapter.write_pcm(request.session_id, pcm, request.sample_rate, request.channels)


async def handle_finish_pcm(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    session_id = await _owned_session_id(server, websocket, data, client_id)
    if session_id is not None:
        await server.adapter.finish_pcm(session_id)


async def handle_stop_session(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    session_id = await _owned_session_id(server, websocket, data, client_id)
    if session_id is not None:
        await server.adapter.stop_session(session_id)


async def handle_cancel_session(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    session_id = await _owned_session_id(server, websocket, data, client_id)
    if session_id is not None:
        await server.adapter.cancel_session(session_id)
        server.client_sessions.get(client_id, set()).discard(session_id)


async def handle_is_recording(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    try:
        request = SessionRequest.model_validate(data)
    except ValidationError:
        await send_error(websocket, "Invalid is_recording request")
        return
    recording = server.adapter.is_recording(request.session_id)
    await send_message(websocket, RecordingStatus(session_id=request.session_id, recording=recording))


async def handle_is_any_recording(
    server: "DictationWebSocketServer",
    websocket,
    data: dict,
    client_ip: str,
    client_id: str,
) -> None:
    await send_message(websocket, RecordingStatus(recording=server.adapter.is_any_recording()))


async def _reply_started(server: "DictationWebSocketServer", websocket, client_id: str, session_id: int) -> None:
    success = session_id > 0
    if success:
        server.track_session(client_id, session_id)
        logger.debug(f"Client {client_id}: opened session {session_id}")
    else:
        logger.info(f"Client {client_id}: start refused with code {session_id}")
    await send_message(websocket, SessionStarted(session_id=session_id, success=success))


async def _owned_session_id(server: "DictationWebSocketServer", websocket, data: dict, client_id: str) -> int | None:
    try:
        request = SessionRequest.model_validate(data)
    except ValidationError:
        await send_error(websocket, f"Invalid {data.get('type')} request")
        return None

    if not server.owns_session(client_id, request.session_id):
        await send_error(websocket, f"Unknown session: {request.session_id}")
        return None
    return request.session_id
