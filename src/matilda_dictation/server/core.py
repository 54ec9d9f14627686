"""Core WebSocket server class for the external speech API."""

import asyncio
import json
import traceback
import uuid

import websockets

from ..adapters.multi_session import MultiSessionAdapter
from ..core.config import ConfigLoader, get_config, setup_logging
from ..recognition.service import RecognitionService
from ..schemas.responses import WelcomeMessage
from . import handlers
from .callback import WebSocketCallback
from .transport import send_error, send_message

logger = setup_logging(__name__, log_filename="server.txt")


class DictationWebSocketServer:
    """Exposes the multi-session adapter to WebSocket clients.

    Sessions opened by a client belong to that connection; they are canceled
    when the client disconnects.
    """

    def __init__(
        self,
        config: ConfigLoader | None = None,
        service: RecognitionService | None = None,
        adapter: MultiSessionAdapter | None = None,
    ) -> None:
        self.config = config or get_config()
        self.host = self.config.server_host
        self.bind_host = self.config.server_bind_host
        self.port = self.config.server_port

        self.service = service or RecognitionService(self.config)
        self.adapter = adapter or MultiSessionAdapter(self.service)

        # Client tracking
        self.connected_clients = set()
        self.client_sessions: dict[str, set[int]] = {}  # client_id -> session ids
        self._session_watchers: set[asyncio.Task] = set()

        # Health server runner (set during start_server)
        self._health_runner = None

        self.message_handlers = {
            "ping": self._wrap_handler(handlers.handle_ping),
            "get_version": self._wrap_handler(handlers.handle_get_version),
            "start_session": self._wrap_handler(handlers.handle_start_session),
            "start_pcm_session": self._wrap_handler(handlers.handle_start_pcm_session),
            "pcm_chunk": self._wrap_handler(handlers.handle_pcm_chunk),
            "finish_pcm": self._wrap_handler(handlers.handle_finish_pcm),
            "stop_session": self._wrap_handler(handlers.handle_stop_session),
            "cancel_session": self._wrap_handler(handlers.handle_cancel_session),
            "is_recording": self._wrap_handler(handlers.handle_is_recording),
            "is_any_recording": self._wrap_handler(handlers.handle_is_any_recording),
        }

        logger.debug(f"Initializing server on ws://{self.bind_host}:{self.port}")

    def _wrap_handler(self, handler):
        """Wrap a handler to inject self as the first argument."""

        async def wrapped(websocket, data, client_ip, client_id):
            return await handler(self, websocket, data, client_ip, client_id)

        return wrapped

    def callback_for(self, websocket) -> WebSocketCallback:
        return WebSocketCallback(websocket)

    def owns_session(self, client_id: str, session_id: int) -> bool:
        return session_id in self.client_sessions.get(client_id, set())

    def track_session(self, client_id: str, session_id: int) -> None:
        """Record that ``client_id`` owns ``session_id`` until the session closes."""
        session = self.adapter.get_session(session_id)
        if session is None:
            return  # already closed
        self.client_sessions.setdefault(client_id, set()).add(session_id)
        task = asyncio.create_task(self._forget_when_closed(client_id, session))
        self._session_watchers.add(task)
        task.add_done_callback(self._session_watchers.discard)

    async def _forget_when_closed(self, client_id: str, session) -> None:
        await session.wait_closed()
        owned = self.client_sessions.get(client_id)
        if owned is None:
            return
        owned.discard(session.session_id)
        if not owned:
            del self.client_sessions[client_id]

    async def handle_client(self, websocket, path=None):
        """Handle individual WebSocket client connections.

        Args:
            websocket: The WebSocket connection
            path: Optional path (for compatibility)

        """
        client_id = str(uuid.uuid4())[:8]
        remote = getattr(websocket, "remote_address", None)
        client_ip = remote[0] if remote else "unknown"

        try:
            self.connected_clients.add(websocket)
            logger.debug(f"Client {client_id} connected from {client_ip}")

            await send_message(
                websocket,
                WelcomeMessage(
                    message="Connected to Matilda Dictation",
                    client_id=client_id,
                    version=self.adapter.get_version(),
                ),
            )

            async for message in websocket:
                try:
                    if isinstance(message, bytes):
                        await send_error(websocket, "Binary frames are not supported; use pcm_chunk")
                        continue
                    data = json.loads(message)
                    if not isinstance(data, dict):
                        await send_error(websocket, "Invalid message: expected a JSON object")
                        continue
                    await self.process_message(websocket, data, client_ip, client_id)

                except json.JSONDecodeError:
                    await send_error(websocket, "Invalid JSON format")
                except Exception as e:
                    logger.exception(f"Error processing message from {client_id}: {e}")
                    await send_error(websocket, f"Processing error: {e!s}")

        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"Client {client_id} disconnected")
        except Exception as e:
            logger.exception(f"Error handling client {client_id}: {e}")
            logger.exception(traceback.format_exc())
        finally:
            self.connected_clients.discard(websocket)
            orphaned_sessions = self.client_sessions.pop(client_id, set())
            for session_id in orphaned_sessions:
                await self.adapter.cancel_session(session_id)
            if orphaned_sessions:
                logger.debug(f"Client {client_id}: Cleaned up {len(orphaned_sessions)} orphaned session(s)")
            logger.debug(f"Client {client_id} removed")

    async def process_message(self, websocket, data: dict, client_ip: str, client_id: str):
        """Dispatch a parsed JSON message to its handler."""
        message_type = data.get("type")
        handler = self.message_handlers.get(message_type)
        if handler:
            await handler(websocket, data, client_ip, client_id)
        else:
            await send_error(websocket, f"Unknown message type: {message_type}")

    async def shutdown(self) -> None:
        for task in list(self._session_watchers):
            task.cancel()
        await self.adapter.close()
        await self.service.cancel_all()
        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def start_server(self, host=None, port=None):
        from .main import start_server

        await start_server(self, host, port)
