"""Forwards external session callbacks to one WebSocket connection."""

from ..adapters.multi_session import ExternalCallback, ExternalState
from ..schemas.responses import (
    AmplitudeMessage,
    FinalMessage,
    PartialMessage,
    SessionErrorMessage,
    StateMessage,
)
from .transport import send_message


class WebSocketCallback(ExternalCallback):
    """Serializes every session callback as a JSON message."""

    def __init__(self, websocket, send_amplitude: bool = True) -> None:
        self.websocket = websocket
        self.send_amplitude = send_amplitude

    async def on_state(self, session_id: int, state: ExternalState, message: str) -> None:
        state = ExternalState(state)
        await send_message(
            self.websocket,
            StateMessage(session_id=session_id, state=int(state), state_name=state.name.lower(), message=message),
        )

    async def on_partial(self, session_id: int, text: str) -> None:
        await send_message(self.websocket, PartialMessage(session_id=session_id, text=text))

    async def on_final(self, session_id: int, text: str) -> None:
        await send_message(self.websocket, FinalMessage(session_id=session_id, text=text))

    async def on_error(self, session_id: int, code: int, message: str) -> None:
        await send_message(self.websocket, SessionErrorMessage(session_id=session_id, code=code, message=message))

    async def on_amplitude(self, session_id: int, level: float) -> None:
        if self.send_amplitude:
            await send_message(self.websocket, AmplitudeMessage(session_id=session_id, level=level))
