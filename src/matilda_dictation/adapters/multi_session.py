"""Multi-session external speech API.

External clients open sessions identified by small integers and receive
state, partial, final and error callbacks tagged with that id. Start calls
return the new session id, or a negative code when the session could not
be opened. Besides microphone-style sessions, clients can push PCM audio
themselves (push-PCM sessions).
"""

import asyncio
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .. import __version__
from ..core.config import setup_logging
from ..recognition.engines.loopback import LoopbackEngine
from ..recognition.service import RecognitionService
from ..recognition.session import RecognitionSession
from ..recognition.sink import SessionEventSink
from ..recognition.types import (
    EngineBuildError,
    ErrorCategory,
    SessionBusyError,
    SessionFailure,
    SessionResult,
)
from .delivery import DeliveryQueue

logger = setup_logging(__name__, log_filename="adapters.txt")

SURFACE = "external"
MOCK_VENDOR = "mock"
MOCK_PARTIAL_TEXT = "[connectivity test in progress] ..."
NO_SESSION = -1


class ExternalState(IntEnum):
    IDLE = 0
    RECORDING = 1
    PROCESSING = 2
    ERROR = 3


class StartResult(IntEnum):
    """Negative return codes of start_session / start_pcm_session."""

    BUSY = -2
    UNAVAILABLE = -3  # feature disabled or engine build failure
    PERMISSION_DENIED = -4
    PCM_UNAVAILABLE = -5


class ExternalErrorCode(IntEnum):
    PERMISSION_DENIED = 401
    DISABLED = 403
    TIMEOUT = 408
    ENGINE = 500


def external_error_code(category: ErrorCategory) -> ExternalErrorCode:
    if category is ErrorCategory.TIMEOUT:
        return ExternalErrorCode.TIMEOUT
    if category is ErrorCategory.PERMISSION_DENIED:
        return ExternalErrorCode.PERMISSION_DENIED
    return ExternalErrorCode.ENGINE


@dataclass
class SpeechConfig:
    """Per-session options supplied by the external client."""

    vendor_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SpeechConfig":
        data = data or {}
        return cls(vendor_id=data.get("vendor_id"))


class ExternalCallback:
    """Callback interface for external clients. Methods may be coroutines."""

    def on_state(self, session_id: int, state: ExternalState, message: str) -> Any:
        pass

    def on_partial(self, session_id: int, text: str) -> Any:
        pass

    def on_final(self, session_id: int, text: str) -> Any:
        pass

    def on_error(self, session_id: int, code: int, message: str) -> Any:
        pass

    def on_amplitude(self, session_id: int, level: float) -> Any:
        pass


class _ExternalSink(SessionEventSink):
    def __init__(self, callback: ExternalCallback) -> None:
        self.callback = callback
        self.session_id = NO_SESSION
        self.delivery = DeliveryQueue("external")

    def bind_session(self, session_id: int) -> None:
        self.session_id = session_id
        self.delivery.name = f"external-{session_id}"

    def on_ready(self) -> None:
        self.delivery.put(self.callback.on_state, self.session_id, ExternalState.RECORDING, "recording")

    def on_partial(self, text: str) -> None:
        self.delivery.put(self.callback.on_partial, self.session_id, text)

    def on_amplitude(self, level: float) -> None:
        self.delivery.put(self.callback.on_amplitude, self.session_id, level)

    def on_end_of_speech(self) -> None:
        self.delivery.put(self.callback.on_state, self.session_id, ExternalState.PROCESSING, "processing")

    def on_final(self, result: SessionResult) -> None:
        logger.info(
            f"External session {self.session_id}: final from {result.vendor} "
            f"(audio={result.audio_ms}ms processing={result.processing_ms}ms backup={result.used_backup})"
        )
        self.delivery.put(self.callback.on_final, self.session_id, result.text)
        self.delivery.put(self.callback.on_state, self.session_id, ExternalState.IDLE, "final")
        self.delivery.close()

    def on_error(self, failure: SessionFailure) -> None:
        code = external_error_code(failure.category)
        self.delivery.put(self.callback.on_error, self.session_id, int(code), failure.message)
        self.delivery.put(self.callback.on_state, self.session_id, ExternalState.ERROR, failure.message)
        self.delivery.close()

    def canceled(self) -> None:
        if self.delivery.closed:
            return
        self.delivery.put(self.callback.on_state, self.session_id, ExternalState.IDLE, "canceled")
        self.delivery.close()


class MultiSessionAdapter:
    """External API surface allowing several sessions.

    A new session is rejected only while another one is still recording;
    sessions that are processing may overlap with a new recording.
    """

    def __init__(
        self,
        service: RecognitionService,
        enabled: bool | None = None,
        has_record_permission=None,
        surface: str = SURFACE,
    ) -> None:
        self.service = service
        self.enabled = service.config.external_api_enabled if enabled is None else enabled
        self._has_record_permission = has_record_permission or (lambda: True)
        self.surface = surface
        self._sinks: dict[int, _ExternalSink] = {}
        self._tasks: set[asyncio.Task] = set()

    def get_version(self) -> str:
        return __version__

    async def start_session(self, config: SpeechConfig | None, callback: ExternalCallback) -> int:
        """Open a recording session. Returns the session id or a StartResult code."""
        config = config or SpeechConfig()
        if not self.enabled:
            self._report_refusal(callback, ExternalErrorCode.DISABLED, "feature disabled")
            return int(StartResult.UNAVAILABLE)

        if (config.vendor_id or "").lower() == MOCK_VENDOR:
            engine = LoopbackEngine(text=self._mock_text(), partial_text=MOCK_PARTIAL_TEXT)
            return await self._open(callback, engine=engine, vendor=MOCK_VENDOR, failure=StartResult.UNAVAILABLE)

        if not self._has_record_permission():
            self._report_refusal(callback, ExternalErrorCode.PERMISSION_DENIED, "record permission denied")
            return int(StartResult.PERMISSION_DENIED)

        return await self._open(callback, vendor=config.vendor_id, failure=StartResult.UNAVAILABLE)

    async def start_pcm_session(self, config: SpeechConfig | None, callback: ExternalCallback) -> int:
        """Open a session fed by write_pcm(). No record permission is needed."""
        config = config or SpeechConfig()
        if not self.enabled:
            self._report_refusal(callback, ExternalErrorCode.DISABLED, "feature disabled")
            return int(StartResult.UNAVAILABLE)
        return await self._open(callback, vendor=config.vendor_id, failure=StartResult.PCM_UNAVAILABLE)

    def write_pcm(self, session_id: int, pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> None:
        session = self.service.get_session(session_id)
        if session is not None:
            session.write_audio(pcm, sample_rate, channels)

    async def finish_pcm(self, session_id: int) -> None:
        await self.stop_session(session_id)

    async def stop_session(self, session_id: int) -> None:
        session = self.service.get_session(session_id)
        if session is not None:
            await session.stop()

    async def cancel_session(self, session_id: int) -> None:
        session = self.service.get_session(session_id)
        sink = self._sinks.pop(session_id, None)
        if session is not None:
            await session.cancel()
        if sink is not None:
            sink.canceled()

    def is_recording(self, session_id: int) -> bool:
        session = self.service.get_session(session_id)
        return session is not None and session.is_recording

    def is_any_recording(self) -> bool:
        return self.service.registry.is_any_recording(self.surface)

    def get_session(self, session_id: int) -> RecognitionSession | None:
        return self.service.get_session(session_id)

    async def close(self) -> None:
        for session_id in list(self._sinks):
            await self.cancel_session(session_id)

    async def _open(self, callback: ExternalCallback, *, vendor: str | None, failure: StartResult, engine=None) -> int:
        sink = _ExternalSink(callback)
        try:
            session = await self.service.open_session(
                self.surface, sink, vendor=vendor, exclusive=False, engine=engine
            )
        except SessionBusyError:
            logger.info("External API busy, rejecting start")
            return int(StartResult.BUSY)
        except EngineBuildError as e:
            logger.warning(f"External API could not build engine: {e}")
            self._report_refusal(callback, ExternalErrorCode.ENGINE, str(e))
            return int(failure)

        self._sinks[session.session_id] = sink
        self._forget_when_closed(session)
        return session.session_id

    def _forget_when_closed(self, session: RecognitionSession) -> None:
        async def forget() -> None:
            await session.wait_closed()
            self._sinks.pop(session.session_id, None)

        task = asyncio.create_task(forget())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _report_refusal(self, callback: ExternalCallback, code: ExternalErrorCode, message: str) -> None:
        delivery = DeliveryQueue("external-refusal")
        delivery.put(callback.on_error, NO_SESSION, int(code), message)
        delivery.close()

    def _mock_text(self) -> str:
        settings = self.service.config.vendor_settings(MOCK_VENDOR)
        return str(settings.get("text", "External speech API connected (mock)"))
