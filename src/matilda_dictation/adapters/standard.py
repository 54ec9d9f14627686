"""Standard recognition-service adapter.

Translates a session's event stream into the familiar speech recognizer
callback contract: ready_for_speech, beginning_of_speech, rms_changed,
partial_results, end_of_speech, results and error codes.
"""

from enum import IntEnum
from typing import Any

from ..core.config import setup_logging
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

SURFACE = "standard"


class RecognizerErrorCode(IntEnum):
    """Speech recognizer error codes."""

    NETWORK_TIMEOUT = 1
    NETWORK = 2
    AUDIO = 3
    SERVER = 4
    CLIENT = 5
    SPEECH_TIMEOUT = 6
    NO_MATCH = 7
    BUSY = 8
    INSUFFICIENT_PERMISSIONS = 9


_CATEGORY_CODES = {
    ErrorCategory.PERMISSION_DENIED: RecognizerErrorCode.INSUFFICIENT_PERMISSIONS,
    ErrorCategory.BUSY: RecognizerErrorCode.BUSY,
    ErrorCategory.ENGINE_BUILD_FAILURE: RecognizerErrorCode.CLIENT,
    ErrorCategory.NETWORK: RecognizerErrorCode.NETWORK,
    ErrorCategory.TIMEOUT: RecognizerErrorCode.NETWORK_TIMEOUT,
    ErrorCategory.AUDIO: RecognizerErrorCode.AUDIO,
    ErrorCategory.NO_MATCH: RecognizerErrorCode.NO_MATCH,
    ErrorCategory.SERVER: RecognizerErrorCode.SERVER,
}

# Checked in order; the first match wins.
_MESSAGE_HINTS: tuple[tuple[tuple[str, ...], RecognizerErrorCode], ...] = (
    (("permission",), RecognizerErrorCode.INSUFFICIENT_PERMISSIONS),
    (("network", "timeout", "connect"), RecognizerErrorCode.NETWORK),
    (("audio", "microphone", "record"), RecognizerErrorCode.AUDIO),
    (("busy",), RecognizerErrorCode.BUSY),
    (("empty", "no speech", "no match"), RecognizerErrorCode.NO_MATCH),
    (("server", "api"), RecognizerErrorCode.SERVER),
)


def classify_error_message(message: str | None) -> RecognizerErrorCode:
    """Best-effort classification of a free-form engine error message.

    Heuristic and lossy: a message mentioning several causes gets the first
    matching hint. Only used for errors without an explicit category.
    """
    lowered = (message or "").lower()
    for needles, code in _MESSAGE_HINTS:
        if any(needle in lowered for needle in needles):
            return code
    return RecognizerErrorCode.CLIENT


def error_code_for(failure: SessionFailure) -> RecognizerErrorCode:
    code = _CATEGORY_CODES.get(failure.category)
    if code is not None:
        return code
    return classify_error_message(failure.message)


def amplitude_to_rms_db(level: float) -> float:
    """Map a 0..1 level onto the recognizer's -2..10 dB rms range."""
    return -2.0 + max(0.0, min(1.0, level)) * 12.0


class RecognitionListener:
    """Callback interface for standard recognition clients. Override what you need."""

    def ready_for_speech(self, params: dict[str, Any]) -> Any:
        pass

    def beginning_of_speech(self) -> Any:
        pass

    def rms_changed(self, rms_db: float) -> Any:
        pass

    def partial_results(self, text: str) -> Any:
        pass

    def end_of_speech(self) -> Any:
        pass

    def results(self, text: str, used_backup: bool) -> Any:
        pass

    def error(self, code: RecognizerErrorCode) -> Any:
        pass


class _StandardSink(SessionEventSink):
    def __init__(self, listener: RecognitionListener, partial_results: bool) -> None:
        self.listener = listener
        self.partial_results = partial_results
        self.delivery = DeliveryQueue("standard")

    def bind_session(self, session_id: int) -> None:
        self.delivery.name = f"standard-{session_id}"

    def on_ready(self) -> None:
        self.delivery.put(self.listener.ready_for_speech, {})

    def on_beginning_of_speech(self) -> None:
        self.delivery.put(self.listener.beginning_of_speech)

    def on_partial(self, text: str) -> None:
        if self.partial_results:
            self.delivery.put(self.listener.partial_results, text)

    def on_amplitude(self, level: float) -> None:
        self.delivery.put(self.listener.rms_changed, amplitude_to_rms_db(level))

    def on_end_of_speech(self) -> None:
        self.delivery.put(self.listener.end_of_speech)

    def on_final(self, result: SessionResult) -> None:
        self.delivery.put(self.listener.results, result.text, result.used_backup)
        self.delivery.close()

    def on_error(self, failure: SessionFailure) -> None:
        code = error_code_for(failure)
        logger.debug(f"Standard adapter error {failure.category.value} -> {code.name}: {failure.message}")
        self.delivery.put(self.listener.error, code)
        self.delivery.close()


class StandardRecognizerAdapter:
    """Single-caller recognizer surface: one live session at a time."""

    def __init__(
        self,
        service: RecognitionService,
        surface: str = SURFACE,
        has_record_permission=None,
    ) -> None:
        self.service = service
        self._has_record_permission = has_record_permission or (lambda: True)
        self.surface = surface
        self._session: RecognitionSession | None = None
        self._sink: _StandardSink | None = None

    @property
    def session(self) -> RecognitionSession | None:
        return self._session

    async def start_listening(
        self,
        listener: RecognitionListener,
        partial_results: bool = False,
        vendor: str | None = None,
    ) -> RecognitionSession | None:
        """Start a session; failures are reported through ``listener.error``."""
        sink = _StandardSink(listener, partial_results)
        if not self._has_record_permission():
            logger.info("Standard adapter lacks record permission, rejecting start")
            sink.delivery.put(listener.error, RecognizerErrorCode.INSUFFICIENT_PERMISSIONS)
            sink.delivery.close()
            return None

        try:
            session = await self.service.open_session(self.surface, sink, vendor=vendor, exclusive=True)
        except SessionBusyError:
            logger.info("Standard adapter busy, rejecting start")
            sink.delivery.put(listener.error, RecognizerErrorCode.BUSY)
            sink.delivery.close()
            return None
        except EngineBuildError as e:
            logger.warning(f"Standard adapter could not build engine: {e}")
            sink.delivery.put(listener.error, RecognizerErrorCode.CLIENT)
            sink.delivery.close()
            return None

        self._session = session
        self._sink = sink
        return session

    async def stop_listening(self) -> None:
        if self._session is not None:
            await self._session.stop()

    async def cancel(self) -> None:
        session, sink = self._session, self._sink
        self._session = None
        self._sink = None
        if session is not None:
            await session.cancel()
        if sink is not None:
            sink.delivery.close()

    def write_audio(self, pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> None:
        if self._session is not None:
            self._session.write_audio(pcm, sample_rate, channels)
