"""Recognition engine capability interface.

Every backend (cloud streaming, cloud file upload, on-device model, or the
parallel coordinator) is driven through ``RecognitionEngine``. Engines report
progress by emitting ``EngineEvent`` values into the sink a session attaches;
the base class guarantees the lifecycle contract so subclasses only
implement the vendor-specific hooks.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum

from ...core.config import setup_logging
from ..timeout_policy import LOCAL_MODEL_READY_WAIT_MAX_MS
from ..types import TERMINAL_EVENTS, EngineEvent

logger = setup_logging(__name__, log_filename="recognition.txt")

EventSink = Callable[[EngineEvent], None]


class EngineKind(Enum):
    """Broad engine families. Sessions treat ``LOCAL`` engines specially."""

    STREAMING = "streaming"
    FILE = "file"
    LOCAL = "local"
    PARALLEL = "parallel"


class LocalModelReadiness:
    """Best-effort wait handle for an on-device model finishing its load."""

    def __init__(self) -> None:
        self._ready = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def mark_ready(self) -> None:
        """Signal readiness. Safe to call from a model-loading thread."""
        loop = self._loop
        if loop is not None and not _on_loop(loop):
            loop.call_soon_threadsafe(self._ready.set)
        else:
            self._ready.set()

    async def wait(self, max_wait_ms: int = LOCAL_MODEL_READY_WAIT_MAX_MS) -> int:
        """Wait for readiness, at most ``max_wait_ms``. Returns the time waited in ms."""
        if self._ready.is_set():
            return 0
        started = time.monotonic()
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=max_wait_ms / 1000)
        except TimeoutError:
            logger.warning(f"Local model not ready after {max_wait_ms}ms, starting deadline anyway")
        return int((time.monotonic() - started) * 1000)


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


class RecognitionEngine(ABC):
    """Base class for recognition engines.

    Lifecycle contract enforced here:
    - at most one terminal event (Final or EngineError) is delivered
    - nothing is delivered after a terminal event or after ``cancel()``
    - ``stop()`` and ``cancel()`` may be called repeatedly or after termination
    - ``emit()`` may be called from any thread; delivery happens on the
      event loop that attached the sink
    """

    kind = EngineKind.STREAMING

    def __init__(self, vendor: str) -> None:
        self.vendor = vendor
        self._sink: EventSink | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started = False
        self._stop_requested = False
        self._canceled = False
        self._terminated = False

    @property
    def readiness(self) -> LocalModelReadiness | None:
        """Readiness token for on-device models, ``None`` for everything else."""
        return None

    @property
    def is_running(self) -> bool:
        return self._started and not self._terminated and not self._canceled

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    def attach(self, sink: EventSink) -> None:
        """Route events to ``sink``. Must be called from the owning event loop."""
        self._sink = sink
        self._loop = asyncio.get_running_loop()
        if self.readiness is not None:
            self.readiness.bind(self._loop)

    async def start(self) -> None:
        if self._started or self._canceled:
            return
        self._started = True
        logger.debug(f"Engine {self.vendor} starting")
        await self._on_start()

    async def stop(self) -> None:
        if not self._started or self._stop_requested or self._canceled or self._terminated:
            return
        self._stop_requested = True
        logger.debug(f"Engine {self.vendor} stopping")
        await self._on_stop()

    async def cancel(self) -> None:
        if self._canceled:
            return
        self._canceled = True
        was_active = self._started and not self._terminated
        self._terminated = True
        if was_active:
            logger.debug(f"Engine {self.vendor} canceled")
            await self._on_cancel()

    def write_audio(self, pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> None:
        """Push a PCM16LE frame. Ignored unless the engine is capturing."""
        if not self.is_running or self._stop_requested:
            return
        self._on_audio(pcm, sample_rate, channels)

    def emit(self, event: EngineEvent) -> None:
        loop = self._loop
        if loop is not None and not _on_loop(loop):
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(self._dispatch, event)
            return
        self._dispatch(event)

    def _dispatch(self, event: EngineEvent) -> None:
        if self._terminated or self._sink is None:
            return
        if isinstance(event, TERMINAL_EVENTS):
            self._terminated = True
        self._sink(event)

    @abstractmethod
    async def _on_start(self) -> None:
        """Begin capturing or connecting."""

    @abstractmethod
    async def _on_stop(self) -> None:
        """Stop capturing and produce the terminal result."""

    async def _on_cancel(self) -> None:
        """Abort any in-flight work. No events may follow."""

    def _on_audio(self, pcm: bytes, sample_rate: int, channels: int) -> None:
        """Consume a pushed PCM frame."""
