"""Recognition session orchestrator.

RecognitionSession owns one recognition attempt from "start listening" to
"final text delivered":
- Starts and stops the engine
- Arms the processing deadline when recording ends
- Runs post-processing and paced rendering of streamed AI output
- Emits one ordered event stream to the attached sink

Every input (engine events, caller stop, deadline expiry, render frames,
post-processing completion) is queued into one inbox and handled by a
single task, so adapter emissions follow the order the session decided
them in. Handlers are synchronous and begin with the terminal guard; the
first terminal event wins.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..core.config import setup_logging
from .engines.base import EngineKind, RecognitionEngine
from .postprocess import PostProcessPipeline
from .sink import SessionEventSink
from .timeout_policy import LOCAL_MODEL_READY_WAIT_MAX_MS, TimeoutPolicy
from .typewriter import PacedTextRenderer, TypewriterConfig
from .types import (
    Amplitude,
    EngineError,
    ErrorCategory,
    Final,
    Partial,
    PostProcessResult,
    SessionFailure,
    SessionResult,
    SessionState,
    SessionStateError,
    Stopped,
)

logger = setup_logging(__name__, log_filename="recognition.txt")

BYTES_PER_SAMPLE = 2


# Internal inbox messages


@dataclass(frozen=True)
class _Ready:
    pass


@dataclass(frozen=True)
class _StopRequested:
    pass


@dataclass(frozen=True)
class _DeadlineExpired:
    timeout_ms: int


@dataclass(frozen=True)
class _RenderFrame:
    text: str


@dataclass(frozen=True)
class _PostProcessed:
    raw_text: str
    result: PostProcessResult


class RecognitionSession:
    """State machine for one recognition attempt.

    Example:
        session = RecognitionSession(1, engine, sink, postprocessor=pipeline)
        await session.start()
        ...
        await session.stop()
        await session.wait_closed()

    """

    def __init__(
        self,
        session_id: int,
        engine: RecognitionEngine,
        sink: SessionEventSink,
        *,
        postprocessor: PostProcessPipeline | None = None,
        timeout_policy: TimeoutPolicy | None = None,
        typewriter_config: TypewriterConfig | None = None,
        local_model_wait_max_ms: int = LOCAL_MODEL_READY_WAIT_MAX_MS,
        rush_wait_max_ms: int = 2000,
        rush_poll_ms: int = 20,
        on_closed: Callable[["RecognitionSession"], None] | None = None,
    ) -> None:
        self.session_id = session_id
        self.engine = engine
        self.sink = sink
        self.postprocessor = postprocessor or PostProcessPipeline()
        self.timeout_policy = timeout_policy or TimeoutPolicy()
        self.typewriter_config = typewriter_config or TypewriterConfig()
        self.local_model_wait_max_ms = local_model_wait_max_ms
        self.rush_wait_max_ms = rush_wait_max_ms
        self.rush_poll_ms = rush_poll_ms
        self._on_closed = on_closed

        self._state = SessionState.IDLE
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._runner: asyncio.Task | None = None
        self._children: set[asyncio.Task] = set()
        self._deadline_task: asyncio.Task | None = None
        self._renderer: PacedTextRenderer | None = None
        self._closed = asyncio.Event()

        self._result: SessionResult | None = None
        self._failure: SessionFailure | None = None
        self._reset()

        logger.debug(f"RecognitionSession created: {session_id} ({engine.vendor})")

    def _reset(self) -> None:
        """Reset per-attempt flags, counters and timestamps."""
        self._canceled = False
        self._finished = False
        self._final_received = False
        self._speech_begun = False
        self._end_of_speech_sent = False

        self._recording_started: float | None = None
        self._processing_started: float | None = None
        self._processing_ended: float | None = None
        self._audio_ms: int | None = None
        self._deadline_ms: int | None = None
        self._local_model_wait_ms = 0

        self._pcm_bytes = 0
        self._pcm_sample_rate = 16000
        self._pcm_channels = 1

    # Properties

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    @property
    def is_recording(self) -> bool:
        return self._state is SessionState.RECORDING

    @property
    def result(self) -> SessionResult | None:
        return self._result

    @property
    def failure(self) -> SessionFailure | None:
        return self._failure

    @property
    def audio_ms(self) -> int | None:
        return self._audio_ms

    @property
    def deadline_ms(self) -> int | None:
        return self._deadline_ms

    @property
    def is_parallel(self) -> bool:
        return self.engine.kind is EngineKind.PARALLEL

    # Caller operations

    async def start(self) -> None:
        """Idle -> Recording. Starts the engine."""
        if self._state is not SessionState.IDLE:
            raise SessionStateError(self.session_id, self._state, "start")

        self._reset()
        self._cancel_deadline()
        self._state = SessionState.RECORDING
        self._recording_started = time.monotonic()

        self.sink.bind_session(self.session_id)
        self.engine.attach(self._inbox.put_nowait)
        self._runner = asyncio.create_task(self._run(), name=f"recognition-session-{self.session_id}")
        self._inbox.put_nowait(_Ready())
        logger.info(f"RecognitionSession started: {self.session_id} ({self.engine.vendor})")

        try:
            await self.engine.start()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Session {self.session_id}: engine failed to start: {e}")
            self._inbox.put_nowait(EngineError(f"engine start failed: {e}"))

    async def stop(self) -> None:
        """Recording -> Processing. Idempotent."""
        if self._finished or self._canceled or self._state is SessionState.IDLE:
            return
        self._inbox.put_nowait(_StopRequested())

    async def cancel(self) -> None:
        """Any state -> Canceled. Nothing is emitted afterwards. Idempotent."""
        if self._canceled or self._finished:
            return
        self._canceled = True
        previous = self._state
        self._state = SessionState.CANCELED
        logger.info(f"RecognitionSession canceled: {self.session_id} (was {previous.value})")

        self._cancel_children()
        if self._runner is not None and self._runner is not asyncio.current_task():
            self._runner.cancel()
        try:
            await self.engine.cancel()
        except Exception as e:
            logger.warning(f"Session {self.session_id}: engine cancel failed: {e}")
        self._close()

    def write_audio(self, pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> None:
        """Forward pushed PCM16LE audio to the engine while recording."""
        if self._state is not SessionState.RECORDING or self._canceled or self._finished:
            return
        self._pcm_bytes += len(pcm)
        self._pcm_sample_rate = sample_rate
        self._pcm_channels = channels
        self.engine.write_audio(pcm, sample_rate, channels)

    async def wait_closed(self, timeout: float | None = None) -> None:
        """Wait until the session reached a terminal state and cleaned up."""
        await asyncio.wait_for(self._closed.wait(), timeout=timeout)

    # Sequencing task

    async def _run(self) -> None:
        while not (self._finished or self._canceled):
            item = await self._inbox.get()
            if self._finished or self._canceled:
                break
            try:
                self._handle(item)
            except Exception as e:
                logger.exception(f"Session {self.session_id}: handler failed for {type(item).__name__}")
                if not (self._finished or self._canceled):
                    self._fail(ErrorCategory.GENERIC, f"internal error: {e}")

    def _handle(self, item: object) -> None:
        if isinstance(item, _Ready):
            self._emit(self.sink.on_ready)
        elif isinstance(item, Partial):
            self._on_partial(item.text)
        elif isinstance(item, Amplitude):
            if self._state in (SessionState.RECORDING, SessionState.PROCESSING):
                self._emit(self.sink.on_amplitude, item.level)
        elif isinstance(item, _StopRequested):
            self._enter_processing(caller_initiated=True)
        elif isinstance(item, Stopped):
            self._enter_processing(caller_initiated=False)
        elif isinstance(item, Final):
            self._on_final(item.text)
        elif isinstance(item, EngineError):
            self._on_engine_error(item)
        elif isinstance(item, _DeadlineExpired):
            self._on_deadline(item.timeout_ms)
        elif isinstance(item, _RenderFrame):
            if self._state is SessionState.FINALIZING:
                self._emit(self.sink.on_partial, item.text)
        elif isinstance(item, _PostProcessed):
            self._complete(item.raw_text, item.result)
        else:
            logger.warning(f"Session {self.session_id}: ignoring unknown event {item!r}")

    # Transitions

    def _on_partial(self, text: str) -> None:
        if self._final_received or self._state not in (SessionState.RECORDING, SessionState.PROCESSING):
            return
        if not self._speech_begun:
            self._speech_begun = True
            self._emit(self.sink.on_beginning_of_speech)
        self._emit(self.sink.on_partial, text)

    def _enter_processing(self, caller_initiated: bool) -> None:
        if self._state is not SessionState.RECORDING:
            return
        self._state = SessionState.PROCESSING
        self._processing_started = time.monotonic()
        if self._audio_ms is None:
            self._audio_ms = self._estimate_audio_ms()
        logger.debug(
            f"Session {self.session_id}: processing ({'caller' if caller_initiated else 'engine'} stop, "
            f"audio={self._audio_ms}ms)"
        )
        self._send_end_of_speech()
        self._arm_deadline()
        if caller_initiated:
            self._spawn(self._call_engine("stop"))

    def _on_final(self, text: str) -> None:
        if self._final_received:
            return
        self._final_received = True
        self._cancel_deadline()

        if self._state is SessionState.RECORDING:
            self._processing_started = time.monotonic()
            self._audio_ms = self._estimate_audio_ms()
            self._send_end_of_speech()
        self._state = SessionState.FINALIZING

        if self.postprocessor.ai_available and text.strip():
            self._renderer = PacedTextRenderer(self._queue_render_frame, self.typewriter_config)
            self._spawn(self._run_postprocess(text))
        else:
            self._complete(text, PostProcessResult(text=self.postprocessor.apply_simple(text)))

    def _on_engine_error(self, event: EngineError) -> None:
        if self._final_received:
            return
        self._cancel_deadline()
        self._fail(event.category or ErrorCategory.GENERIC, event.message)

    def _on_deadline(self, timeout_ms: int) -> None:
        if self._state is not SessionState.PROCESSING:
            return
        logger.warning(f"Session {self.session_id}: no result within {timeout_ms}ms")
        self._fail(ErrorCategory.TIMEOUT, f"processing timed out after {timeout_ms}ms")

    def _complete(self, raw_text: str, outcome: PostProcessResult) -> None:
        if self._renderer is not None:
            self._renderer.cancel()

        if not outcome.text.strip():
            self._fail(ErrorCategory.NO_MATCH, "empty recognition result")
            return

        self._processing_ended = time.monotonic()
        result = SessionResult(
            text=outcome.text,
            raw_text=raw_text,
            used_ai=outcome.used_ai,
            ai_attempted=outcome.attempted,
            ai_elapsed_ms=outcome.elapsed_ms,
            vendor=getattr(self.engine, "answered_vendor", self.engine.vendor),
            used_backup=bool(getattr(self.engine, "last_result_from_backup", False)),
            audio_ms=self._audio_ms or 0,
            processing_ms=self._processing_ms(),
            local_model_wait_ms=self._local_model_wait_ms,
        )
        self._finished = True
        self._state = SessionState.DONE
        self._result = result
        logger.info(
            f"RecognitionSession done: {self.session_id} vendor={result.vendor} "
            f"backup={result.used_backup} ai={result.used_ai} processing={result.processing_ms}ms"
        )
        self._emit(self.sink.on_final, result)
        self._teardown()

    def _fail(self, category: ErrorCategory, message: str) -> None:
        self._processing_ended = time.monotonic()
        self._finished = True
        self._state = SessionState.ERROR
        self._failure = SessionFailure(category=category, message=message)
        logger.info(f"RecognitionSession error: {self.session_id} {category.value}: {message}")
        self._emit(self.sink.on_error, self._failure)
        self._teardown()

    # Deadline

    def _arm_deadline(self) -> None:
        self._cancel_deadline()
        timeout_ms = self.timeout_policy.deadline(self._audio_ms or 0, parallel=self.is_parallel)
        self._deadline_ms = timeout_ms
        self._deadline_task = self._spawn(self._deadline_timer(timeout_ms))

    def _cancel_deadline(self) -> None:
        if self._deadline_task is not None:
            self._deadline_task.cancel()
            self._deadline_task = None

    async def _deadline_timer(self, timeout_ms: int) -> None:
        readiness = self.engine.readiness
        if readiness is not None and not readiness.is_ready:
            # Model load time is not charged against the deadline
            self._local_model_wait_ms = await readiness.wait(self.local_model_wait_max_ms)
        await asyncio.sleep(timeout_ms / 1000)
        self._inbox.put_nowait(_DeadlineExpired(timeout_ms))

    # Post-processing

    def _queue_render_frame(self, text: str) -> None:
        self._inbox.put_nowait(_RenderFrame(text))

    def _on_ai_update(self, text: str) -> None:
        if self._renderer is not None:
            self._renderer.submit(text)

    async def _run_postprocess(self, text: str) -> None:
        try:
            outcome = await self.postprocessor.apply_with_ai(text, self._on_ai_update)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Session {self.session_id}: post-processing failed, using simple cleanup: {e}")
            outcome = PostProcessResult(text=self.postprocessor.apply_simple(text), attempted=True)

        if not outcome.text.strip():
            outcome = PostProcessResult(
                text=self.postprocessor.apply_simple(text),
                used_ai=False,
                attempted=outcome.attempted,
                elapsed_ms=outcome.elapsed_ms,
            )

        renderer = self._renderer
        if renderer is not None and outcome.used_ai and outcome.text:
            renderer.submit(outcome.text, rush=True)
            reached = await renderer.wait_for_length(len(outcome.text), self.rush_wait_max_ms, self.rush_poll_ms)
            if not reached:
                logger.debug(f"Session {self.session_id}: rush rendering did not converge, delivering final")

        self._inbox.put_nowait(_PostProcessed(text, outcome))

    # Helpers

    def _send_end_of_speech(self) -> None:
        if not self._end_of_speech_sent:
            self._end_of_speech_sent = True
            self._emit(self.sink.on_end_of_speech)

    def _estimate_audio_ms(self) -> int:
        if self._pcm_bytes:
            bytes_per_second = self._pcm_sample_rate * self._pcm_channels * BYTES_PER_SAMPLE
            return int(self._pcm_bytes * 1000 / bytes_per_second)
        if self._recording_started is None:
            return 0
        return int((time.monotonic() - self._recording_started) * 1000)

    def _processing_ms(self) -> int:
        if self._processing_started is None or self._processing_ended is None:
            return 0
        elapsed = int((self._processing_ended - self._processing_started) * 1000)
        return max(0, elapsed - self._local_model_wait_ms)

    def _emit(self, callback: Callable, *args) -> None:
        if self._canceled:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Session {self.session_id}: sink {callback.__name__} raised")

    async def _call_engine(self, operation: str) -> None:
        try:
            await getattr(self.engine, operation)()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Session {self.session_id}: engine {operation} failed: {e}")
            self._inbox.put_nowait(EngineError(f"engine {operation} failed: {e}"))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._children.add(task)
        task.add_done_callback(self._child_done)
        return task

    def _child_done(self, task: asyncio.Task) -> None:
        self._children.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Session {self.session_id}: background task failed: {exc!r}")

    def _cancel_children(self) -> None:
        if self._renderer is not None:
            self._renderer.cancel()
        self._deadline_task = None
        current = asyncio.current_task()
        for task in list(self._children):
            if task is not current:
                task.cancel()

    def _teardown(self) -> None:
        self._cancel_children()
        if self.engine.is_running:
            task = asyncio.get_running_loop().create_task(self.engine.cancel())
            task.add_done_callback(self._child_done)
            self._children.add(task)
        self._close()

    def _close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._on_closed is not None:
            try:
                self._on_closed(self)
            except Exception as e:
                logger.warning(f"Session {self.session_id}: close callback failed: {e}")
