"""Primary/backup failover across two recognition engines.

Both engines receive the same audio and run side by side. The coordinator
presents them as a single engine: one partial stream (from the primary), one
terminal result, and a record of which vendor actually answered.
"""

import asyncio
import time
from enum import Enum

from ..core.config import setup_logging
from .engines.base import EngineKind, LocalModelReadiness, RecognitionEngine
from .timeout_policy import TimeoutPolicy
from .types import Amplitude, EngineError, EngineEvent, Final, Partial, Stopped

logger = setup_logging(__name__, log_filename="recognition.txt")


class FailoverMode(Enum):
    """How a successful backup result competes with the primary."""

    RACE = "race"  # first usable final from either engine wins
    PREFER_PRIMARY = "prefer_primary"  # backup only after primary failure or switch timeout


def _is_usable(event: EngineEvent) -> bool:
    return isinstance(event, Final) and bool(event.text.strip())


class ParallelEngineCoordinator(RecognitionEngine):
    """Race a primary engine against a backup engine."""

    kind = EngineKind.PARALLEL

    def __init__(
        self,
        primary: RecognitionEngine,
        backup: RecognitionEngine,
        timeout_policy: TimeoutPolicy | None = None,
        mode: FailoverMode = FailoverMode.RACE,
    ) -> None:
        super().__init__(primary.vendor)
        self.primary = primary
        self.backup = backup
        self.timeout_policy = timeout_policy or TimeoutPolicy()
        self.mode = mode
        self.last_result_from_backup = False

        self._primary_failure: EngineEvent | None = None
        self._backup_failure: EngineEvent | None = None
        self._backup_result: Final | None = None
        self._switched = False
        self._stopped_forwarded = False
        self._started_at: float | None = None
        self._switch_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def readiness(self) -> LocalModelReadiness | None:
        return self.primary.readiness

    @property
    def answered_vendor(self) -> str:
        return self.backup.vendor if self.last_result_from_backup else self.primary.vendor

    def attach(self, sink) -> None:
        super().attach(sink)
        self.primary.attach(self._on_primary_event)
        self.backup.attach(self._on_backup_event)

    async def _on_start(self) -> None:
        self._started_at = time.monotonic()
        primary_result, backup_result = await asyncio.gather(
            self.primary.start(), self.backup.start(), return_exceptions=True
        )
        if isinstance(backup_result, Exception):
            logger.warning(f"Backup engine {self.backup.vendor} failed to start: {backup_result}")
            self._on_backup_event(EngineError(str(backup_result)))
        if isinstance(primary_result, Exception):
            logger.warning(f"Primary engine {self.primary.vendor} failed to start: {primary_result}")
            self._on_primary_event(EngineError(str(primary_result)))

    async def _on_stop(self) -> None:
        results = await asyncio.gather(self.primary.stop(), self.backup.stop(), return_exceptions=True)
        for engine, result in zip((self.primary, self.backup), results):
            if isinstance(result, Exception):
                logger.warning(f"Engine {engine.vendor} failed to stop cleanly: {result}")

        if self.mode is FailoverMode.PREFER_PRIMARY and not self.is_terminated:
            elapsed_ms = (time.monotonic() - self._started_at) * 1000 if self._started_at else 0
            if self.primary.kind is EngineKind.STREAMING:
                switch_ms = self.timeout_policy.primary_switch_timeout(elapsed_ms)
            else:
                # the session deadline adds parallel_slack_ms on top of this
                switch_ms = self.timeout_policy.deadline(elapsed_ms)
            self._switch_task = asyncio.create_task(self._switch_after(switch_ms))

    async def _on_cancel(self) -> None:
        if self._switch_task is not None:
            self._switch_task.cancel()
        await asyncio.gather(self.primary.cancel(), self.backup.cancel(), return_exceptions=True)

    def _on_audio(self, pcm: bytes, sample_rate: int, channels: int) -> None:
        self.primary.write_audio(pcm, sample_rate, channels)
        self.backup.write_audio(pcm, sample_rate, channels)

    def _on_primary_event(self, event: EngineEvent) -> None:
        if self.is_terminated:
            return
        if isinstance(event, (Partial, Amplitude)):
            self.emit(event)
        elif isinstance(event, Stopped):
            if not self._stopped_forwarded:
                self._stopped_forwarded = True
                self.emit(event)
        elif _is_usable(event):
            self._deliver(event, from_backup=False)
        else:
            logger.info(f"Primary engine {self.primary.vendor} failed: {event}")
            self._primary_failure = event
            if self._backup_result is not None:
                self._deliver(self._backup_result, from_backup=True)
            elif self._backup_failure is not None:
                self._deliver(event, from_backup=False)

    def _on_backup_event(self, event: EngineEvent) -> None:
        if self.is_terminated or not isinstance(event, (Final, EngineError)):
            return
        if _is_usable(event):
            if self.mode is FailoverMode.RACE or self._primary_failure is not None or self._switched:
                self._deliver(event, from_backup=True)
            else:
                self._backup_result = event
        else:
            logger.info(f"Backup engine {self.backup.vendor} failed: {event}")
            self._backup_failure = event
            if self._primary_failure is not None:
                self._deliver(self._primary_failure, from_backup=False)

    async def _switch_after(self, switch_ms: int) -> None:
        await asyncio.sleep(switch_ms / 1000)
        if self.is_terminated:
            return
        logger.info(f"Primary engine {self.primary.vendor} silent for {switch_ms}ms, trusting backup")
        self._switched = True
        if self._backup_result is not None:
            self._deliver(self._backup_result, from_backup=True)

    def _deliver(self, event: EngineEvent, from_backup: bool) -> None:
        self.last_result_from_backup = from_backup
        if self._switch_task is not None and self._switch_task is not asyncio.current_task():
            self._switch_task.cancel()
        loser = self.primary if from_backup else self.backup
        task = asyncio.get_running_loop().create_task(loser.cancel())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.debug(f"Parallel result from {self.answered_vendor}: {type(event).__name__}")
        self.emit(event)
