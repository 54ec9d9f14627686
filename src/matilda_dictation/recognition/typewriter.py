"""Paced text rendering ("typewriter").

Bursty upstream updates (AI post-processing streams, engine partials) are
smoothed into a readable, steadily growing sequence of frames. Each frame
advances toward the current target by a step sized so the backlog drains
over a fixed number of frames, capped per frame. Rush mode converges
faster once the final text is known.
"""

import asyncio
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..core.config import setup_logging

logger = setup_logging(__name__, log_filename="recognition.txt")


@dataclass
class TypewriterConfig:
    """Cadence settings for PacedTextRenderer."""

    frame_delay_ms: int = 20
    rush_frame_delay_ms: int = 10
    idle_stop_delay_ms: int = 600
    normal_target_frames: int = 24
    rush_target_frames: int = 10
    normal_max_step: int = 4
    rush_max_step: int = 64

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "TypewriterConfig":
        known = {name: int(values[name]) for name in cls.__dataclass_fields__ if name in values}
        return cls(**known)


def next_frame(emitted: str, target: str, rush: bool, config: TypewriterConfig) -> str:
    """Compute the next frame on the way from ``emitted`` to ``target``."""
    if not target.startswith(emitted):
        return target
    backlog = len(target) - len(emitted)
    if backlog <= 0:
        return target
    frames = config.rush_target_frames if rush else config.normal_target_frames
    max_step = config.rush_max_step if rush else config.normal_max_step
    step = min(max(math.ceil(backlog / max(1, frames)), 1), max(1, max_step))
    return target[: len(emitted) + step]


class PacedTextRenderer:
    """Emit smoothed frames toward the most recently submitted target.

    Frames go to ``on_frame``. The loop runs as its own asyncio task, stops
    itself after ``idle_stop_delay_ms`` with nothing to do and restarts on the
    next ``submit()``.
    """

    def __init__(self, on_frame: Callable[[str], None], config: TypewriterConfig | None = None) -> None:
        self.config = config or TypewriterConfig()
        self._on_frame = on_frame
        self._target = ""
        self._emitted = ""
        self._rush = False
        self._canceled = False
        self._task: asyncio.Task | None = None

    @property
    def current_text(self) -> str:
        return self._emitted

    @property
    def current_length(self) -> int:
        return len(self._emitted)

    @property
    def target(self) -> str:
        return self._target

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_canceled(self) -> bool:
        return self._canceled

    def submit(self, target: str, rush: bool = False) -> None:
        """Replace the target. In-flight convergence toward the old target is dropped."""
        if self._canceled:
            return
        self._target = target
        self._rush = self._rush or rush
        if not self.is_running:
            self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        """Stop rendering. Nothing is emitted after this returns."""
        self._canceled = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def wait_for_length(self, length: int, max_wait_ms: int = 2000, poll_ms: int = 20) -> bool:
        """Poll until ``length`` characters are rendered, at most ``max_wait_ms``.

        Returns whether the length was reached; callers proceed either way.
        """
        deadline = time.monotonic() + max_wait_ms / 1000
        while self.current_length < length:
            if self._canceled or time.monotonic() >= deadline:
                return self.current_length >= length
            await asyncio.sleep(poll_ms / 1000)
        return True

    async def _run(self) -> None:
        idle_since: float | None = None
        while not self._canceled:
            if self._emitted == self._target:
                now = time.monotonic()
                if idle_since is None:
                    idle_since = now
                elif (now - idle_since) * 1000 >= self.config.idle_stop_delay_ms:
                    break
                await asyncio.sleep(self.config.frame_delay_ms / 1000)
                continue

            idle_since = None
            frame = next_frame(self._emitted, self._target, self._rush, self.config)
            if frame != self._emitted:
                self._emitted = frame
                self._on_frame(frame)

            delay = self.config.rush_frame_delay_ms if self._rush else self.config.frame_delay_ms
            await asyncio.sleep(delay / 1000)

        if self._task is asyncio.current_task():
            self._task = None
