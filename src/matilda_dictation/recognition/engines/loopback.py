"""Loopback engine for connectivity tests and local development.

Produces a fixed partial and a fixed final transcript without touching any
audio device or vendor API, while still following the normal engine event
contract so callers exercise the full session path.
"""

import asyncio

from ..types import Final, Partial, Stopped
from .base import EngineKind, RecognitionEngine

DEFAULT_PARTIAL_TEXT = "[connectivity test in progress] ..."
DEFAULT_FINAL_TEXT = "External speech API connected (mock)"


class LoopbackEngine(RecognitionEngine):
    """Deterministic engine that answers with canned text.

    With ``auto_finish`` the engine stops itself right after starting, the way
    a VAD auto-stop would; otherwise it waits for ``stop()``.
    """

    kind = EngineKind.STREAMING

    def __init__(
        self,
        text: str = DEFAULT_FINAL_TEXT,
        partial_text: str | None = DEFAULT_PARTIAL_TEXT,
        vendor: str = "mock",
        auto_finish: bool = True,
        delay_ms: int = 0,
    ) -> None:
        super().__init__(vendor)
        self.text = text
        self.partial_text = partial_text
        self.auto_finish = auto_finish
        self.delay_ms = delay_ms
        self._task: asyncio.Task | None = None

    async def _on_start(self) -> None:
        if self.partial_text:
            self.emit(Partial(self.partial_text))
        if self.auto_finish:
            self._task = asyncio.create_task(self._finish(auto_stopped=True))

    async def _on_stop(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._finish(auto_stopped=False))

    async def _on_cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def _finish(self, auto_stopped: bool) -> None:
        if self.delay_ms:
            await asyncio.sleep(self.delay_ms / 1000)
        if auto_stopped:
            self.emit(Stopped())
        self.emit(Final(self.text))
