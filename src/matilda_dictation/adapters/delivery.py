"""Ordered, non-blocking delivery of adapter callbacks.

Session sinks must return immediately. Adapters push each callback onto a
DeliveryQueue; one task per queue invokes them in order and awaits the ones
that are coroutines, so a slow peer only delays its own queue.
"""

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from ..core.config import setup_logging

logger = setup_logging(__name__, log_filename="adapters.txt")

_CLOSE = object()


class DeliveryQueue:
    """FIFO of pending callback invocations drained by its own task."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, callback: Callable[..., Any], *args: Any) -> None:
        if self._closed:
            return
        self._queue.put_nowait((callback, args))
        if self._task is None:
            self._task = asyncio.create_task(self._drain(), name=f"delivery-{self.name}")

    def close(self) -> None:
        """Deliver what is queued, then stop."""
        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            self._queue.put_nowait((_CLOSE, ()))

    async def join(self, timeout: float | None = None) -> None:
        """Wait until everything queued before ``close()`` was delivered."""
        if self._task is not None:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)

    def abort(self) -> None:
        self._closed = True
        if self._task is not None:
            self._task.cancel()

    async def _drain(self) -> None:
        while True:
            callback, args = await self._queue.get()
            if callback is _CLOSE:
                return
            try:
                outcome = callback(*args)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Delivery {self.name}: callback {getattr(callback, '__name__', callback)} failed")
