"""Session event contract consumed by protocol adapters.

A session emits, in order: ``ready``, then zero or more ``partial`` events
(with at most one ``beginning_of_speech`` before the first), at most one
``end_of_speech``, and exactly one of ``final`` or ``error``. Nothing is
emitted after the terminal event or after the session was canceled.

Methods are called from the session's sequencing task and must return
quickly; adapters that talk to slow peers hand events off to their own
delivery task.
"""

from abc import ABC, abstractmethod

from .types import SessionFailure, SessionResult


class SessionEventSink(ABC):
    """Receives one session's ordered event stream."""

    def bind_session(self, session_id: int) -> None:
        """Called once with the session id before any event is emitted."""

    @abstractmethod
    def on_ready(self) -> None: ...

    def on_beginning_of_speech(self) -> None:
        pass

    @abstractmethod
    def on_partial(self, text: str) -> None: ...

    def on_amplitude(self, level: float) -> None:
        pass

    def on_end_of_speech(self) -> None:
        pass

    @abstractmethod
    def on_final(self, result: SessionResult) -> None: ...

    @abstractmethod
    def on_error(self, failure: SessionFailure) -> None: ...


class RecordingSink(SessionEventSink):
    """Sink that records events as ``(name, payload)`` tuples.

    Used by the CLI ``simulate`` command and handy in tests.
    """

    def __init__(self) -> None:
        self.session_id: int | None = None
        self.events: list[tuple[str, object]] = []

    def bind_session(self, session_id: int) -> None:
        self.session_id = session_id

    def on_ready(self) -> None:
        self.events.append(("ready", None))

    def on_beginning_of_speech(self) -> None:
        self.events.append(("beginning_of_speech", None))

    def on_partial(self, text: str) -> None:
        self.events.append(("partial", text))

    def on_end_of_speech(self) -> None:
        self.events.append(("end_of_speech", None))

    def on_final(self, result: SessionResult) -> None:
        self.events.append(("final", result))

    def on_error(self, failure: SessionFailure) -> None:
        self.events.append(("error", failure))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def terminal_events(self) -> list[tuple[str, object]]:
        return [event for event in self.events if event[0] in ("final", "error")]
