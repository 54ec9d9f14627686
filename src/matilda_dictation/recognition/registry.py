"""Session registry owned by the service boundary.

Assigns session ids and enforces the busy check. All mutation happens
under one lock so a second start request racing the first is rejected
immediately instead of queued.
"""

import threading
from collections.abc import Iterator
from dataclasses import dataclass

from ..core.config import setup_logging
from .session import RecognitionSession
from .types import SessionBusyError, SessionNotFoundError, SessionState

logger = setup_logging(__name__, log_filename="recognition.txt")


@dataclass
class _Entry:
    surface: str
    exclusive: bool
    session: RecognitionSession | None = None

    def blocks_new_session(self) -> bool:
        if self.session is None:
            return True  # reserved, not started yet
        if self.session.is_terminal:
            return False
        if self.exclusive:
            return True
        return self.session.state in (SessionState.IDLE, SessionState.RECORDING)


class SessionRegistry:
    """Registry of live sessions, indexed by integer id.

    Ids are small positive integers assigned monotonically from 1.

    Busy semantics per surface:
    - exclusive: any live session on the surface rejects a new one
    - concurrent: only a session that is still recording rejects a new one
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_id = 1
        self._entries: dict[int, _Entry] = {}

    def reserve(self, surface: str, exclusive: bool = True) -> int:
        """Reserve a session id on ``surface``.

        Raises:
            SessionBusyError: a live session on the surface blocks a new one

        """
        with self._lock:
            for entry in self._entries.values():
                if entry.surface == surface and entry.blocks_new_session():
                    raise SessionBusyError(surface)
            session_id = self._next_id
            self._next_id += 1
            self._entries[session_id] = _Entry(surface=surface, exclusive=exclusive)
        logger.debug(f"Reserved session {session_id} on {surface}")
        return session_id

    def attach(self, session_id: int, session: RecognitionSession) -> None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                raise SessionNotFoundError(session_id)
            entry.session = session

    def release(self, session_id: int) -> bool:
        """Drop a session. Returns whether it was registered."""
        with self._lock:
            removed = self._entries.pop(session_id, None) is not None
        if removed:
            logger.debug(f"Released session {session_id}")
        return removed

    def get(self, session_id: int) -> RecognitionSession | None:
        with self._lock:
            entry = self._entries.get(session_id)
            return entry.session if entry else None

    def sessions(self, surface: str | None = None) -> list[RecognitionSession]:
        with self._lock:
            return [
                entry.session
                for entry in self._entries.values()
                if entry.session is not None and (surface is None or entry.surface == surface)
            ]

    def describe(self) -> list[dict]:
        """Snapshot of registered sessions for status endpoints."""
        with self._lock:
            entries = list(self._entries.items())
        return [
            {
                "session_id": session_id,
                "surface": entry.surface,
                "state": entry.session.state.value if entry.session else "reserved",
                "vendor": entry.session.engine.vendor if entry.session else None,
                "parallel": entry.session.is_parallel if entry.session else False,
            }
            for session_id, entry in entries
        ]

    def is_busy(self, surface: str) -> bool:
        with self._lock:
            return any(e.surface == surface and e.blocks_new_session() for e in self._entries.values())

    def is_any_recording(self, surface: str | None = None) -> bool:
        return any(session.is_recording for session in self.sessions(surface))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[int]:
        with self._lock:
            return iter(list(self._entries))
