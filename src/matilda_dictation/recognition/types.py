"""Type definitions for recognition sessions.

Provides:
- SessionState: Lifecycle phases of one recognition attempt
- ErrorCategory: Core error taxonomy
- EngineEvent variants: Partial, Final, EngineError, Stopped, Amplitude
- PostProcessResult / SessionResult: What a session hands to its sink
- RecognitionError: Base exception for recognition errors
"""

from dataclasses import dataclass
from enum import Enum


class SessionState(Enum):
    """State of a recognition session."""

    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.ERROR, SessionState.CANCELED)


class ErrorCategory(Enum):
    """Coarse error taxonomy shared by engines, sessions and adapters."""

    PERMISSION_DENIED = "permission_denied"
    BUSY = "busy"
    ENGINE_BUILD_FAILURE = "engine_build_failure"
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUDIO = "audio"
    NO_MATCH = "no_match"
    SERVER = "server"
    GENERIC = "generic"


# Engine events. A closed set: sessions match on these classes only.


@dataclass(frozen=True)
class Partial:
    text: str


@dataclass(frozen=True)
class Final:
    text: str


@dataclass(frozen=True)
class EngineError:
    """Engine failure. Engines that know the cause set ``category``."""

    message: str
    category: ErrorCategory | None = None


@dataclass(frozen=True)
class Stopped:
    """Engine stopped capturing (explicit stop or VAD auto-stop)."""


@dataclass(frozen=True)
class Amplitude:
    level: float  # 0.0 - 1.0


EngineEvent = Partial | Final | EngineError | Stopped | Amplitude

TERMINAL_EVENTS = (Final, EngineError)


@dataclass
class PostProcessResult:
    """Outcome of post-processing a final transcript."""

    text: str
    used_ai: bool = False
    attempted: bool = False
    elapsed_ms: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "text": self.text,
            "used_ai": self.used_ai,
            "attempted": self.attempted,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class SessionResult:
    """Final text delivered by a session, with accounting details."""

    text: str
    raw_text: str = ""
    used_ai: bool = False
    ai_attempted: bool = False
    ai_elapsed_ms: int = 0
    vendor: str = ""
    used_backup: bool = False

    # Timing
    audio_ms: int = 0
    processing_ms: int = 0
    local_model_wait_ms: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "text": self.text,
            "raw_text": self.raw_text,
            "used_ai": self.used_ai,
            "ai_attempted": self.ai_attempted,
            "ai_elapsed_ms": self.ai_elapsed_ms,
            "vendor": self.vendor,
            "used_backup": self.used_backup,
            "audio_ms": self.audio_ms,
            "processing_ms": self.processing_ms,
            "local_model_wait_ms": self.local_model_wait_ms,
        }


@dataclass
class SessionFailure:
    """Terminal error delivered by a session."""

    category: ErrorCategory
    message: str

    def to_dict(self) -> dict:
        return {"category": self.category.value, "message": self.message}


class RecognitionError(Exception):
    """Base exception for recognition errors."""

    category = ErrorCategory.GENERIC


class SessionBusyError(RecognitionError):
    """Raised when a session is requested while the surface is busy."""

    category = ErrorCategory.BUSY

    def __init__(self, surface: str):
        self.surface = surface
        super().__init__(f"Recognition surface busy: {surface}")


class SessionNotFoundError(RecognitionError):
    """Raised when a session ID is not found."""

    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionStateError(RecognitionError):
    """Raised when an operation is not valid in the session's current state."""

    def __init__(self, session_id: int, state: SessionState, operation: str):
        self.session_id = session_id
        self.state = state
        super().__init__(f"Cannot {operation} session {session_id} in state {state.value}")


class EngineBuildError(RecognitionError):
    """Raised when a recognition engine cannot be constructed."""

    category = ErrorCategory.ENGINE_BUILD_FAILURE

    def __init__(self, vendor: str, reason: str):
        self.vendor = vendor
        self.reason = reason
        super().__init__(f"Cannot build engine for {vendor}: {reason}")


class PostProcessError(RecognitionError):
    """Raised by AI post-processing clients."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)
