"""Recognition session orchestration.

Provides:
- RecognitionSession: state machine for one recognition attempt
- RecognitionService / SessionRegistry: session creation and busy checks
- TimeoutPolicy: processing deadlines
- ParallelEngineCoordinator: primary/backup failover
- PacedTextRenderer: typewriter rendering of streamed text
- PostProcessPipeline: simple and AI cleanup of final text
"""

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .parallel import FailoverMode, ParallelEngineCoordinator
    from .postprocess import PostProcessPipeline
    from .registry import SessionRegistry
    from .service import RecognitionService
    from .session import RecognitionSession
    from .sink import SessionEventSink
    from .timeout_policy import TimeoutPolicy
    from .typewriter import PacedTextRenderer, TypewriterConfig
    from .types import ErrorCategory, SessionFailure, SessionResult, SessionState

_LAZY_EXPORTS = {
    "FailoverMode": (".parallel", "FailoverMode"),
    "ParallelEngineCoordinator": (".parallel", "ParallelEngineCoordinator"),
    "PostProcessPipeline": (".postprocess", "PostProcessPipeline"),
    "SessionRegistry": (".registry", "SessionRegistry"),
    "RecognitionService": (".service", "RecognitionService"),
    "RecognitionSession": (".session", "RecognitionSession"),
    "SessionEventSink": (".sink", "SessionEventSink"),
    "TimeoutPolicy": (".timeout_policy", "TimeoutPolicy"),
    "PacedTextRenderer": (".typewriter", "PacedTextRenderer"),
    "TypewriterConfig": (".typewriter", "TypewriterConfig"),
    "ErrorCategory": (".types", "ErrorCategory"),
    "SessionFailure": (".types", "SessionFailure"),
    "SessionResult": (".types", "SessionResult"),
    "SessionState": (".types", "SessionState"),
}

__all__ = list(_LAZY_EXPORTS)


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
