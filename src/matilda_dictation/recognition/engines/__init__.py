"""Recognition engines."""

from .base import EngineKind, EventSink, LocalModelReadiness, RecognitionEngine
from .file_upload import BufferedFileEngine
from .loopback import LoopbackEngine

__all__ = [
    "EngineKind",
    "EventSink",
    "LocalModelReadiness",
    "RecognitionEngine",
    "BufferedFileEngine",
    "LoopbackEngine",
]
