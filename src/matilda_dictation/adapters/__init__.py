"""Protocol adapters over the recognition session event contract."""

from .delivery import DeliveryQueue
from .multi_session import (
    ExternalCallback,
    ExternalErrorCode,
    ExternalState,
    MultiSessionAdapter,
    SpeechConfig,
    StartResult,
)
from .standard import (
    RecognitionListener,
    RecognizerErrorCode,
    StandardRecognizerAdapter,
    classify_error_message,
)

__all__ = [
    "DeliveryQueue",
    "ExternalCallback",
    "ExternalErrorCode",
    "ExternalState",
    "MultiSessionAdapter",
    "SpeechConfig",
    "StartResult",
    "RecognitionListener",
    "RecognizerErrorCode",
    "StandardRecognizerAdapter",
    "classify_error_message",
]
