from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ErrorMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "error"
    message: str
    success: bool = False


class WelcomeMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "welcome"
    message: str
    client_id: str
    version: str


class PongMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "pong"
    timestamp: float


class SessionStarted(BaseModel):
    """Reply to start_session / start_pcm_session.

    ``session_id`` is positive on success, otherwise a negative start code.
    """

    model_config = ConfigDict(extra="allow")

    type: str = "session_started"
    session_id: int
    success: bool


class StateMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "state"
    session_id: int
    state: int
    state_name: str
    message: str


class PartialMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "partial"
    session_id: int
    text: str


class FinalMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "final"
    session_id: int
    text: str


class SessionErrorMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "session_error"
    session_id: int
    code: int
    message: str


class AmplitudeMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "amplitude"
    session_id: int
    level: float


class RecordingStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "recording_status"
    session_id: int | None = None
    recording: bool


class VersionMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "version"
    version: str
