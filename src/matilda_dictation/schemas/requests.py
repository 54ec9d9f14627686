from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str


class PingRequest(BaseMessage):
    type: str = "ping"


class StartSessionRequest(BaseMessage):
    type: str = "start_session"
    vendor_id: str | None = None


class StartPcmSessionRequest(BaseMessage):
    type: str = "start_pcm_session"
    vendor_id: str | None = None


class PcmChunkRequest(BaseMessage):
    type: str = "pcm_chunk"
    session_id: int
    audio_data: str
    sample_rate: int = 16000
    channels: int = 1


class SessionRequest(BaseMessage):
    """Any request that only names a session (stop, cancel, finish, status)."""

    session_id: int


class IsAnyRecordingRequest(BaseMessage):
    type: str = "is_any_recording"


class GetVersionRequest(BaseMessage):
    type: str = "get_version"
