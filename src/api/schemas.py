"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from calls.records import CallType
from calls.session import CallProjection


class StartCallRequest(BaseModel):
    contact_id: str = Field(min_length=1)
    type: CallType = "voice"


class CallStateResponse(BaseModel):
    status: str
    is_connected: bool
    is_muted: bool
    is_video_enabled: bool
    is_speaker_on: bool
    session_id: str | None = None
    role: str | None = None
    call_type: CallType | None = None
    peer_id: str | None = None
    local_tracks: list[str] = Field(default_factory=list, description="Kinds of the captured tracks.")
    remote_tracks: list[str] = Field(default_factory=list, description="Kinds of the received tracks.")
    duration_seconds: int = 0

    @classmethod
    def from_projection(cls, projection: CallProjection) -> CallStateResponse:
        return cls(
            status=projection.status.value,
            is_connected=projection.is_connected,
            is_muted=projection.is_muted,
            is_video_enabled=projection.is_video_enabled,
            is_speaker_on=projection.is_speaker_on,
            session_id=projection.session_id,
            role=projection.role,
            call_type=projection.call_type,
            peer_id=projection.peer_id,
            local_tracks=[track.kind for track in projection.local_stream.tracks] if projection.local_stream else [],
            remote_tracks=projection.remote_stream.kinds if projection.remote_stream else [],
            duration_seconds=projection.duration_seconds(),
        )


class HealthResponse(BaseModel):
    status: str = "ok"
    local_user_id: str
    scanner_running: bool
