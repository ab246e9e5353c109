"""Pydantic schemas for records exchanged through the signaling store."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CallType = Literal["voice", "video"]
RecordStatus = Literal["calling", "accepted", "connecting", "connected", "ended", "rejected"]

INVITING_STATUSES: frozenset[str] = frozenset({"calling", "accepted"})
TERMINAL_RECORD_STATUSES: frozenset[str] = frozenset({"ended", "rejected"})


class CallRecord(BaseModel):
    """Top-level fields of `calls/{sessionId}`.

    `offer`, `answer` and `candidates` live under the same node but are read
    through their own paths.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    caller_id: str = Field(alias="callerId")
    callee_id: str = Field(alias="calleeId")
    type: CallType
    status: RecordStatus
    created_at: int = Field(alias="createdAt", description="Epoch milliseconds.")

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True)


class SessionDescription(BaseModel):
    """Offer or answer, in the JSON shape of a browser RTCSessionDescription."""

    type: Literal["offer", "answer"]
    sdp: str

    @field_validator("sdp")
    @classmethod
    def sdp_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("SDP may not be empty.")
        return value


class Invitation(BaseModel):
    """An incoming call addressed to the local user."""

    session_id: str
    caller_id: str
    caller_name: str
    caller_avatar: str | None = None
    type: CallType
    created_at: int
