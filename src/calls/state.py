from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from calls.records import CallType

if TYPE_CHECKING:  # pragma: no cover
    from media.stream import LocalStream
    from negotiation.engine import NegotiationEngine
    from signaling.base import Subscription

LOGGER = logging.getLogger(__name__)

Role = Literal["caller", "callee"]


class CallStatus(str, enum.Enum):
    IDLE = "idle"
    CALLING = "calling"
    RINGING = "ringing"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDED = "ended"
    REJECTED = "rejected"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CallStatus.ENDED, CallStatus.REJECTED})

ALLOWED_TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.IDLE: frozenset({CallStatus.CALLING, CallStatus.RINGING, CallStatus.ENDED, CallStatus.REJECTED}),
    CallStatus.CALLING: frozenset(
        {CallStatus.CONNECTING, CallStatus.CONNECTED, CallStatus.ENDED, CallStatus.REJECTED}
    ),
    CallStatus.RINGING: frozenset(
        {CallStatus.CONNECTING, CallStatus.CONNECTED, CallStatus.ENDED, CallStatus.REJECTED}
    ),
    CallStatus.CONNECTING: frozenset({CallStatus.CONNECTED, CallStatus.ENDED, CallStatus.REJECTED}),
    CallStatus.CONNECTED: frozenset({CallStatus.ENDED, CallStatus.REJECTED}),
    CallStatus.ENDED: frozenset(),
    CallStatus.REJECTED: frozenset(),
}


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class LocalCallState:
    """In-memory state of one call on this client. Never persisted."""

    role: Role
    peer_id: str
    call_type: CallType
    session_id: str | None = None
    status: CallStatus = CallStatus.IDLE
    local_stream: LocalStream | None = None
    engine: NegotiationEngine | None = None
    subscriptions: list[Subscription] = field(default_factory=list)
    is_muted: bool = False
    is_video_enabled: bool = False
    is_speaker_on: bool = False
    last_remote_status: str | None = None
    remote_status_seen: bool = False
    connected_at: float | None = None
    disposed: bool = False

    def __post_init__(self) -> None:
        self.is_video_enabled = self.call_type == "video"

    def transition(self, target: CallStatus) -> bool:
        """Move to `target` if the table allows it. Returns whether the status changed."""

        if self.status == target:
            return False
        if not can_transition(self.status, target):
            LOGGER.debug("Ignoring transition %s -> %s", self.status.value, target.value)
            return False
        LOGGER.info("Call %s: %s -> %s", self.session_id or "<new>", self.status.value, target.value)
        self.status = target
        return True
