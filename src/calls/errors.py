"""Domain-specific exceptions for call signaling.

These exceptions are safe to import from API layers without pulling in aiortc.
"""

from __future__ import annotations


class CallError(Exception):
    status_code: int = 500
    default_detail: str = "Call error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MediaAccessDenied(CallError):
    status_code = 403
    default_detail = "Could not access camera/microphone. Please check permissions."


class StoreUnavailable(CallError):
    status_code = 503
    default_detail = "Signaling store unavailable."


class NegotiationFailed(CallError):
    status_code = 502
    default_detail = "Peer connection negotiation failed."


class StaleInvitation(CallError):
    status_code = 410
    default_detail = "Invitation expired."


class DuplicateApplication(CallError):
    status_code = 409
    default_detail = "Negotiation message already applied."


class CallInProgress(CallError):
    status_code = 409
    default_detail = "Another call is already in progress."


class NoPendingInvitation(CallError):
    status_code = 404
    default_detail = "No incoming call to answer."


class NoActiveCall(CallError):
    status_code = 404
    default_detail = "No active call."
