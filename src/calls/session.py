"""Per-call signaling state machine.

Both peers coordinate through one record in the signaling store:

    calls/{sessionId}/status               last-write-wins rendezvous field
    calls/{sessionId}/offer, answer        written once each
    calls/{sessionId}/candidates/{peerId}  append-only, one list per peer

Each side writes only its own intents to `status` (`accepted`, `rejected`,
`ended`) and reacts to the value it observes there, including its own writes
echoed back. Notifications on different paths arrive in any order, so every
handler is idempotent and checks for a terminal status first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from calls.disposer import ResourceDisposer
from calls.errors import (
    CallError,
    CallInProgress,
    NegotiationFailed,
    NoPendingInvitation,
    StoreUnavailable,
)
from calls.records import CallRecord, CallType, Invitation
from calls.state import CallStatus, LocalCallState, Role
from media.capture import MediaProvider
from media.stream import LocalStream, RemoteStream
from negotiation.engine import NegotiationEngine
from signaling.base import ChangeHandler, SignalingStore
from signaling.paths import join_path

LOGGER = logging.getLogger(__name__)

EngineFactory = Callable[..., NegotiationEngine]


@dataclass(frozen=True)
class CallProjection:
    """Read-only view of a call for presentation layers."""

    status: CallStatus
    is_connected: bool
    local_stream: LocalStream | None
    remote_stream: RemoteStream | None
    is_muted: bool
    is_video_enabled: bool
    is_speaker_on: bool
    session_id: str | None = None
    role: Role | None = None
    call_type: CallType | None = None
    peer_id: str | None = None
    connected_at: float | None = None

    def duration_seconds(self, now: float | None = None) -> int:
        if self.connected_at is None:
            return 0
        now = time.time() if now is None else now
        return max(0, int(now - self.connected_at))


IDLE_PROJECTION = CallProjection(
    status=CallStatus.IDLE,
    is_connected=False,
    local_stream=None,
    remote_stream=None,
    is_muted=False,
    is_video_enabled=False,
    is_speaker_on=False,
)


class CallSession:
    """One call, from either side, from creation until teardown."""

    def __init__(
        self,
        *,
        store: SignalingStore,
        media: MediaProvider,
        engine_factory: EngineFactory,
        local_user_id: str,
        peer_id: str,
        call_type: CallType,
        role: Role,
        session_id: str | None = None,
        calls_path: str = "calls",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._media = media
        self._engine_factory = engine_factory
        self._local_user_id = local_user_id
        self._calls_path = calls_path
        self._clock = clock
        self._lock = asyncio.Lock()

        self.state = LocalCallState(role=role, peer_id=peer_id, call_type=call_type, session_id=session_id)
        if role == "callee":
            self.state.transition(CallStatus.RINGING)
        self._disposer = ResourceDisposer(self.state, store, calls_path=calls_path)

    @classmethod
    def outgoing(cls, contact_id: str, call_type: CallType, **kwargs: Any) -> CallSession:
        return cls(peer_id=contact_id, call_type=call_type, role="caller", **kwargs)

    @classmethod
    def incoming(cls, invitation: Invitation, **kwargs: Any) -> CallSession:
        return cls(
            peer_id=invitation.caller_id,
            call_type=invitation.type,
            role="callee",
            session_id=invitation.session_id,
            **kwargs,
        )

    @property
    def status(self) -> CallStatus:
        return self.state.status

    @property
    def session_id(self) -> str | None:
        return self.state.session_id

    @property
    def disposer(self) -> ResourceDisposer:
        return self._disposer

    # Local intents

    async def start(self) -> None:
        """Create the session record, publish the offer and start listening."""

        async with self._lock:
            state = self.state
            if state.role != "caller" or state.status is not CallStatus.IDLE:
                raise CallInProgress("Call already started.")
            state.transition(CallStatus.CALLING)
            LOGGER.info("Starting outgoing %s call to %s", state.call_type, state.peer_id)
            try:
                await self._prepare_media()

                record = CallRecord(
                    caller_id=self._local_user_id,
                    callee_id=state.peer_id,
                    type=state.call_type,
                    status="calling",
                    created_at=int(self._clock() * 1000),
                )
                state.session_id = await self._store.push(self._calls_path, record.to_store())
                LOGGER.info("Call document created with ID %s", state.session_id)
                self._check_live()

                offer = await state.engine.create_offer()
                self._check_live()
                await self._store.write(self._path("offer"), offer)
                LOGGER.info("Offer saved for call %s", state.session_id)

                self._watch("answer", self._on_answer)
                self._watch(join_path("candidates", state.peer_id), self._on_candidates)
                self._watch("status", self._on_status)
            except Exception as exc:
                LOGGER.error("Error starting call: %s", exc)
                await self._abort()
                raise

    async def accept(self) -> None:
        """Answer the caller's offer."""

        async with self._lock:
            state = self.state
            if state.role != "callee" or state.status is not CallStatus.RINGING:
                raise NoPendingInvitation("Call is not ringing.")
            LOGGER.info("Accepting incoming call %s", state.session_id)
            try:
                await self._store.write(self._path("status"), "accepted")
                await self._prepare_media()

                offer = await self._store.read(self._path("offer"))
                self._check_live()
                if not offer:
                    raise NegotiationFailed("No offer found for call.")
                await state.engine.set_remote_description(offer)
                answer = await state.engine.create_answer()
                self._check_live()
                await self._store.write(self._path("answer"), answer)
                LOGGER.info("Answer saved for call %s", state.session_id)

                self._watch(join_path("candidates", state.peer_id), self._on_candidates)
                self._watch("status", self._on_status)
                state.transition(CallStatus.CONNECTING)
            except Exception as exc:
                LOGGER.error("Error accepting call: %s", exc)
                await self._abort()
                raise

    async def reject(self) -> None:
        async with self._lock:
            state = self.state
            if state.role != "callee":
                raise NoPendingInvitation("Only an incoming call can be rejected.")
            if state.status.terminal:
                return
            LOGGER.info("Rejecting call %s", state.session_id)
            try:
                await self._store.write(self._path("status"), "rejected")
            finally:
                await self._finish(CallStatus.REJECTED)

    async def end(self) -> None:
        """Hang up. A store failure is raised after local teardown has completed."""

        async with self._lock:
            if self.state.status.terminal:
                await self._disposer.dispose()
                return
            LOGGER.info("Ending call %s", self.state.session_id)
            try:
                if self.state.session_id:
                    await self._store.write(self._path("status"), "ended")
            finally:
                await self._finish(CallStatus.ENDED)

    # Controls

    def toggle_mute(self) -> bool:
        stream = self.state.local_stream
        if stream is not None and stream.audio_tracks:
            track = stream.audio_tracks[0]
            track.enabled = not track.enabled
            self.state.is_muted = not track.enabled
            LOGGER.info("Audio muted: %s", self.state.is_muted)
        return self.state.is_muted

    def toggle_video(self) -> bool:
        stream = self.state.local_stream
        if stream is not None and stream.video_tracks:
            track = stream.video_tracks[0]
            track.enabled = not track.enabled
            self.state.is_video_enabled = track.enabled
            LOGGER.info("Video enabled: %s", self.state.is_video_enabled)
        return self.state.is_video_enabled

    def toggle_speaker(self) -> bool:
        self.state.is_speaker_on = not self.state.is_speaker_on
        LOGGER.info("Speaker on: %s", self.state.is_speaker_on)
        return self.state.is_speaker_on

    def projection(self) -> CallProjection:
        state = self.state
        return CallProjection(
            status=state.status,
            is_connected=state.status is CallStatus.CONNECTED,
            local_stream=state.local_stream,
            remote_stream=state.engine.remote_stream if state.engine is not None else None,
            is_muted=state.is_muted,
            is_video_enabled=state.is_video_enabled,
            is_speaker_on=state.is_speaker_on,
            session_id=state.session_id,
            role=state.role,
            call_type=state.call_type,
            peer_id=state.peer_id,
            connected_at=state.connected_at,
        )

    # Remote events

    async def _on_status(self, value: Any) -> None:
        state = self.state
        if state.status.terminal:
            return
        if value is None:
            if state.remote_status_seen:
                LOGGER.info("Call record %s removed by peer", state.session_id)
                await self._finish(CallStatus.ENDED)
            return
        if state.remote_status_seen and value == state.last_remote_status:
            LOGGER.debug("Ignoring repeated status %s", value)
            return
        state.remote_status_seen = True
        state.last_remote_status = value
        LOGGER.info("Call %s status changed to: %s", state.session_id, value)

        if value == "accepted":
            state.transition(CallStatus.CONNECTING)
        elif value == "rejected":
            await self._finish(CallStatus.REJECTED)
        elif value == "ended":
            await self._finish(CallStatus.ENDED)

    async def _on_answer(self, value: Any) -> None:
        state = self.state
        if not value or state.status.terminal or state.engine is None:
            return
        try:
            applied = await state.engine.set_remote_description(value)
        except NegotiationFailed as exc:
            LOGGER.error("Could not apply answer: %s", exc)
            await self._announce("ended")
            await self._finish(CallStatus.ENDED)
            return
        if not applied:
            LOGGER.debug("Answer for %s already applied", state.session_id)
            return
        state.transition(CallStatus.CONNECTING)

    async def _on_candidates(self, value: Any) -> None:
        if not isinstance(value, dict):
            return
        for candidate_id in sorted(value):
            engine = self.state.engine
            if engine is None or self.state.status.terminal:
                return
            await engine.add_remote_candidate(candidate_id, value[candidate_id])

    async def _on_engine_state(self, engine_state: str) -> None:
        state = self.state
        if state.status.terminal:
            return
        if engine_state == "connected":
            if state.transition(CallStatus.CONNECTED):
                state.connected_at = self._clock()
        elif engine_state in {"disconnected", "failed"}:
            LOGGER.warning("Peer connection %s for call %s", engine_state, state.session_id)
            await self._announce("ended")
            await self._finish(CallStatus.ENDED)

    async def _publish_candidate(self, record: dict[str, Any]) -> None:
        if not self.state.session_id or self.state.status.terminal:
            return
        await self._store.push(self._path(join_path("candidates", self._local_user_id)), record)
        LOGGER.debug("Sent local candidate for %s", self.state.session_id)

    # Helpers

    async def _prepare_media(self) -> None:
        state = self.state
        stream = await self._media.acquire(state.call_type)
        if state.disposed:
            stream.stop()
            self._check_live()
        state.local_stream = stream
        state.engine = self._engine_factory(
            on_state=self._on_engine_state,
            on_local_candidate=self._publish_candidate,
        )
        state.engine.attach_local_stream(stream)

    def _check_live(self) -> None:
        if self.state.status.terminal:
            raise NegotiationFailed("Call ended during setup.")

    async def _abort(self) -> None:
        if not self.state.status.terminal:
            await self._announce("ended")
        await self._finish(CallStatus.ENDED)

    async def _announce(self, status: str) -> None:
        """Publish a terminal intent without letting a store failure stop teardown."""

        if not self.state.session_id:
            return
        try:
            await self._store.write(self._path("status"), status)
        except StoreUnavailable:
            LOGGER.exception("Could not publish status %s for call %s", status, self.state.session_id)

    async def _finish(self, target: CallStatus) -> None:
        self.state.transition(target)
        await self._disposer.dispose()

    def _watch(self, sub_path: str, handler: ChangeHandler) -> None:
        subscription = self._store.watch(self._path(sub_path), handler)
        self.state.subscriptions.append(subscription)

    def _path(self, sub_path: str) -> str:
        if not self.state.session_id:
            raise CallError("Call has no session id yet.")
        return join_path(self._calls_path, self.state.session_id, sub_path)
