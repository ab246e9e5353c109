from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from pydantic import ValidationError

from calls.errors import DuplicateApplication, NegotiationFailed
from calls.records import SessionDescription
from media.stream import LocalStream, RemoteStream
from negotiation.candidates import candidate_from_record, candidates_from_sdp, is_end_of_candidates

LOGGER = logging.getLogger(__name__)

StateHandler = Callable[[str], Awaitable[None]]
CandidateHandler = Callable[[dict[str, Any]], Awaitable[None]]
PeerFactory = Callable[..., Any]

CONNECTED_ICE_STATES = frozenset({"connected", "completed"})
REPORTED_STATES = frozenset({"connecting", "connected", "disconnected", "failed", "closed"})


class NegotiationEngine:
    """Owns one peer connection and the offer/answer/candidate bookkeeping around it.

    - The remote description is applied at most once.
    - Remote candidates are deduplicated by their store key, buffered until the
      remote description is in place and then applied in receipt order.
    - `connected` is reported once, from whichever of the connection-state or
      ICE-state signals reaches it first.
    """

    def __init__(
        self,
        ice_servers: Iterable[str],
        *,
        on_state: StateHandler | None = None,
        on_local_candidate: CandidateHandler | None = None,
        pool_size: int = 0,
        peer_factory: PeerFactory = RTCPeerConnection,
    ) -> None:
        urls = list(ice_servers)
        configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=urls)] if urls else [])
        LOGGER.info("Creating peer connection (%d ICE server(s), pool size %d)", len(urls), pool_size)

        self._pc = peer_factory(configuration=configuration)
        self._on_state = on_state
        self._on_local_candidate = on_local_candidate
        self._remote_ready = False
        self._remote_applying = False
        self._pending: list[dict[str, Any]] = []
        self._seen_candidates: set[str] = set()
        self._last_state: str | None = None
        self._closed = False
        self.remote_stream = RemoteStream()

        self._pc.on("connectionstatechange", self._handle_connection_state)
        self._pc.on("iceconnectionstatechange", self._handle_ice_state)
        self._pc.on("track", self._handle_track)

    @property
    def connected(self) -> bool:
        return self._last_state == "connected"

    @property
    def has_remote_description(self) -> bool:
        return self._remote_ready

    @property
    def pending_candidates(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def attach_local_stream(self, stream: LocalStream) -> None:
        for track in stream.tracks:
            LOGGER.info("Adding %s track to peer connection", track.kind)
            self._pc.addTrack(track)

    async def create_offer(self) -> dict[str, str]:
        offer = await self._pc.createOffer()
        return await self._set_local(offer)

    async def create_answer(self) -> dict[str, str]:
        if not self._remote_ready:
            raise NegotiationFailed("Cannot answer before the offer is applied.")
        answer = await self._pc.createAnswer()
        return await self._set_local(answer)

    async def set_remote_description(self, message: dict[str, Any]) -> bool:
        """Apply the peer's offer or answer.

        Returns False without touching the peer connection when a remote
        description is already set or being set.
        """

        try:
            self._claim_remote()
        except DuplicateApplication as exc:
            LOGGER.debug("Ignoring remote description: %s", exc.detail)
            return False
        try:
            parsed = SessionDescription.model_validate(message)
        except ValidationError as exc:
            raise NegotiationFailed(f"Malformed session description: {exc.error_count()} error(s)") from exc
        description = RTCSessionDescription(sdp=parsed.sdp, type=parsed.type)

        self._remote_applying = True
        try:
            await self._pc.setRemoteDescription(description)
        except ValueError as exc:
            self._remote_applying = False
            raise NegotiationFailed(f"Remote description rejected: {exc}") from exc
        LOGGER.info("Remote %s applied", description.type)

        # Candidates that arrive while the backlog drains are appended and
        # picked up by the same loop, so receipt order holds.
        try:
            while self._pending:
                await self._apply_candidate(self._pending.pop(0))
        finally:
            self._remote_ready = True
            self._remote_applying = False
        return True

    async def add_remote_candidate(self, candidate_id: str, record: Any) -> None:
        if self._closed or candidate_id in self._seen_candidates:
            return
        self._seen_candidates.add(candidate_id)
        if is_end_of_candidates(record):
            LOGGER.debug("End of remote candidates")
            return
        if not self._remote_ready:
            self._pending.append(record)
            LOGGER.debug("Buffered remote candidate %s (%d pending)", candidate_id, len(self._pending))
            return
        await self._apply_candidate(record)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        await self._pc.close()
        LOGGER.info("Peer connection closed")

    def _claim_remote(self) -> None:
        if self._remote_applying or self._remote_ready or self._pc.remoteDescription is not None:
            raise DuplicateApplication()

    async def _set_local(self, description: RTCSessionDescription) -> dict[str, str]:
        await self._pc.setLocalDescription(description)
        local = self._pc.localDescription
        LOGGER.info("%s created and set as local description", local.type.capitalize())
        if self._on_local_candidate is not None:
            for record in candidates_from_sdp(local.sdp):
                await self._on_local_candidate(record)
        return {"type": local.type, "sdp": local.sdp}

    async def _apply_candidate(self, record: dict[str, Any]) -> None:
        try:
            candidate = candidate_from_record(record)
        except ValueError as exc:
            LOGGER.warning("Skipping malformed remote candidate %r: %s", record, exc)
            return
        try:
            await self._pc.addIceCandidate(candidate)
        except ValueError as exc:
            LOGGER.warning("Peer connection refused remote candidate %r: %s", record, exc)
            return
        LOGGER.debug("Added remote candidate %s", record.get("candidate"))

    async def _handle_connection_state(self) -> None:
        state = self._pc.connectionState
        LOGGER.info("Connection state changed: %s", state)
        await self._report(state)

    async def _handle_ice_state(self) -> None:
        state = self._pc.iceConnectionState
        LOGGER.info("ICE connection state changed: %s", state)
        if state in CONNECTED_ICE_STATES:
            await self._report("connected")
        elif state in {"failed", "disconnected"}:
            await self._report(state)

    async def _handle_track(self, track) -> None:
        LOGGER.info("Received remote %s track", track.kind)
        self.remote_stream.add(track)

    async def _report(self, state: str) -> None:
        if state not in REPORTED_STATES or state == self._last_state:
            return
        if state == "connecting" and self._last_state == "connected":
            return
        self._last_state = state
        if self._on_state is not None:
            await self._on_state(state)
