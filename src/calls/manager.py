"""Entry point used by presentation layers: one active call plus the invitation feed."""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable

from calls.errors import CallError, CallInProgress, NoActiveCall, NoPendingInvitation
from calls.records import CallType, Invitation
from calls.scanner import IncomingCallScanner, InvitationHandler
from calls.session import IDLE_PROJECTION, CallProjection, CallSession, EngineFactory
from config.settings import Settings, get_settings
from media.capture import MediaProvider
from negotiation.engine import NegotiationEngine
from profiles.directory import ProfileDirectory
from signaling.base import SignalingStore

LOGGER = logging.getLogger(__name__)


class CallManager:
    """Owns the current `CallSession` and the `IncomingCallScanner` for one user."""

    def __init__(
        self,
        store: SignalingStore,
        media: MediaProvider,
        *,
        local_user_id: str,
        engine_factory: EngineFactory,
        calls_path: str = "calls",
        users_path: str = "users",
        freshness_seconds: int = 300,
        on_invitation: InvitationHandler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._media = media
        self._local_user_id = local_user_id
        self._engine_factory = engine_factory
        self._calls_path = calls_path
        self._clock = clock
        self._listener = on_invitation
        self._session: CallSession | None = None
        self.scanner = IncomingCallScanner(
            store,
            ProfileDirectory(store, users_path=users_path),
            local_user_id=local_user_id,
            calls_path=calls_path,
            freshness_seconds=freshness_seconds,
            on_invitation=self._handle_invitation,
            clock=clock,
        )

    @classmethod
    def from_settings(
        cls,
        store: SignalingStore,
        media: MediaProvider,
        settings: Settings | None = None,
        **kwargs,
    ) -> CallManager:
        settings = settings or get_settings()
        engine_factory = functools.partial(
            NegotiationEngine,
            settings.ice_servers,
            pool_size=settings.ice_candidate_pool_size,
        )
        return cls(
            store,
            media,
            local_user_id=settings.local_user_id,
            engine_factory=engine_factory,
            calls_path=settings.calls_path,
            users_path=settings.users_path,
            freshness_seconds=settings.invitation_freshness_seconds,
            **kwargs,
        )

    @property
    def local_user_id(self) -> str:
        return self._local_user_id

    @property
    def invitation(self) -> Invitation | None:
        return self.scanner.invitation

    @property
    def session(self) -> CallSession | None:
        return self._session

    async def start(self) -> None:
        self.scanner.start()

    async def shutdown(self) -> None:
        session = self._session
        if session is not None:
            try:
                await session.end()
            except CallError:
                LOGGER.exception("Ending call during shutdown failed")
        await self.scanner.stop()
        await self._store.close()

    async def start_call(self, contact_id: str, call_type: CallType) -> CallProjection:
        self._ensure_idle()
        session = CallSession.outgoing(contact_id, call_type, **self._session_kwargs())
        self._session = session
        await session.start()
        return session.projection()

    async def accept_call(self) -> CallProjection:
        invitation = self._pending_invitation()
        self._ensure_idle()
        self.scanner.begin_decision(invitation.session_id)
        try:
            session = CallSession.incoming(invitation, **self._session_kwargs())
            self._session = session
            await session.accept()
        finally:
            await self.scanner.finish_decision()
        return session.projection()

    async def reject_call(self) -> CallProjection:
        invitation = self._pending_invitation()
        self.scanner.begin_decision(invitation.session_id)
        try:
            session = CallSession.incoming(invitation, **self._session_kwargs())
            if not self._busy():
                self._session = session
            await session.reject()
        finally:
            await self.scanner.finish_decision()
        return session.projection()

    async def end_call(self) -> CallProjection:
        session = self._active_session()
        await session.end()
        return session.projection()

    def toggle_mute(self) -> bool:
        return self._active_session().toggle_mute()

    def toggle_video(self) -> bool:
        return self._active_session().toggle_video()

    def toggle_speaker(self) -> bool:
        return self._active_session().toggle_speaker()

    def projection(self) -> CallProjection:
        if self._session is None:
            return IDLE_PROJECTION
        return self._session.projection()

    async def _handle_invitation(self, invitation: Invitation | None) -> None:
        if invitation is not None:
            LOGGER.info("Incoming %s call from %s", invitation.type, invitation.caller_name)
        if self._listener is not None:
            await self._listener(invitation)

    def _busy(self) -> bool:
        return self._session is not None and not self._session.status.terminal

    def _ensure_idle(self) -> None:
        if self._busy():
            raise CallInProgress()

    def _pending_invitation(self) -> Invitation:
        invitation = self.scanner.invitation
        if invitation is None:
            raise NoPendingInvitation()
        return invitation

    def _active_session(self) -> CallSession:
        if self._session is None:
            raise NoActiveCall()
        return self._session

    def _session_kwargs(self) -> dict:
        return {
            "store": self._store,
            "media": self._media,
            "engine_factory": self._engine_factory,
            "local_user_id": self._local_user_id,
            "calls_path": self._calls_path,
            "clock": self._clock,
        }
