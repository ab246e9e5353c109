"""Discovery of calls addressed to the local user.

Invitations arrive before the recipient knows any session id, so the scanner
keeps one long-lived watch over the call collection. The watch is a filtered
query on `calleeId`, which the Realtime Database answers from an index instead
of streaming every record to every client.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from calls.errors import StaleInvitation
from calls.records import INVITING_STATUSES, TERMINAL_RECORD_STATUSES, CallRecord, Invitation
from profiles.directory import ProfileDirectory
from signaling.base import SignalingStore, Subscription
from signaling.paths import join_path

LOGGER = logging.getLogger(__name__)

InvitationHandler = Callable[[Invitation | None], Awaitable[None]]


def ensure_fresh(record: CallRecord, *, now_ms: int, window_ms: int) -> None:
    age = now_ms - record.created_at
    if age >= window_ms:
        raise StaleInvitation(f"Invitation is {age // 1000}s old")


class IncomingCallScanner:
    """Raises at most one invitation at a time for the local user.

    `on_invitation` receives the new invitation, or None when the current one is
    withdrawn (caller hung up, record removed, freshness window passed).
    """

    def __init__(
        self,
        store: SignalingStore,
        profiles: ProfileDirectory,
        *,
        local_user_id: str,
        calls_path: str = "calls",
        freshness_seconds: int = 300,
        on_invitation: InvitationHandler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._profiles = profiles
        self._local_user_id = local_user_id
        self._calls_path = calls_path
        self._window_ms = freshness_seconds * 1000
        self._on_invitation = on_invitation
        self._clock = clock
        self._lock = asyncio.Lock()

        self._snapshot: Any = None
        self._current: Invitation | None = None
        self._collection_watch: Subscription | None = None
        self._status_watch: Subscription | None = None
        self._expiry_task: asyncio.Task | None = None
        self._processing: str | None = None
        self._decided: set[str] = set()

    @property
    def invitation(self) -> Invitation | None:
        return self._current

    @property
    def processing(self) -> bool:
        return self._processing is not None

    @property
    def running(self) -> bool:
        return self._collection_watch is not None

    def start(self) -> None:
        if self._collection_watch is not None:
            return
        LOGGER.info("Setting up incoming call listener for user %s", self._local_user_id)
        self._collection_watch = self._store.watch(
            self._calls_path,
            self._on_calls,
            order_by="calleeId",
            equal_to=self._local_user_id,
        )

    async def stop(self) -> None:
        LOGGER.info("Cleaning up incoming call listeners")
        if self._collection_watch is not None:
            self._store.unwatch(self._collection_watch)
            self._collection_watch = None
        self._release_status_watch()
        self._cancel_expiry()
        self._current = None

    def begin_decision(self, session_id: str) -> None:
        """Suppress reporting while the user's accept/reject is being processed."""

        self._processing = session_id
        self._decided.add(session_id)

    async def finish_decision(self) -> None:
        self._processing = None
        async with self._lock:
            await self._clear()
        await self.rescan()

    async def rescan(self) -> None:
        """Re-evaluate the last snapshot, e.g. after time has passed."""

        async with self._lock:
            if self._processing is not None:
                LOGGER.debug("Decision in flight; not reporting invitations")
                return

            match = self._select(self._snapshot)
            if match is None:
                await self._clear()
                return

            session_id, record = match
            if self._current is not None and self._current.session_id == session_id:
                return

            profile = await self._profiles.lookup(record.caller_id)
            invitation = Invitation(
                session_id=session_id,
                caller_id=record.caller_id,
                caller_name=profile.name,
                caller_avatar=profile.avatar,
                type=record.type,
                created_at=record.created_at,
            )
            await self._raise(invitation)

    async def _on_calls(self, value: Any) -> None:
        self._snapshot = value
        await self.rescan()

    def _select(self, calls: Any) -> tuple[str, CallRecord] | None:
        if not isinstance(calls, dict):
            self._decided.clear()
            return None
        # Decided sessions stay skipped only while their record exists.
        self._decided.intersection_update(calls)
        now_ms = int(self._clock() * 1000)
        for session_id in sorted(calls):
            data = calls[session_id]
            if session_id in self._decided or not isinstance(data, dict):
                continue
            try:
                record = CallRecord.model_validate(data)
            except ValidationError:
                LOGGER.debug("Skipping incomplete call record %s", session_id)
                continue
            if record.callee_id != self._local_user_id or record.status not in INVITING_STATUSES:
                continue
            try:
                ensure_fresh(record, now_ms=now_ms, window_ms=self._window_ms)
            except StaleInvitation as exc:
                LOGGER.debug("Ignoring call %s: %s", session_id, exc.detail)
                continue
            return session_id, record
        return None

    async def _raise(self, invitation: Invitation) -> None:
        LOGGER.info("Found incoming call %s from %s", invitation.session_id, invitation.caller_id)
        self._current = invitation

        self._release_status_watch()
        self._status_watch = self._store.watch(
            join_path(self._calls_path, invitation.session_id, "status"),
            functools.partial(self._on_invitation_status, invitation.session_id),
        )

        self._cancel_expiry()
        deadline = (invitation.created_at + self._window_ms) / 1000
        self._expiry_task = asyncio.create_task(self._expire_at(deadline))

        if self._on_invitation is not None:
            await self._on_invitation(invitation)

    async def _clear(self) -> None:
        self._release_status_watch()
        self._cancel_expiry()
        if self._current is None:
            return
        LOGGER.info("Withdrawing invitation %s", self._current.session_id)
        self._current = None
        if self._on_invitation is not None:
            await self._on_invitation(None)

    async def _on_invitation_status(self, session_id: str, value: Any) -> None:
        if value is not None and value not in TERMINAL_RECORD_STATUSES:
            return
        async with self._lock:
            if self._current is None or self._current.session_id != session_id:
                return
            if self._processing is not None:
                return
            LOGGER.info("Call %s %s before it was answered", session_id, value or "removed")
            await self._clear()

    async def _expire_at(self, deadline: float) -> None:
        while (remaining := deadline - self._clock()) > 0:
            await asyncio.sleep(remaining)
        await self.rescan()

    def _release_status_watch(self) -> None:
        if self._status_watch is not None:
            self._store.unwatch(self._status_watch)
            self._status_watch = None

    def _cancel_expiry(self) -> None:
        task = self._expiry_task
        self._expiry_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
