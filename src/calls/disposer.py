from __future__ import annotations

import logging

from calls.errors import StoreUnavailable
from calls.state import LocalCallState
from signaling.base import SignalingStore
from signaling.paths import join_path

LOGGER = logging.getLogger(__name__)


class ResourceDisposer:
    """Single teardown path for a call.

    Safe to call from every terminal transition, from a hang-up racing a remote
    status change, and on shutdown: the first call does the work, later calls
    return immediately. Every step tolerates resources that were never created.
    """

    def __init__(self, state: LocalCallState, store: SignalingStore, *, calls_path: str) -> None:
        self._state = state
        self._store = store
        self._calls_path = calls_path

    @property
    def disposed(self) -> bool:
        return self._state.disposed

    async def dispose(self) -> None:
        state = self._state
        if state.disposed:
            return
        state.disposed = True
        LOGGER.info("Cleaning up call resources (session=%s)", state.session_id)

        if state.local_stream is not None:
            try:
                state.local_stream.stop()
            except Exception:
                LOGGER.exception("Stopping local tracks failed")
            state.local_stream = None

        if state.engine is not None:
            try:
                await state.engine.close()
            except Exception:
                LOGGER.exception("Closing peer connection failed")
            state.engine = None

        for subscription in state.subscriptions:
            self._store.unwatch(subscription)
        state.subscriptions.clear()

        # The caller owns the record; the callee leaves removal to it so the
        # caller still observes the callee's final status write.
        if state.role == "caller" and state.session_id:
            try:
                await self._store.remove(join_path(self._calls_path, state.session_id))
            except StoreUnavailable:
                LOGGER.exception("Removing call record %s failed", state.session_id)
