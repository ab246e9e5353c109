"""Shared abstractions for signaling store clients."""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

ChangeHandler = Callable[[Any], Awaitable[None]]

_SENTINEL = object()
_subscription_ids = itertools.count(1)


class Subscription:
    """A watch on one store path.

    Values are delivered to the handler one at a time, in the order the store
    observed them. Once cancelled, queued and future values are dropped so late
    notifications cannot reach a call that has already been torn down.
    """

    def __init__(
        self,
        path: str,
        handler: ChangeHandler,
        *,
        order_by: str | None = None,
        equal_to: Any = None,
    ) -> None:
        self.id = next(_subscription_ids)
        self.path = path
        self.order_by = order_by
        self.equal_to = equal_to
        self._handler = handler
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._active = True
        self._pending = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending(self) -> int:
        """Values delivered but not yet fully handled."""

        return self._pending

    def deliver(self, value: Any) -> None:
        if not self._active:
            return
        self._pending += 1
        self._queue.put_nowait(copy.deepcopy(value))
        if self._task is None:
            self._task = asyncio.create_task(self._pump(), name=f"watch:{self.path}#{self.id}")

    async def _pump(self) -> None:
        while True:
            value = await self._queue.get()
            try:
                if value is _SENTINEL or not self._active:
                    return
                await self._handler(value)
            except Exception:
                LOGGER.exception("Watch handler for %s failed", self.path)
            finally:
                if value is not _SENTINEL:
                    self._pending -= 1
                self._queue.task_done()

    async def settle(self) -> None:
        """Wait until every value queued so far has been handled."""

        if self._task is not None and not self._task.done():
            await self._queue.join()

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._task is not None and not self._task.done():
            self._queue.put_nowait(_SENTINEL)

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, path={self.path!r}, active={self._active})"


class SignalingStore(ABC):
    """Keyed store used as the signaling relay between two peers.

    No transactions and no ordering guarantee across distinct paths; writes to
    the same path are last-write-wins. Every operation may raise
    `StoreUnavailable`.
    """

    @abstractmethod
    async def read(self, path: str) -> Any:
        """Return the value at `path`, or None when absent."""

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """Replace the value at `path`."""

    @abstractmethod
    async def remove(self, path: str) -> None:
        """Delete the value at `path` and everything below it."""

    @abstractmethod
    async def push(self, path: str, value: Any) -> str:
        """Create a child with a generated key under `path` and return the key."""

    @abstractmethod
    def watch(
        self,
        path: str,
        handler: ChangeHandler,
        *,
        order_by: str | None = None,
        equal_to: Any = None,
    ) -> Subscription:
        """Deliver the full value at `path` now (if present) and on every change."""

    @abstractmethod
    def unwatch(self, subscription: Subscription) -> None:
        """Stop deliveries for `subscription`. Unknown or cancelled ones are ignored."""

    async def close(self) -> None:
        """Release network resources held by the store."""
