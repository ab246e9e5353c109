from __future__ import annotations

import copy
import itertools
import logging
import secrets
import time
from typing import Any

from signaling.base import ChangeHandler, SignalingStore, Subscription
from signaling.paths import filter_children, get_at, join_path, set_at, split_path

LOGGER = logging.getLogger(__name__)

_push_counter = itertools.count()


def generate_push_id() -> str:
    """Chronologically sortable key, like the ids the Realtime Database hands out."""

    millis = int(time.time() * 1000)
    return f"{millis:012x}{next(_push_counter) & 0xFFFFFF:06x}{secrets.token_hex(3)}"


class InMemorySignalingStore(SignalingStore):
    """Process-local signaling store.

    Note: both peers must share the same instance, so this is only useful for
    tests and single-process demos. Use the Firebase backend between machines.
    """

    def __init__(self) -> None:
        self._tree: dict[str, Any] | None = None
        self._subscriptions: dict[int, Subscription] = {}

    async def read(self, path: str) -> Any:
        return copy.deepcopy(get_at(self._tree, split_path(path)))

    async def write(self, path: str, value: Any) -> None:
        self._apply(path, value)

    async def remove(self, path: str) -> None:
        self._apply(path, None)

    async def push(self, path: str, value: Any) -> str:
        key = generate_push_id()
        self._apply(join_path(path, key), value)
        return key

    def watch(
        self,
        path: str,
        handler: ChangeHandler,
        *,
        order_by: str | None = None,
        equal_to: Any = None,
    ) -> Subscription:
        subscription = Subscription(path, handler, order_by=order_by, equal_to=equal_to)
        self._subscriptions[subscription.id] = subscription
        current = self._view(self._tree, subscription)
        if current is not None:
            subscription.deliver(current)
        return subscription

    def unwatch(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)
        subscription.cancel()

    async def settle(self) -> None:
        """Wait until every subscription has handled what was delivered so far."""

        # Handlers may write and trigger further deliveries; loop until quiet.
        for _ in range(100):
            pending = [sub for sub in self._subscriptions.values() if sub.active]
            for sub in pending:
                await sub.settle()
            if not any(sub.pending for sub in self._subscriptions.values()):
                return

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def _apply(self, path: str, value: Any) -> None:
        before = copy.deepcopy(self._tree)
        self._tree = set_at(self._tree, split_path(path), value)
        LOGGER.debug("store %s %s", "remove" if value is None else "write", path)

        for subscription in list(self._subscriptions.values()):
            if not _related(subscription.path, path):
                continue
            old = self._view(before, subscription)
            new = self._view(self._tree, subscription)
            if old != new:
                subscription.deliver(new)

    @staticmethod
    def _view(tree: Any, subscription: Subscription) -> Any:
        value = get_at(tree, split_path(subscription.path))
        return filter_children(value, subscription.order_by, subscription.equal_to)


def _related(watched: str, changed: str) -> bool:
    a = split_path(watched)
    b = split_path(changed)
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]
