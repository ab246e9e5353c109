"""Firebase Realtime Database client speaking the REST and streaming APIs."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from typing import Any

import httpx

from calls.errors import StoreUnavailable
from config.settings import get_settings
from signaling.base import ChangeHandler, SignalingStore, Subscription
from signaling.paths import set_at, split_path

LOGGER = logging.getLogger(__name__)

_UNSET = object()
RECONNECT_DELAY_SECONDS = 2.0


class FirebaseSignalingStore(SignalingStore):
    """Signaling store backed by the Realtime Database REST API.

    `watch` uses the `text/event-stream` endpoint: the server sends a `put` with
    the whole subtree on connect and `put`/`patch` events for every change
    below it. The client keeps a cached copy of the subtree and hands the full
    value to the subscriber each time it changes.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        auth_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        base_url = base_url or settings.firebase_database_url
        if not base_url:
            raise ValueError("FIREBASE_DATABASE_URL not configured")

        self._base_url = base_url.rstrip("/")
        self._auth_token = auth_token if auth_token is not None else settings.firebase_auth_token
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.signaling_timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )
        self._streams: dict[int, asyncio.Task] = {}
        self._subscriptions: dict[int, Subscription] = {}

    async def read(self, path: str) -> Any:
        response = await self._request("GET", path)
        return response.json()

    async def write(self, path: str, value: Any) -> None:
        await self._request("PUT", path, json=value)

    async def remove(self, path: str) -> None:
        await self._request("DELETE", path)

    async def push(self, path: str, value: Any) -> str:
        response = await self._request("POST", path, json=value)
        try:
            return str(response.json()["name"])
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreUnavailable(f"Unexpected push response for {path}") from exc

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
        self._streams[subscription.id] = asyncio.create_task(
            self._stream_forever(subscription),
            name=f"firebase-stream:{path}",
        )
        return subscription

    def unwatch(self, subscription: Subscription) -> None:
        subscription.cancel()
        self._subscriptions.pop(subscription.id, None)
        task = self._streams.pop(subscription.id, None)
        if task is not None:
            task.cancel()

    async def close(self) -> None:
        for subscription in list(self._subscriptions.values()):
            self.unwatch(subscription)
        await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{'/'.join(split_path(path))}.json"

    def _params(self, subscription: Subscription | None = None) -> dict[str, str]:
        params: dict[str, str] = {}
        if self._auth_token:
            params["auth"] = self._auth_token
        if subscription is not None and subscription.order_by is not None:
            # Query values must be JSON encoded, e.g. orderBy="calleeId".
            params["orderBy"] = json.dumps(subscription.order_by)
            params["equalTo"] = json.dumps(subscription.equal_to)
        return params

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, self._url(path), params=self._params(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("Signaling store %s %s failed: %s", method, path, exc)
            raise StoreUnavailable(f"{method} {path} failed: {exc}") from exc
        return response

    async def _stream_forever(self, subscription: Subscription) -> None:
        cache: Any = None
        last_delivered: Any = _UNSET
        while subscription.active:
            try:
                async with self._client.stream(
                    "GET",
                    self._url(subscription.path),
                    params=self._params(subscription),
                    headers={"Accept": "text/event-stream"},
                    timeout=None,
                ) as response:
                    response.raise_for_status()
                    async for event, data in iter_sse_events(response.aiter_lines()):
                        if event in {"cancel", "auth_revoked"}:
                            LOGGER.warning("Stream for %s closed by server: %s", subscription.path, event)
                            break
                        if event not in {"put", "patch"} or not isinstance(data, dict):
                            continue
                        cache = apply_stream_event(cache, event, data)
                        if cache is None and last_delivered is _UNSET:
                            continue
                        if cache != last_delivered:
                            last_delivered = copy.deepcopy(cache)
                            subscription.deliver(cache)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Stream for %s failed; reconnecting", subscription.path)
            if subscription.active:
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)


def apply_stream_event(cache: Any, event: str, data: dict[str, Any]) -> Any:
    """Fold one `put`/`patch` event into the cached subtree."""

    parts = split_path(str(data.get("path") or "/"))
    payload = data.get("data")
    if event == "put":
        return set_at(cache, parts, payload)
    if isinstance(payload, dict):
        for key, value in payload.items():
            cache = set_at(cache, parts + split_path(key), value)
    return cache


async def iter_sse_events(lines):
    """Parse `event:`/`data:` pairs from an event stream."""

    event = ""
    data_lines: list[str] = []
    async for line in lines:
        if not line:
            if event:
                raw = "\n".join(data_lines)
                try:
                    payload = json.loads(raw) if raw else None
                except json.JSONDecodeError:
                    payload = None
                yield event, payload
            event = ""
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
