from __future__ import annotations

import logging
from dataclasses import dataclass

from calls.errors import StoreUnavailable
from signaling.base import SignalingStore
from signaling.paths import join_path

LOGGER = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"


@dataclass(slots=True)
class CallerProfile:
    name: str
    avatar: str | None = None


def display_name(profile: dict) -> str:
    name = str(profile.get("name") or "").strip()
    if name:
        return name
    email = str(profile.get("email") or "").strip()
    if email:
        return email.split("@")[0]
    return UNKNOWN_NAME


class ProfileDirectory:
    """Resolves user ids to a display name and avatar from `users/{userId}`."""

    def __init__(self, store: SignalingStore, *, users_path: str = "users") -> None:
        self._store = store
        self._users_path = users_path

    async def lookup(self, user_id: str) -> CallerProfile:
        try:
            profile = await self._store.read(join_path(self._users_path, user_id))
        except StoreUnavailable:
            LOGGER.exception("Error getting caller info for %s", user_id)
            return CallerProfile(name=UNKNOWN_NAME)

        if not isinstance(profile, dict):
            LOGGER.warning("No profile stored for %s", user_id)
            return CallerProfile(name=UNKNOWN_NAME)
        return CallerProfile(name=display_name(profile), avatar=profile.get("avatar") or None)
