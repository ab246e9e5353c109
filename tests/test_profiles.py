from __future__ import annotations

import pytest

from calls.errors import StoreUnavailable
from profiles.directory import ProfileDirectory, display_name
from signaling.memory import InMemorySignalingStore


class OfflineStore(InMemorySignalingStore):
    async def read(self, path: str):
        raise StoreUnavailable()


def test_display_name_falls_back_to_email_local_part() -> None:
    assert display_name({"name": "  Alice "}) == "Alice"
    assert display_name({"email": "alice@example.com"}) == "alice"
    assert display_name({}) == "Unknown"


@pytest.mark.asyncio
async def test_lookup_reads_users_path(store) -> None:
    await store.write("users/alice", {"name": "Alice", "avatar": "https://example.com/a.png"})

    profile = await ProfileDirectory(store).lookup("alice")

    assert profile.name == "Alice"
    assert profile.avatar == "https://example.com/a.png"


@pytest.mark.asyncio
async def test_missing_or_unreadable_profile_is_unknown(store) -> None:
    missing = await ProfileDirectory(store).lookup("ghost")
    offline = await ProfileDirectory(OfflineStore()).lookup("alice")

    assert (missing.name, missing.avatar) == ("Unknown", None)
    assert offline.name == "Unknown"
