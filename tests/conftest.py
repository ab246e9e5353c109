from __future__ import annotations

import functools
import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
TESTS_PATH = Path(__file__).resolve().parent
for path in (SRC_PATH, TESTS_PATH):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

os.environ.setdefault("SIGNALING_BACKEND", "memory")
os.environ.setdefault("LOCAL_USER_ID", "alice")

from calls.manager import CallManager  # noqa: E402
from fakes import FakeClock, FakeMediaProvider, PeerRegistry  # noqa: E402
from negotiation.engine import NegotiationEngine  # noqa: E402
from signaling.memory import InMemorySignalingStore  # noqa: E402


@pytest.fixture()
def store() -> InMemorySignalingStore:
    return InMemorySignalingStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(1_700_000_000.0)


@pytest.fixture()
def make_peer(store, clock):
    """Build a CallManager for one user, wired to fakes, sharing the test store."""

    def _make(
        user_id: str,
        *,
        host: str = "192.0.2.1",
        deny_media: bool = False,
        freshness_seconds: int = 300,
    ):
        peers = PeerRegistry(host)
        media = FakeMediaProvider(deny=deny_media)
        manager = CallManager(
            store,
            media,
            local_user_id=user_id,
            engine_factory=functools.partial(NegotiationEngine, [], peer_factory=peers.create),
            freshness_seconds=freshness_seconds,
            clock=clock,
        )
        manager.peers = peers
        manager.media = media
        return manager

    return _make


@pytest.fixture(scope="session")
def app():
    import importlib

    for module_name in ["config.settings", "api.dependencies", "api.routes", "main"]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app
