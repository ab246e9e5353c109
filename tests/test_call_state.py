from __future__ import annotations

import pytest

from calls.disposer import ResourceDisposer
from calls.session import CallProjection
from calls.state import ALLOWED_TRANSITIONS, CallStatus, LocalCallState, can_transition
from fakes import FakeTrack
from media.stream import LocalStream


def test_terminal_statuses_have_no_exits() -> None:
    assert CallStatus.ENDED.terminal
    assert CallStatus.REJECTED.terminal
    assert ALLOWED_TRANSITIONS[CallStatus.ENDED] == frozenset()
    assert ALLOWED_TRANSITIONS[CallStatus.REJECTED] == frozenset()


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (CallStatus.IDLE, CallStatus.CALLING, True),
        (CallStatus.CALLING, CallStatus.CONNECTING, True),
        (CallStatus.RINGING, CallStatus.CONNECTING, True),
        (CallStatus.CONNECTING, CallStatus.CONNECTED, True),
        (CallStatus.CONNECTED, CallStatus.ENDED, True),
        (CallStatus.CONNECTED, CallStatus.CONNECTING, False),
        (CallStatus.CONNECTING, CallStatus.CALLING, False),
        (CallStatus.ENDED, CallStatus.CONNECTED, False),
        (CallStatus.REJECTED, CallStatus.ENDED, False),
    ],
)
def test_transition_table(current, target, allowed) -> None:
    assert can_transition(current, target) is allowed


def test_transition_reports_whether_status_changed() -> None:
    state = LocalCallState(role="caller", peer_id="bob", call_type="voice")

    assert state.transition(CallStatus.CALLING) is True
    assert state.transition(CallStatus.CALLING) is False
    assert state.transition(CallStatus.ENDED) is True
    assert state.transition(CallStatus.CONNECTED) is False
    assert state.status is CallStatus.ENDED


def test_video_enabled_follows_call_type() -> None:
    assert LocalCallState(role="caller", peer_id="bob", call_type="video").is_video_enabled
    assert not LocalCallState(role="callee", peer_id="bob", call_type="voice").is_video_enabled


def test_projection_duration() -> None:
    projection = CallProjection(
        status=CallStatus.CONNECTED,
        is_connected=True,
        local_stream=None,
        remote_stream=None,
        is_muted=False,
        is_video_enabled=False,
        is_speaker_on=False,
        connected_at=100.0,
    )
    assert projection.duration_seconds(now=165.9) == 65
    assert projection.duration_seconds(now=50.0) == 0


@pytest.mark.asyncio
async def test_disposer_tolerates_partial_setup_and_runs_once(store) -> None:
    state = LocalCallState(role="caller", peer_id="bob", call_type="voice")
    disposer = ResourceDisposer(state, store, calls_path="calls")

    await disposer.dispose()
    await disposer.dispose()

    assert disposer.disposed


@pytest.mark.asyncio
async def test_caller_disposer_removes_record_and_releases_everything(store) -> None:
    await store.write("calls/s1", {"status": "ended"})
    track = FakeTrack("audio")
    state = LocalCallState(role="caller", peer_id="bob", call_type="voice", session_id="s1")
    state.local_stream = LocalStream(tracks=[track])

    async def ignore(value) -> None:
        return None

    state.subscriptions.append(store.watch("calls/s1/status", ignore))
    disposer = ResourceDisposer(state, store, calls_path="calls")

    await disposer.dispose()
    await disposer.dispose()

    assert track.stop_calls == 1
    assert state.local_stream is None
    assert state.subscriptions == []
    assert store.subscription_count == 0
    assert await store.read("calls/s1") is None


@pytest.mark.asyncio
async def test_callee_disposer_leaves_record_for_caller(store) -> None:
    await store.write("calls/s1", {"status": "ended"})
    state = LocalCallState(role="callee", peer_id="alice", call_type="voice", session_id="s1")

    await ResourceDisposer(state, store, calls_path="calls").dispose()

    assert await store.read("calls/s1/status") == "ended"
