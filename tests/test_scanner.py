from __future__ import annotations

import asyncio

import pytest

from calls.errors import StaleInvitation
from calls.records import CallRecord
from calls.scanner import IncomingCallScanner, ensure_fresh
from profiles.directory import ProfileDirectory


def call_record(caller: str, callee: str, created_at: int, status: str = "calling") -> dict:
    return CallRecord(
        caller_id=caller,
        callee_id=callee,
        type="voice",
        status=status,
        created_at=created_at,
    ).to_store()


def make_scanner(store, clock, freshness_seconds: int = 300):
    events: list = []

    async def on_invitation(invitation) -> None:
        events.append(invitation)

    scanner = IncomingCallScanner(
        store,
        ProfileDirectory(store),
        local_user_id="bob",
        freshness_seconds=freshness_seconds,
        on_invitation=on_invitation,
        clock=clock,
    )
    return scanner, events


def now_ms(clock) -> int:
    return int(clock() * 1000)


def test_ensure_fresh_rejects_records_at_window_edge() -> None:
    record = CallRecord.model_validate(call_record("alice", "bob", 1_000))

    ensure_fresh(record, now_ms=300_999, window_ms=300_000)
    with pytest.raises(StaleInvitation):
        ensure_fresh(record, now_ms=301_000, window_ms=300_000)


@pytest.mark.asyncio
async def test_only_fresh_inviting_records_for_local_user_are_raised(store, clock) -> None:
    scanner, events = make_scanner(store, clock)
    await store.write("calls/a-old", call_record("alice", "bob", now_ms(clock) - 301_000))
    await store.write("calls/b-other", call_record("alice", "carol", now_ms(clock)))
    await store.write("calls/c-ended", call_record("alice", "bob", now_ms(clock), status="ended"))
    await store.write("calls/d-broken", {"calleeId": "bob", "status": "calling"})

    scanner.start()
    await store.settle()
    assert events == []

    await store.write("calls/e-live", call_record("alice", "bob", now_ms(clock)))
    await store.settle()

    assert [invitation.session_id for invitation in events] == ["e-live"]
    assert scanner.invitation.caller_name == "Unknown"
    await scanner.stop()


@pytest.mark.asyncio
async def test_same_invitation_is_not_raised_twice(store, clock) -> None:
    scanner, events = make_scanner(store, clock)
    scanner.start()
    await store.write("calls/s1", call_record("alice", "bob", now_ms(clock)))
    await store.settle()
    await store.write("calls/s1/offer", {"type": "offer", "sdp": "v=0"})
    await store.write("calls/s1/candidates/alice/k1", {"candidate": "candidate:1"})
    await store.settle()
    await scanner.rescan()

    assert len(events) == 1
    await scanner.stop()


@pytest.mark.asyncio
async def test_invitation_lapses_when_window_passes(store, clock) -> None:
    scanner, events = make_scanner(store, clock)
    scanner.start()
    await store.write("calls/s1", call_record("alice", "bob", now_ms(clock)))
    await store.settle()
    assert scanner.invitation is not None

    clock.advance(300)
    await scanner.rescan()

    assert scanner.invitation is None
    assert events[-1] is None
    assert await store.read("calls/s1/status") == "calling"
    await scanner.stop()


@pytest.mark.asyncio
async def test_expiry_timer_withdraws_invitation(store, clock) -> None:
    scanner, events = make_scanner(store, clock, freshness_seconds=1)
    scanner.start()
    await store.write("calls/s1", call_record("alice", "bob", now_ms(clock)))
    await store.settle()
    assert scanner.invitation is not None

    clock.advance(2)
    await asyncio.sleep(1.1)

    assert scanner.invitation is None
    assert events[-1] is None
    await scanner.stop()


@pytest.mark.asyncio
async def test_caller_status_change_withdraws_invitation(store, clock) -> None:
    scanner, events = make_scanner(store, clock)
    scanner.start()
    await store.write("calls/s1", call_record("alice", "bob", now_ms(clock)))
    await store.settle()

    await store.write("calls/s1/status", "ended")
    await store.settle()

    assert scanner.invitation is None
    assert events[-1] is None
    await scanner.stop()


@pytest.mark.asyncio
async def test_reporting_suppressed_while_decision_in_flight(store, clock) -> None:
    scanner, events = make_scanner(store, clock)
    scanner.start()
    await store.write("calls/s1", call_record("alice", "bob", now_ms(clock)))
    await store.settle()

    scanner.begin_decision("s1")
    assert scanner.processing
    await store.write("calls/s2", call_record("carol", "bob", now_ms(clock)))
    await store.write("calls/s1/status", "rejected")
    await store.settle()
    assert scanner.invitation.session_id == "s1"

    await scanner.finish_decision()

    assert not scanner.processing
    assert scanner.invitation.session_id == "s2"
    assert [event.session_id if event else None for event in events] == ["s1", None, "s2"]
    await scanner.stop()


@pytest.mark.asyncio
async def test_stop_releases_watches(store, clock) -> None:
    scanner, _ = make_scanner(store, clock)
    scanner.start()
    await store.write("calls/s1", call_record("alice", "bob", now_ms(clock)))
    await store.settle()
    assert store.subscription_count == 2

    await scanner.stop()

    assert store.subscription_count == 0
    assert not scanner.running
    assert scanner.invitation is None


@pytest.mark.asyncio
async def test_decided_sessions_forgotten_once_record_is_gone(store, clock) -> None:
    scanner, _ = make_scanner(store, clock)
    scanner.start()
    await store.write("calls/s1", call_record("alice", "bob", now_ms(clock)))
    await store.write("calls/s2", call_record("carol", "bob", now_ms(clock)))
    await store.settle()

    scanner.begin_decision("s1")
    await scanner.finish_decision()
    assert scanner.invitation.session_id == "s2"
    assert scanner._decided == {"s1"}

    await store.remove("calls/s1")
    await store.settle()
    assert scanner._decided == set()

    scanner.begin_decision("s2")
    await store.remove("calls/s2")
    await scanner.finish_decision()
    assert scanner._decided == set()
    assert scanner.invitation is None
    await scanner.stop()
