from __future__ import annotations

from signaling.paths import filter_children, get_at, join_path, set_at, split_path


def test_split_and_join_ignore_extra_slashes() -> None:
    assert split_path("/calls//abc/status/") == ["calls", "abc", "status"]
    assert join_path("calls/", "/abc", "", "status") == "calls/abc/status"


def test_set_at_creates_intermediate_nodes() -> None:
    tree = set_at(None, ["calls", "abc", "status"], "calling")
    assert tree == {"calls": {"abc": {"status": "calling"}}}
    assert get_at(tree, ["calls", "abc", "status"]) == "calling"


def test_removing_last_child_prunes_empty_parents() -> None:
    tree = {"calls": {"abc": {"status": "calling"}}, "users": {"bob": {"name": "Bob"}}}
    tree = set_at(tree, ["calls", "abc", "status"], None)
    assert tree == {"users": {"bob": {"name": "Bob"}}}


def test_removing_missing_path_leaves_tree_unchanged() -> None:
    tree = {"users": {"bob": {"name": "Bob"}}}
    assert set_at(tree, ["calls", "abc"], None) == {"users": {"bob": {"name": "Bob"}}}
    assert set_at(None, ["calls"], None) is None


def test_filter_children_matches_field_value() -> None:
    calls = {
        "a": {"calleeId": "bob", "status": "calling"},
        "b": {"calleeId": "carol", "status": "calling"},
        "c": "not-a-record",
    }
    assert filter_children(calls, "calleeId", "bob") == {"a": {"calleeId": "bob", "status": "calling"}}
    assert filter_children(calls, "calleeId", "dave") is None
    assert filter_children(calls, None, None) is calls
