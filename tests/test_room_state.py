from conftest import make_snapshot
from room_state import (
    build_debug_active_member_ids,
    create_initial_snapshot,
    debug_member_name,
    elect_host,
    is_debug_member_id,
    normalize_snapshot,
    real_member_ids,
    sanitize_display_name,
)


def test_initial_snapshot_makes_creator_host_and_active():
    snapshot = create_initial_snapshot(
        host_id="u1",
        host_name="Alice",
        prompt={"text": "p"},
        joined_at=100,
        round_limit=50,
    )
    assert snapshot["phase"] == "ANSWER"
    assert snapshot["round"] == 1
    assert snapshot["round_limit"] == 30
    assert snapshot["host_id"] == "u1"
    assert snapshot["active_member_ids"] == ["u1"]
    assert snapshot["members"] == {"u1": {"name": "Alice", "joined_at": 100}}


def test_normalize_rejects_documents_that_are_not_rooms():
    assert normalize_snapshot(None) is None
    assert normalize_snapshot([1, 2]) is None
    assert normalize_snapshot(make_snapshot(phase="LOBBY")) is None
    assert normalize_snapshot(make_snapshot(members={})) is None


def test_normalize_fills_defaults_and_repairs_host():
    raw = make_snapshot(host_id="gone", scores={"u1": "2", "u2": "x"})
    del raw["round_limit"]
    del raw["active_member_ids"]

    snapshot = normalize_snapshot(raw)
    assert snapshot["round_limit"] == 5
    assert snapshot["active_member_ids"] == ["u1", "u2", "u3"]
    assert snapshot["host_id"] == "u1"
    assert snapshot["scores"] == {"u1": 2}


def test_normalize_keeps_a_valid_snapshot_unchanged():
    snapshot = make_snapshot()
    assert normalize_snapshot(snapshot) == snapshot


def test_elect_host_prefers_earliest_joiner_then_id():
    members = {
        "zed": {"name": "Z", "joined_at": 5},
        "amy": {"name": "A", "joined_at": 9},
        "bob": {"name": "B", "joined_at": 5},
    }
    assert elect_host(members) == "bob"
    assert elect_host({}) == ""


def test_debug_member_ids_are_a_separate_space():
    ids = build_debug_active_member_ids(["u1", "u2", "u1"], 4)
    assert ids == ["u1", "u2", "__debug_member_0", "__debug_member_1"]
    assert [is_debug_member_id(member_id) for member_id in ids] == [False, False, True, True]
    assert debug_member_name("__debug_member_0") == "Debug-01"
    assert debug_member_name("__debug_member_11") == "Debug-12"


def test_debug_fill_truncates_when_already_over_capacity():
    assert build_debug_active_member_ids(["a", "b", "c"], 2) == ["a", "b"]


def test_real_member_ids_are_ordered_by_join_time():
    snapshot = make_snapshot(
        members={
            "u3": {"name": "C", "joined_at": 1},
            "u1": {"name": "A", "joined_at": 2},
        }
    )
    assert real_member_ids(snapshot) == ["u3", "u1"]


def test_sanitize_display_name():
    assert sanitize_display_name("  Big \n  Name  ") == "Big Name"
    assert sanitize_display_name("") == "Guest"
    assert len(sanitize_display_name("x" * 80)) == 28
