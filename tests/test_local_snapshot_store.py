import sqlite3

from conftest import make_snapshot
from local_snapshot_store import LocalSnapshotStore, StorageEvents


def test_load_after_save_returns_the_same_snapshot(store):
    snapshot = make_snapshot()
    assert store.save("room1", snapshot) is snapshot
    assert store.load("room1") == snapshot
    assert store.load("other") is None


def test_update_returning_none_deletes_the_room(store):
    store.save("room1", make_snapshot())
    assert store.update("room1", lambda prev: None) is None
    assert store.load("room1") is None


def test_update_creates_from_missing_room(store):
    created = store.update("room1", lambda prev: make_snapshot() if prev is None else prev)
    assert created == make_snapshot()
    assert store.load("room1") == created


def test_transform_receives_a_private_copy(store):
    store.save("room1", make_snapshot())

    def _mutate(prev):
        prev["round"] = 2
        return prev

    store.update("room1", _mutate)
    assert store.load("room1")["round"] == 2


def test_subscribe_delivers_current_value_then_changes(store):
    seen = []
    store.save("room1", make_snapshot())
    unsubscribe = store.subscribe("room1", seen.append)
    assert seen == [make_snapshot()]

    store.update("room1", lambda prev: {**prev, "round": 2})
    assert seen[-1]["round"] == 2

    unsubscribe()
    store.update("room1", lambda prev: {**prev, "round": 3})
    assert len(seen) == 2


def test_unsubscribe_leaves_other_listeners(store):
    first, second = [], []
    unsubscribe_first = store.subscribe("room1", first.append)
    store.subscribe("room1", second.append)
    unsubscribe_first()

    store.save("room1", make_snapshot())
    assert first == [None]
    assert second == [None, make_snapshot()]


def test_listeners_only_hear_their_own_room(store):
    seen = []
    store.subscribe("room1", seen.append)
    store.save("room2", make_snapshot())
    assert seen == [None]


def test_sibling_store_on_same_bus_is_notified(tmp_path, storage_events, store):
    other_tab = LocalSnapshotStore(str(tmp_path / "rooms.db"), events=storage_events)
    seen = []
    other_tab.subscribe("room1", seen.append)

    store.save("room1", make_snapshot())
    assert seen == [None, make_snapshot()]

    store.update("room1", lambda prev: None)
    assert seen[-1] is None


def test_poll_changes_picks_up_writes_from_another_process(tmp_path):
    db_path = str(tmp_path / "shared.db")
    mine = LocalSnapshotStore(db_path, events=StorageEvents())
    theirs = LocalSnapshotStore(db_path, events=StorageEvents())
    seen = []
    mine.subscribe("room1", seen.append)

    theirs.save("room1", make_snapshot())
    assert seen == [None]

    assert mine.poll_changes() == ["amber_true_room_state:room1"]
    assert seen == [None, make_snapshot()]
    assert mine.poll_changes() == []

    theirs.delete("room1")
    mine.poll_changes()
    assert seen[-1] is None


def test_malformed_snapshot_reads_as_missing(store):
    store.save("room1", make_snapshot())
    with sqlite3.connect(store.db_path) as conn:
        conn.execute(
            "UPDATE room_snapshots SET payload = ? WHERE storage_key = ?",
            ("{not json", store.room_key("room1")),
        )
    assert store.load("room1") is None


def test_deleting_a_missing_room_is_quiet(store):
    seen = []
    store.subscribe("room1", seen.append)
    store.delete("room1")
    store.update("room1", lambda prev: None)
    assert seen == [None]


def test_revision_increases_on_every_write(store):
    store.save("room1", make_snapshot())
    _, first = store.read_record("room1")
    store.save("room1", make_snapshot(round=2))
    _, second = store.read_record("room1")
    store.delete("room1")
    state, third = store.read_record("room1")
    assert first < second < third
    assert state is None
