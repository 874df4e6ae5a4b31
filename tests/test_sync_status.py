from sync_status import SyncStatusRegistry


def test_unknown_room_reports_default_local_status():
    registry = SyncStatusRegistry(clock=lambda: 12.5)
    assert registry.get("room1") == {
        "room_id": "room1",
        "mode": "local",
        "health": "healthy",
        "reason": "default_local",
        "updated_at": 12500,
    }


def test_set_overwrites_and_notifies_room_listeners():
    registry = SyncStatusRegistry()
    seen, other_room = [], []
    registry.subscribe("room1", seen.append)
    registry.subscribe("room2", other_room.append)

    registry.set("room1", "realtime-backend", "degraded", "storage_update_failed")

    assert [status["reason"] for status in seen] == ["default_local", "storage_update_failed"]
    assert [status["reason"] for status in other_room] == ["default_local"]
    assert registry.get("room1")["health"] == "degraded"


def test_unsubscribe_stops_delivery_for_that_listener_only():
    registry = SyncStatusRegistry()
    first, second = [], []
    unsubscribe = registry.subscribe("room1", first.append)
    registry.subscribe("room1", second.append)
    unsubscribe()
    unsubscribe()

    registry.set("room1", "local", "degraded", "liveblocks_unavailable")
    assert len(first) == 1
    assert len(second) == 2


def test_registries_are_independent():
    one, two = SyncStatusRegistry(), SyncStatusRegistry()
    one.set("room1", "realtime-backend", "healthy", "synced")
    assert two.get("room1")["reason"] == "default_local"
