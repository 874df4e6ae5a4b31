import copy
import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from local_snapshot_store import LocalSnapshotStore, StorageEvents
from prompt_catalog import load_prompt_catalog
from sync_status import SyncStatusRegistry
from telemetry import TelemetryReporter


class FakeDocumentService:
    """In-memory stand-in for the shared room-document backend."""

    def __init__(self):
        self.documents = {}
        self.revisions = {}
        self.feeds = {}
        self.failures = set()
        self.calls = []
        self.write_gate = None
        self.closed = False

    def _maybe_fail(self, operation):
        self.calls.append(operation)
        if operation in self.failures:
            raise RuntimeError(f"{operation} unavailable")

    def get_document(self, room_id):
        self._maybe_fail("get")
        return copy.deepcopy(self.documents.get(room_id))

    def set_document(self, room_id, state):
        if self.write_gate is not None:
            self.write_gate.wait(timeout=5)
        self._maybe_fail("set")
        self._store(room_id, copy.deepcopy(state))
        return state

    def delete_document(self, room_id):
        self._maybe_fail("delete")
        self._store(room_id, None)

    def subscribe_document(self, room_id, callback, on_error=None):
        self._maybe_fail("subscribe")
        self.feeds.setdefault(room_id, []).append(callback)

        def _unsubscribe():
            self.feeds.get(room_id, []).remove(callback)

        return _unsubscribe

    def peer_write(self, room_id, state):
        """Simulate another client writing the remote document."""
        self._store(room_id, copy.deepcopy(state))
        for callback in list(self.feeds.get(room_id, [])):
            callback(copy.deepcopy(state))

    def close(self):
        self.closed = True

    def _store(self, room_id, state):
        if state is None:
            self.documents.pop(room_id, None)
        else:
            self.documents[room_id] = state
        self.revisions[room_id] = self.revisions.get(room_id, 0) + 1


def make_snapshot(**overrides):
    snapshot = {
        "phase": "ANSWER",
        "round": 1,
        "round_limit": 3,
        "prompt": {
            "modifier_id": "m_001",
            "situation_id": "s_001",
            "content_id": "c_001",
            "text": "test prompt",
        },
        "active_member_ids": ["u1", "u2", "u3"],
        "submissions": {
            "u1": {"text": "a1", "submitted_at": 1},
            "u2": {"text": "a2", "submitted_at": 2},
            "u3": {"text": "a3", "submitted_at": 3},
        },
        "votes": {},
        "scores": {"u1": 1},
        "members": {
            "u1": {"name": "A", "joined_at": 1},
            "u2": {"name": "B", "joined_at": 2},
            "u3": {"name": "C", "joined_at": 3},
        },
        "host_id": "u1",
    }
    snapshot.update(overrides)
    return snapshot


@pytest.fixture
def storage_events():
    return StorageEvents()


@pytest.fixture
def store(tmp_path, storage_events):
    return LocalSnapshotStore(str(tmp_path / "rooms.db"), events=storage_events)


@pytest.fixture
def status_registry():
    return SyncStatusRegistry()


@pytest.fixture
def telemetry():
    return TelemetryReporter(endpoint=None, background=False)


@pytest.fixture
def remote():
    return FakeDocumentService()


@pytest.fixture
def catalog():
    return load_prompt_catalog(ROOT / "data" / "prompts.json")


@pytest.fixture
def write_gate(remote):
    gate = threading.Event()
    remote.write_gate = gate
    yield gate
    gate.set()
