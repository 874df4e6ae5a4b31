"""Durable per-client room snapshots backed by SQLite."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from typing import Callable

from room_state_adapter import (
    RoomStateAdapter,
    RoomStateListener,
    RoomStateTransform,
    Snapshot,
)

logger = logging.getLogger(__name__)

KEY_PREFIX = "amber_true_room_state:"


class StorageEvents:
    """Change notifications shared by stores that point at the same database.

    Plays the part of the browser ``storage`` event: every store instance
    (one per "tab") attached to the same bus hears about writes made by the
    others, filtered by exact key.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: dict[str, list[Callable[[str], None]]] = {}

    def subscribe(self, key: str, handler: Callable[[str], None]) -> Callable[[], None]:
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(key)
                if not handlers or handler not in handlers:
                    return
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[key]

        return _unsubscribe

    def emit(self, key: str) -> None:
        with self._lock:
            handlers = list(self._handlers.get(key, ()))
        for handler in handlers:
            try:
                handler(key)
            except Exception:
                logger.exception("Room state listener failed for %s", key)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._handlers)


class LocalSnapshotStore(RoomStateAdapter):
    """One JSON document per room in a local SQLite file.

    ``update`` is read-modify-write under an in-process lock only; two
    processes racing on the same file resolve last-write-wins.
    """

    name = "local"

    def __init__(
        self,
        db_path: str = "room_state.db",
        *,
        events: StorageEvents | None = None,
        key_prefix: str = KEY_PREFIX,
    ):
        self.db_path = str(db_path)
        self.events = events or StorageEvents()
        self.key_prefix = key_prefix
        self._lock = threading.RLock()
        self._seen_revisions: dict[str, int] = {}
        self._ensure_schema()

    # ------------------------
    # Adapter contract
    # ------------------------

    def load(self, room_id: str) -> Snapshot | None:
        snapshot, _revision = self.read_record(room_id)
        return snapshot

    def save(self, room_id: str, snapshot: Snapshot) -> Snapshot:
        key = self.room_key(room_id)
        with self._lock:
            self._write(key, snapshot)
        self.events.emit(key)
        return snapshot

    def update(self, room_id: str, transform: RoomStateTransform) -> Snapshot | None:
        key = self.room_key(room_id)
        with self._lock:
            prev = self.load(room_id)
            nxt = transform(prev)
            if nxt is None:
                changed = self._delete(key)
            else:
                self._write(key, nxt)
                changed = True
        if changed:
            self.events.emit(key)
        return nxt

    def subscribe(
        self, room_id: str, listener: RoomStateListener
    ) -> Callable[[], None]:
        key = self.room_key(room_id)

        def _on_change(changed_key: str) -> None:
            if changed_key != key:
                return
            listener(self.load(room_id))

        unsubscribe = self.events.subscribe(key, _on_change)
        listener(self.load(room_id))
        return unsubscribe

    # ------------------------
    # Store helpers
    # ------------------------

    def delete(self, room_id: str) -> None:
        key = self.room_key(room_id)
        with self._lock:
            changed = self._delete(key)
        if changed:
            self.events.emit(key)

    def room_key(self, room_id: str) -> str:
        return f"{self.key_prefix}{room_id}"

    def read_record(self, room_id: str) -> tuple[Snapshot | None, int]:
        key = self.room_key(room_id)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload, revision FROM room_snapshots WHERE storage_key = ?",
                (key,),
            ).fetchone()
        if not row:
            return None, 0
        return self._decode(key, row["payload"]), int(row["revision"])

    def poll_changes(self) -> list[str]:
        """Emit events for subscribed rooms rewritten by another process."""
        watched = [key for key in self.events.keys() if key.startswith(self.key_prefix)]
        if not watched:
            return []

        placeholders = ",".join("?" for _ in watched)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT storage_key, revision
                FROM room_snapshots
                WHERE storage_key IN ({placeholders})
                """,
                watched,
            ).fetchall()

        changed: list[str] = []
        with self._lock:
            for row in rows:
                key = row["storage_key"]
                revision = int(row["revision"])
                if self._seen_revisions.get(key) == revision:
                    continue
                self._seen_revisions[key] = revision
                changed.append(key)
        for key in changed:
            self.events.emit(key)
        return changed

    # ------------------------
    # Internal helpers
    # ------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS room_snapshots (
                    storage_key TEXT PRIMARY KEY,
                    payload TEXT,
                    revision INTEGER NOT NULL DEFAULT 0,
                    updated_at INTEGER NOT NULL
                )
                """
            )

    def _write(self, key: str, snapshot: Snapshot) -> None:
        payload = json.dumps(snapshot, ensure_ascii=False, sort_keys=True)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO room_snapshots (storage_key, payload, revision, updated_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(storage_key) DO UPDATE SET
                    payload = excluded.payload,
                    revision = room_snapshots.revision + 1,
                    updated_at = excluded.updated_at
                """,
                (key, payload, int(time.time())),
            )
            row = conn.execute(
                "SELECT revision FROM room_snapshots WHERE storage_key = ?", (key,)
            ).fetchone()
        self._seen_revisions[key] = int(row["revision"])

    def _delete(self, key: str) -> bool:
        # Tombstone rather than DELETE so revision watchers see the removal.
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE room_snapshots
                SET payload = NULL,
                    revision = revision + 1,
                    updated_at = ?
                WHERE storage_key = ? AND payload IS NOT NULL
                """,
                (int(time.time()), key),
            )
            changed = cursor.rowcount > 0
            if changed:
                row = conn.execute(
                    "SELECT revision FROM room_snapshots WHERE storage_key = ?",
                    (key,),
                ).fetchone()
                self._seen_revisions[key] = int(row["revision"])
        return changed

    @staticmethod
    def _decode(key: str, raw: str | None) -> Snapshot | None:
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Ignoring malformed room snapshot for %s", key)
            return None
        if not isinstance(payload, dict):
            logger.warning("Ignoring non-object room snapshot for %s", key)
            return None
        return payload
