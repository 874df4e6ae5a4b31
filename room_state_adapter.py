"""Shared room-state adapter contract.

Every adapter:

* returns the latest locally known snapshot immediately (no network waits),
* ``save`` persists the full snapshot and returns it,
* ``update`` is an atomic read-modify-write from the adapter's own view,
* ``subscribe`` reports every snapshot change and returns an unsubscribe
  callable,
* ``None`` means the room does not exist (or was deleted).
"""

from __future__ import annotations

from typing import Callable, Optional

Snapshot = dict
RoomStateTransform = Callable[[Optional[Snapshot]], Optional[Snapshot]]
RoomStateListener = Callable[[Optional[Snapshot]], None]


class RoomStateAdapter:
    name = "base"

    def load(self, room_id: str) -> Snapshot | None:
        """Read the current room snapshot."""
        raise NotImplementedError

    def save(self, room_id: str, snapshot: Snapshot) -> Snapshot:
        """Overwrite the room snapshot."""
        raise NotImplementedError

    def update(self, room_id: str, transform: RoomStateTransform) -> Snapshot | None:
        """Apply ``transform`` to the current snapshot and persist the result.

        The transform receives a private copy of the base snapshot. Returning
        None deletes the room.
        """
        raise NotImplementedError

    def subscribe(
        self, room_id: str, listener: RoomStateListener
    ) -> Callable[[], None]:
        """Call ``listener`` now and on every later change of the room."""
        raise NotImplementedError

    def close(self) -> None:
        return None
