"""Per-room sync health registry observed by UI and retry logic."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)

MODE_LOCAL = "local"
MODE_REALTIME = "realtime-backend"
HEALTH_HEALTHY = "healthy"
HEALTH_DEGRADED = "degraded"
DEFAULT_REASON = "default_local"

StatusListener = Callable[[dict], None]


class SyncStatusRegistry:
    """Room id -> latest {mode, health, reason} published by the adapters.

    Create one per process and hand it to whoever needs it. It never gates
    adapter operations.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._statuses: dict[str, dict] = {}
        self._listeners: dict[str, list[StatusListener]] = {}

    def get(self, room_id: str) -> dict:
        with self._lock:
            status = self._statuses.get(room_id)
        if status is None:
            return self._default_status(room_id)
        return dict(status)

    def set(self, room_id: str, mode: str, health: str, reason: str) -> dict:
        status = {
            "room_id": room_id,
            "mode": mode,
            "health": health,
            "reason": reason,
            "updated_at": int(self._clock() * 1000),
        }
        with self._lock:
            self._statuses[room_id] = status
            listeners = list(self._listeners.get(room_id, ()))

        if health == HEALTH_DEGRADED:
            logger.info("Room %s sync degraded (%s, %s)", room_id, mode, reason)
        for listener in listeners:
            listener(dict(status))
        return dict(status)

    def subscribe(self, room_id: str, listener: StatusListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(room_id, []).append(listener)
        listener(self.get(room_id))

        def _unsubscribe() -> None:
            with self._lock:
                current = self._listeners.get(room_id)
                if not current or listener not in current:
                    return
                current.remove(listener)
                if not current:
                    del self._listeners[room_id]

        return _unsubscribe

    def _default_status(self, room_id: str) -> dict:
        return {
            "room_id": room_id,
            "mode": MODE_LOCAL,
            "health": HEALTH_HEALTHY,
            "reason": DEFAULT_REASON,
            "updated_at": int(self._clock() * 1000),
        }
