"""Fire-and-forget adapter telemetry."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone

import requests

logger = logging.getLogger(__name__)

CATEGORY_AUTH = "auth"
CATEGORY_SYNC = "sync"


class TelemetryReporter:
    """Posts adapter events to an optional endpoint and keeps local counters.

    Delivery failures never reach the caller.
    """

    RECENT_EVENT_LIMIT = 50
    REQUEST_TIMEOUT_SECONDS = 5

    def __init__(
        self,
        endpoint: str | None = None,
        *,
        adapter_name: str = "realtime",
        is_dev: bool = False,
        background: bool = True,
    ):
        self.endpoint = (endpoint or "").strip() or None
        self.adapter_name = adapter_name
        self.is_dev = is_dev
        self.background = background
        self._lock = threading.Lock()
        self.counters: dict[str, int] = {}
        self.recent_events: deque[dict] = deque(maxlen=self.RECENT_EVENT_LIMIT)

    @property
    def can_send(self) -> bool:
        return self.endpoint is not None

    def report(
        self,
        *,
        category: str,
        code: str,
        reason: str,
        room_id: str | None = None,
    ) -> dict:
        payload = {
            "category": category,
            "code": code,
            "reason": reason,
            "adapter": self.adapter_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if room_id:
            payload["room_id"] = room_id

        with self._lock:
            self.counters[code] = self.counters.get(code, 0) + 1
            self.recent_events.append(payload)

        if self.is_dev:
            logger.warning("Adapter telemetry: %s", payload)

        if not self.can_send:
            return payload

        if self.background:
            threading.Thread(
                target=self._deliver, args=(payload,), daemon=True
            ).start()
        else:
            self._deliver(payload)
        return payload

    def _deliver(self, payload: dict) -> None:
        try:
            requests.post(
                self.endpoint,
                json=payload,
                headers={"Accept": "application/json"},
                timeout=self.REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            logger.debug("Telemetry delivery failed: %s", exc)
