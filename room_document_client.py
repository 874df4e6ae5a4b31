"""HTTP client for the shared room-document service."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional
from urllib.parse import quote, urljoin

import requests

from room_auth import RoomAuthDelegate

logger = logging.getLogger(__name__)


class RoomSyncError(Exception):
    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


class HttpRoomDocumentClient:
    """Reads and writes room documents on a remote service.

    Authenticates with the configured public key, or with per-room tokens
    from the auth delegate. The change feed polls the document revision.
    """

    REQUEST_TIMEOUT_SECONDS = 10

    def __init__(
        self,
        base_url: str,
        *,
        public_key: str | None = None,
        auth_delegate: RoomAuthDelegate | None = None,
        poll_interval: float = 1.0,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        if not public_key and auth_delegate is None:
            raise ValueError("public_key or auth_delegate is required")
        self.base_url = base_url.rstrip("/")
        self.public_key = public_key or None
        self.auth_delegate = auth_delegate
        self.poll_interval = max(0.05, float(poll_interval))
        self._tokens: dict[str, str] = {}
        self._tokens_lock = threading.Lock()
        self._pollers: list[_DocumentPoller] = []

    # ------------------------
    # Document operations
    # ------------------------

    def get_record(self, room_id: str) -> tuple[Optional[dict], int]:
        payload = self._request("GET", room_id)
        return self._state_from(payload), int(payload.get("revision") or 0)

    def get_document(self, room_id: str) -> Optional[dict]:
        state, _revision = self.get_record(room_id)
        return state

    def set_document(self, room_id: str, state: dict) -> dict:
        payload = self._request("PUT", room_id, body={"state": state})
        return self._state_from(payload) or state

    def delete_document(self, room_id: str) -> None:
        self._request("DELETE", room_id)

    def subscribe_document(
        self,
        room_id: str,
        callback: Callable[[Optional[dict]], None],
        on_error: Callable[[RoomSyncError], None] | None = None,
    ) -> Callable[[], None]:
        poller = _DocumentPoller(self, room_id, callback, on_error)
        self._pollers.append(poller)
        poller.start()
        logger.info("Room document feed started for %s", room_id)
        return poller.stop

    def close(self) -> None:
        for poller in self._pollers:
            poller.stop()
        self._pollers.clear()

    # ------------------------
    # HTTP helpers
    # ------------------------

    def _request(self, method: str, room_id: str, body: dict | None = None) -> dict:
        response = self._send(method, room_id, body)
        if response.status_code == 401 and self.public_key is None:
            # Token expired or revoked; exchange once more.
            with self._tokens_lock:
                self._tokens.pop(room_id, None)
            response = self._send(method, room_id, body)

        if not 200 <= response.status_code < 300:
            raise RoomSyncError(
                f"http_{response.status_code}",
                f"{method} room document {room_id} returned {response.status_code}",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RoomSyncError("malformed_response") from exc
        if not isinstance(payload, dict):
            raise RoomSyncError("malformed_response")
        return payload

    def _send(self, method: str, room_id: str, body: dict | None):
        url = self._url(f"/api/rooms/{quote(room_id, safe='')}/storage")
        logger.debug("Room document request: %s %s", method, url)
        try:
            return requests.request(
                method,
                url,
                json=body,
                headers=self._auth_headers(room_id),
                timeout=self.REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise RoomSyncError("network_error", str(exc)) from exc

    def _auth_headers(self, room_id: str) -> dict:
        headers = {"Accept": "application/json"}
        if self.public_key:
            headers["X-Room-Public-Key"] = self.public_key
            return headers

        with self._tokens_lock:
            token = self._tokens.get(room_id)
        if token is None:
            result = self.auth_delegate.authorize(room_id)
            if not result.ok:
                raise RoomSyncError(result.reason, f"room auth failed: {result.reason}")
            token = result.token
            with self._tokens_lock:
                self._tokens[room_id] = token
        headers["Authorization"] = f"Bearer {token}"
        return headers

    def _url(self, path: str) -> str:
        return urljoin(self.base_url + "/", path.lstrip("/"))

    @staticmethod
    def _state_from(payload: dict) -> Optional[dict]:
        state = payload.get("state")
        return state if isinstance(state, dict) else None


class _DocumentPoller:
    def __init__(self, client, room_id, callback, on_error):
        self.client = client
        self.room_id = room_id
        self.callback = callback
        self.on_error = on_error
        self._stop = threading.Event()
        self._last_revision: int | None = None
        self._thread = threading.Thread(
            target=self._run, name=f"room-feed-{room_id}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def poll_once(self) -> bool:
        state, revision = self.client.get_record(self.room_id)
        if revision == self._last_revision:
            return False
        self.callback(state)
        self._last_revision = revision
        return True

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except RoomSyncError as exc:
                logger.warning("Room document feed error for %s: %s", self.room_id, exc)
                self._report(exc)
            except Exception as exc:
                logger.exception("Room document feed callback failed for %s", self.room_id)
                self._report(RoomSyncError("feed_callback_failed", str(exc)))
            if self._stop.wait(self.client.poll_interval):
                break

    def _report(self, exc: RoomSyncError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(exc)
        except Exception:
            logger.exception("Room document feed error handler failed for %s", self.room_id)
