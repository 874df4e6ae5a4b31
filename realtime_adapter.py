"""Realtime room-state adapter with local fallback.

Wraps a remote shared-document client behind the room-state contract and
keeps a fallback adapter (normally the local snapshot store) as cache and
last resort. Writes apply locally first and are reconciled against the
remote document on a single background worker.

Reconciliation replays the caller's transform on the remote's current
value, so concurrent writers resolve last-transform-wins at document level.
Transforms must therefore be safe to re-apply to a base other than the one
the caller saw.

``load`` answers from the best known value straight away and queues a
refresh: a fetch of the remote document, or a re-push of the local value
when an earlier remote write failed. Calling ``load`` again is the retry.
"""

from __future__ import annotations

import copy
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from room_state_adapter import (
    RoomStateAdapter,
    RoomStateListener,
    RoomStateTransform,
    Snapshot,
)
from sync_status import (
    HEALTH_DEGRADED,
    HEALTH_HEALTHY,
    MODE_LOCAL,
    MODE_REALTIME,
    SyncStatusRegistry,
)
from telemetry import CATEGORY_SYNC, TelemetryReporter

logger = logging.getLogger(__name__)

ADAPTER_MODE_LOCAL_FALLBACK = "local-fallback"
ADAPTER_MODE_REALTIME = "realtime-backend"

REASON_MISSING_CONFIG = "missing_config"
REASON_CREATE_CLIENT_FAILED = "create_client_failed"
REASON_REALTIME_UNAVAILABLE = "liveblocks_unavailable"
REASON_SYNCED = "synced"
REASON_SEED_FAILED = "storage_seed_failed"
REASON_LOAD_FAILED = "storage_load_failed"
REASON_SAVE_FAILED = "storage_save_failed"
REASON_UPDATE_FAILED = "storage_update_failed"
REASON_SUBSCRIBE_FAILED = "storage_subscribe_failed"
REASON_FEED_FAILED = "storage_feed_failed"


class _RoomSession:
    def __init__(self, room_id: str):
        self.room_id = room_id
        self.cached_state: Snapshot | None = None
        self.storage_ready: Future = Future()
        self.pending_writes = 0
        self.needs_push = False
        self.refresh_queued = False
        self.feed_requested = False
        self.remote_subscribed = False
        self.unsubscribe_remote: Callable[[], None] | None = None


class RealtimeSyncAdapter(RoomStateAdapter):
    name = "realtime"

    def __init__(
        self,
        fallback: RoomStateAdapter,
        *,
        client_factory: Callable[[], object] | None = None,
        status_registry: SyncStatusRegistry | None = None,
        telemetry: TelemetryReporter | None = None,
    ):
        self.fallback = fallback
        self.client_factory = client_factory
        self.status = status_registry or SyncStatusRegistry()
        self.telemetry = telemetry or TelemetryReporter()
        self.mode: str | None = None
        self.mode_reason = ""
        self._client = None
        self._closed = False
        self._executor: ThreadPoolExecutor | None = None
        self._sessions: dict[str, _RoomSession] = {}
        self._lock = threading.RLock()

    # ------------------------
    # Adapter contract
    # ------------------------

    def load(self, room_id: str) -> Snapshot | None:
        session = self._get_session(room_id)
        if session is None:
            self._mark_unavailable(room_id)
            return self.fallback.load(room_id)

        with self._lock:
            state = self._read_session(session)
            ready = session.storage_ready
            queue_refresh = (
                ready.done() and ready.result() and not session.refresh_queued
            )
            if queue_refresh:
                session.refresh_queued = True
        if queue_refresh:
            self._submit(self._refresh, session, ready)
        return state

    def save(self, room_id: str, snapshot: Snapshot) -> Snapshot:
        session = self._get_session(room_id)
        if session is None:
            self._mark_unavailable(room_id)
            return self.fallback.save(room_id, snapshot)

        with self._lock:
            saved = self.fallback.save(room_id, snapshot)
            session.cached_state = copy.deepcopy(snapshot)
            session.pending_writes += 1
            ready = session.storage_ready
        self._submit(self._remote_save, session, ready, copy.deepcopy(snapshot))
        return saved

    def update(self, room_id: str, transform: RoomStateTransform) -> Snapshot | None:
        session = self._get_session(room_id)
        if session is None:
            self._mark_unavailable(room_id)
            return self.fallback.update(room_id, transform)

        with self._lock:
            base = self._read_session(session)
            optimistic = transform(copy.deepcopy(base))
            self._write_local(room_id, optimistic)
            session.cached_state = copy.deepcopy(optimistic)
            session.pending_writes += 1
            ready = session.storage_ready
        self._submit(self._remote_update, session, ready, transform)
        return optimistic

    def subscribe(
        self, room_id: str, listener: RoomStateListener
    ) -> Callable[[], None]:
        session = self._get_session(room_id)
        if session is None:
            self._mark_unavailable(room_id)
            return self.fallback.subscribe(room_id, listener)

        # Bring the local copy up to the best known value before the
        # fallback hands it to the listener.
        self.load(room_id)
        unsubscribe = self.fallback.subscribe(room_id, listener)
        with self._lock:
            session.feed_requested = True
            start_feed = not session.remote_subscribed
            session.remote_subscribed = True
            ready = session.storage_ready
        if start_feed:
            self._submit(self._start_remote_feed, session, ready)
        return unsubscribe

    # ------------------------
    # Lifecycle
    # ------------------------

    def flush(self, timeout: float | None = None) -> None:
        """Block until queued remote work has run."""
        if self._executor is None:
            return
        self._executor.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            if session.unsubscribe_remote is not None:
                session.unsubscribe_remote()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        close_fn = getattr(self._client, "close", None)
        if callable(close_fn):
            close_fn()

    # ------------------------
    # Mode + sessions
    # ------------------------

    def _ensure_client(self):
        with self._lock:
            if self._closed:
                return None
            if self.mode is not None:
                return self._client

            if self.client_factory is None:
                self.mode = ADAPTER_MODE_LOCAL_FALLBACK
                self.mode_reason = REASON_MISSING_CONFIG
                logger.info("Realtime sync is not configured; rooms stay local-only.")
                return None

            try:
                self._client = self.client_factory()
            except Exception as exc:
                self.mode = ADAPTER_MODE_LOCAL_FALLBACK
                self.mode_reason = REASON_CREATE_CLIENT_FAILED
                logger.warning("Realtime sync client setup failed: %s", exc)
                self.telemetry.report(
                    category=CATEGORY_SYNC,
                    code=REASON_CREATE_CLIENT_FAILED,
                    reason=str(exc) or REASON_CREATE_CLIENT_FAILED,
                )
                return None

            self.mode = ADAPTER_MODE_REALTIME
            self.mode_reason = REASON_SYNCED
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="room-sync"
            )
            logger.info("Realtime sync enabled.")
            return self._client

    def _get_session(self, room_id: str) -> _RoomSession | None:
        if self._ensure_client() is None:
            return None
        with self._lock:
            session = self._sessions.get(room_id)
            if session is None:
                session = _RoomSession(room_id)
                self._sessions[room_id] = session
                # The seed publishes the local value as it is now; writes made
                # after this point reach the remote through their own tasks.
                self._submit(self._seed, session, self.fallback.load(room_id))
            return session

    def _read_session(self, session: _RoomSession) -> Snapshot | None:
        with self._lock:
            ready = session.storage_ready
            if not ready.done():
                return self.fallback.load(session.room_id)
            if not ready.result():
                self._reseed(session)
                return self.fallback.load(session.room_id)
            state = copy.deepcopy(session.cached_state)
            self._mirror_local(session.room_id, state)
            return state

    def _reseed(self, session: _RoomSession) -> None:
        with self._lock:
            if not session.storage_ready.done() or session.storage_ready.result():
                return
            logger.info("Retrying realtime sync for room %s", session.room_id)
            session.storage_ready = Future()
            self._submit(self._seed, session, self.fallback.load(session.room_id))

    def _submit(self, fn, *args) -> None:
        with self._lock:
            if self._closed or self._executor is None:
                return
            self._executor.submit(fn, *args)

    # ------------------------
    # Background work (single worker thread)
    # ------------------------

    def _seed(self, session: _RoomSession, local: Snapshot | None) -> None:
        room_id = session.room_id
        try:
            remote = self._client.get_document(room_id)
            if remote is None:
                if local is not None:
                    self._client.set_document(room_id, local)
                with self._lock:
                    if session.pending_writes == 0:
                        session.cached_state = copy.deepcopy(local)
            else:
                with self._lock:
                    if session.pending_writes == 0:
                        session.cached_state = copy.deepcopy(remote)
                        self._mirror_local(room_id, remote)
        except Exception as exc:
            self._degrade(room_id, REASON_SEED_FAILED, exc)
            session.storage_ready.set_result(False)
            return

        self._mark_healthy(room_id)
        session.storage_ready.set_result(True)

    def _refresh(self, session: _RoomSession, ready: Future) -> None:
        room_id = session.room_id
        with self._lock:
            session.refresh_queued = False
            if not ready.result() or session.pending_writes > 0:
                return
            push = session.needs_push
            state = copy.deepcopy(session.cached_state)

        try:
            if not push:
                state = self._client.get_document(room_id)
            elif state is None:
                self._client.delete_document(room_id)
            else:
                self._client.set_document(room_id, state)
        except Exception as exc:
            self._degrade(room_id, REASON_SAVE_FAILED if push else REASON_LOAD_FAILED, exc)
            return

        with self._lock:
            if push:
                session.needs_push = False
            elif session.pending_writes == 0:
                session.cached_state = copy.deepcopy(state)
                self._mirror_local(room_id, state)
            restart_feed = session.feed_requested and not session.remote_subscribed
            if restart_feed:
                session.remote_subscribed = True
        self._mark_healthy(room_id)
        if restart_feed:
            self._start_remote_feed(session, ready)

    def _remote_save(
        self, session: _RoomSession, ready: Future, snapshot: Snapshot
    ) -> None:
        try:
            if not ready.result():
                return
            try:
                self._client.set_document(session.room_id, snapshot)
            except Exception as exc:
                self._write_failed(session, REASON_SAVE_FAILED, exc)
                return
            with self._lock:
                session.needs_push = False
            self._mark_healthy(session.room_id)
        finally:
            self._finish_write(session)

    def _remote_update(
        self, session: _RoomSession, ready: Future, transform: RoomStateTransform
    ) -> None:
        room_id = session.room_id
        result_known = False
        reconciled = None
        try:
            if not ready.result():
                return
            try:
                remote_prev = self._client.get_document(room_id)
                reconciled = transform(copy.deepcopy(remote_prev))
                if reconciled is None:
                    self._client.delete_document(room_id)
                else:
                    self._client.set_document(room_id, reconciled)
            except Exception as exc:
                self._write_failed(session, REASON_UPDATE_FAILED, exc)
                return
            result_known = True
            with self._lock:
                session.needs_push = False
            self._mark_healthy(room_id)
        finally:
            self._finish_write(session, reconciled, result_known)

    def _write_failed(self, session: _RoomSession, reason: str, exc: Exception) -> None:
        # The local value stays ahead of the remote until the next load
        # pushes it again.
        with self._lock:
            session.needs_push = True
        self._degrade(session.room_id, reason, exc)

    def _finish_write(
        self,
        session: _RoomSession,
        reconciled: Snapshot | None = None,
        result_known: bool = False,
    ) -> None:
        with self._lock:
            session.pending_writes -= 1
            # Later optimistic writes are newer than this result; their own
            # reconciliation will publish the final value.
            if not result_known or session.pending_writes > 0:
                return
            session.cached_state = copy.deepcopy(reconciled)
            self._mirror_local(session.room_id, reconciled)

    def _start_remote_feed(self, session: _RoomSession, ready: Future) -> None:
        room_id = session.room_id
        if not ready.result():
            with self._lock:
                session.remote_subscribed = False
            return
        try:
            session.unsubscribe_remote = self._client.subscribe_document(
                room_id,
                lambda state: self._on_remote_change(session, state),
                lambda exc: self._degrade(room_id, REASON_FEED_FAILED, exc),
            )
        except Exception as exc:
            with self._lock:
                session.remote_subscribed = False
            self._degrade(room_id, REASON_SUBSCRIBE_FAILED, exc)

    def _on_remote_change(self, session: _RoomSession, state: Snapshot | None) -> None:
        with self._lock:
            if session.pending_writes > 0 or session.needs_push:
                return
            session.cached_state = copy.deepcopy(state)
            self._mirror_local(session.room_id, state)
        self._mark_healthy(session.room_id)

    # ------------------------
    # Local mirror + status
    # ------------------------

    def _mirror_local(self, room_id: str, state: Snapshot | None) -> None:
        with self._lock:
            if self.fallback.load(room_id) == state:
                return
            self._write_local(room_id, state)

    def _write_local(self, room_id: str, state: Snapshot | None) -> None:
        if state is None:
            self.fallback.update(room_id, lambda _prev: None)
        else:
            self.fallback.save(room_id, state)

    def _mark_healthy(self, room_id: str) -> None:
        self._set_status(room_id, MODE_REALTIME, HEALTH_HEALTHY, REASON_SYNCED)

    def _mark_unavailable(self, room_id: str) -> None:
        self._set_status(room_id, MODE_LOCAL, HEALTH_DEGRADED, REASON_REALTIME_UNAVAILABLE)

    def _degrade(self, room_id: str, reason: str, exc: Exception) -> None:
        logger.warning("Realtime sync %s for room %s: %s", reason, room_id, exc)
        self.status.set(room_id, MODE_REALTIME, HEALTH_DEGRADED, reason)
        self.telemetry.report(
            category=CATEGORY_SYNC,
            code=reason,
            reason=str(getattr(exc, "reason", "") or exc or reason),
            room_id=room_id,
        )

    def _set_status(self, room_id: str, mode: str, health: str, reason: str) -> None:
        current = self.status.get(room_id)
        if (current["mode"], current["health"], current["reason"]) == (mode, health, reason):
            return
        self.status.set(room_id, mode, health, reason)
