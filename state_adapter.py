"""Builds the room-state adapter stack from configuration."""

from __future__ import annotations

import logging

from local_snapshot_store import LocalSnapshotStore, StorageEvents
from realtime_adapter import RealtimeSyncAdapter
from room_auth import RoomAuthDelegate
from room_document_client import HttpRoomDocumentClient
from sync_config import SyncConfig
from sync_status import SyncStatusRegistry
from telemetry import TelemetryReporter

logger = logging.getLogger(__name__)


def build_document_client_factory(config: SyncConfig, telemetry: TelemetryReporter):
    if not config.has_realtime:
        return None

    def _factory() -> HttpRoomDocumentClient:
        auth_delegate = None
        if not config.realtime_public_key:
            auth_delegate = RoomAuthDelegate(
                config.realtime_auth_endpoint, telemetry=telemetry
            )
        return HttpRoomDocumentClient(
            config.realtime_api_url,
            public_key=config.realtime_public_key or None,
            auth_delegate=auth_delegate,
            poll_interval=config.poll_interval_seconds,
        )

    return _factory


def get_room_state_adapter(
    config: SyncConfig | None = None,
    *,
    status_registry: SyncStatusRegistry | None = None,
    telemetry: TelemetryReporter | None = None,
    events: StorageEvents | None = None,
) -> RealtimeSyncAdapter:
    config = config or SyncConfig.from_env()
    config.validate()
    telemetry = telemetry or TelemetryReporter(
        config.telemetry_endpoint, is_dev=config.is_dev
    )
    local_store = LocalSnapshotStore(config.db_path, events=events)
    adapter = RealtimeSyncAdapter(
        local_store,
        client_factory=build_document_client_factory(config, telemetry),
        status_registry=status_registry or SyncStatusRegistry(),
        telemetry=telemetry,
    )
    if config.has_realtime:
        logger.info("Room state: realtime sync via %s", config.realtime_api_url)
    else:
        logger.info("Room state: local SQLite snapshots (%s)", config.db_path)
    return adapter
