"""Runtime configuration for room sync."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncConfig:
    realtime_api_url: str = ""
    realtime_public_key: str = ""
    realtime_auth_endpoint: str = ""
    telemetry_endpoint: str = ""
    db_path: str = "room_state.db"
    poll_interval_seconds: float = 1.0
    is_dev: bool = False

    @property
    def has_realtime(self) -> bool:
        return bool(self.realtime_api_url) and bool(
            self.realtime_public_key or self.realtime_auth_endpoint
        )

    @classmethod
    def from_env(cls, *, load_env_file: bool = True) -> "SyncConfig":
        if load_env_file:
            load_dotenv()
        try:
            poll_interval = float(os.getenv("REALTIME_POLL_SECONDS", "1.0"))
        except ValueError:
            poll_interval = 1.0
        return cls(
            realtime_api_url=os.getenv("REALTIME_API_URL", "").strip(),
            realtime_public_key=os.getenv("REALTIME_PUBLIC_KEY", "").strip(),
            realtime_auth_endpoint=os.getenv("REALTIME_AUTH_ENDPOINT", "").strip(),
            telemetry_endpoint=os.getenv("TELEMETRY_ENDPOINT", "").strip(),
            db_path=os.getenv("ROOM_STATE_DB", "room_state.db").strip() or "room_state.db",
            poll_interval_seconds=poll_interval,
            is_dev=os.getenv("APP_ENV", "").strip().lower() in ("dev", "development"),
        )

    def validate(self) -> list[str]:
        warnings: list[str] = []
        for name, value in (
            ("REALTIME_API_URL", self.realtime_api_url),
            ("REALTIME_AUTH_ENDPOINT", self.realtime_auth_endpoint),
            ("TELEMETRY_ENDPOINT", self.telemetry_endpoint),
        ):
            if value and not re.match(r"^https?://", value, re.IGNORECASE):
                warnings.append(f"{name} should start with http:// or https://.")

        if self.realtime_api_url and not (
            self.realtime_public_key or self.realtime_auth_endpoint
        ):
            warnings.append(
                "REALTIME_API_URL is set but neither REALTIME_PUBLIC_KEY nor "
                "REALTIME_AUTH_ENDPOINT is; rooms will stay local-only."
            )

        if (self.realtime_public_key or self.realtime_auth_endpoint) and not self.realtime_api_url:
            warnings.append(
                "Realtime credentials are set without REALTIME_API_URL; rooms will stay local-only."
            )

        if self.poll_interval_seconds <= 0:
            warnings.append("REALTIME_POLL_SECONDS should be greater than 0.")

        if warnings:
            for warning in warnings:
                logger.warning("Config warning: %s", warning)
        else:
            logger.info("Room sync configuration checks passed.")
        return warnings
