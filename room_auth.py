"""Token exchange against the realtime backend's auth endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from telemetry import CATEGORY_AUTH, TelemetryReporter

logger = logging.getLogger(__name__)

REASON_OK = "ok"
REASON_NETWORK_ERROR = "network_error"
REASON_MALFORMED_RESPONSE = "malformed_response"


@dataclass(frozen=True)
class AuthResult:
    ok: bool
    reason: str
    token: str = ""
    status_code: int = 0


class RoomAuthDelegate:
    """Asks the auth endpoint for a room token and classifies the outcome.

    Exactly one of: token, endpoint-reported reason, ``http_<status>``,
    ``network_error`` or ``malformed_response``. Failures are reported to
    telemetry before being handed back.
    """

    REQUEST_TIMEOUT_SECONDS = 10

    def __init__(self, endpoint: str, *, telemetry: TelemetryReporter | None = None):
        self.endpoint = endpoint
        self.telemetry = telemetry

    def authorize(self, room_id: str) -> AuthResult:
        try:
            response = requests.post(
                self.endpoint,
                json={"room_id": room_id},
                headers={"Accept": "application/json"},
                timeout=self.REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            logger.warning("Room auth request failed for %s: %s", room_id, exc)
            return self._fail(room_id, "auth_network_error", REASON_NETWORK_ERROR)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and isinstance(payload.get("reason"), str):
            reason = payload["reason"].strip()
            if reason and not payload.get("token"):
                return self._fail(
                    room_id,
                    "auth_endpoint_error",
                    reason,
                    status_code=response.status_code,
                )

        if not 200 <= response.status_code < 300:
            return self._fail(
                room_id,
                "auth_http_error",
                f"http_{response.status_code}",
                status_code=response.status_code,
            )

        token = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token.strip():
            return self._fail(
                room_id,
                "auth_malformed_response",
                REASON_MALFORMED_RESPONSE,
                status_code=response.status_code,
            )

        return AuthResult(
            ok=True,
            reason=REASON_OK,
            token=token.strip(),
            status_code=response.status_code,
        )

    def _fail(
        self, room_id: str, code: str, reason: str, *, status_code: int = 0
    ) -> AuthResult:
        if self.telemetry is not None:
            self.telemetry.report(
                category=CATEGORY_AUTH, code=code, reason=reason, room_id=room_id
            )
        return AuthResult(ok=False, reason=reason, status_code=status_code)
