"""Structured JSON errors for the room server."""

from __future__ import annotations

from typing import Any

from flask import Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException


class RoomApiError(Exception):
    def __init__(self, status: int, code: str, message: str, reason: str = ""):
        super().__init__(message)
        self.status = int(status)
        self.code = code
        self.message = message
        # Machine-readable cause; the auth delegate reports it verbatim.
        self.reason = reason or code


def error_payload(
    *, code: str, message: str, reason: str = "", details: Any = None
) -> dict[str, Any]:
    code = str(code).strip() or "unknown_error"
    message = str(message).strip() or "Unknown error."
    return {
        "code": code,
        "message": message,
        "reason": str(reason).strip() or code,
        "details": {} if details is None else details,
        "error": message,
    }


def error_response(
    *, status: int, code: str, message: str, reason: str = "", details: Any = None
):
    payload = error_payload(code=code, message=message, reason=reason, details=details)
    return jsonify(payload), int(status)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(RoomApiError)
    def handle_room_api_error(e):
        return error_response(
            status=e.status, code=e.code, message=e.message, reason=e.reason
        )

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        code = (e.name or "http_error").lower().replace(" ", "_")
        return error_response(
            status=e.code or 500,
            code=code,
            message=e.description or e.name,
            reason=f"http_{e.code}",
        )

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        current_app.logger.error(
            "Unhandled exception",
            exc_info=(type(e), e, e.__traceback__),
        )
        return error_response(
            status=500,
            code="internal_error",
            message="The room server hit an internal error.",
        )
