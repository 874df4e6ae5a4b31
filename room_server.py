"""Standalone shared room-document service backed by SQLite.

Hosts one JSON document per room plus a token endpoint, which is all the
realtime sync adapter needs from a backend.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import threading
import time

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, jsonify, request

from api_errors import RoomApiError, register_error_handlers
from local_snapshot_store import LocalSnapshotStore

logger = logging.getLogger(__name__)

DOCUMENT_KEY_PREFIX = "room_document:"
ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class RoomTokenIssuer:
    def __init__(self, ttl_seconds: int = 3600, clock=time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._tokens: dict[str, tuple[str, float]] = {}

    def issue(self, room_id: str) -> str:
        token = secrets.token_urlsafe(24)
        with self._lock:
            self._prune()
            self._tokens[token] = (room_id, self.clock() + self.ttl_seconds)
        return token

    def is_valid(self, token: str, room_id: str) -> bool:
        with self._lock:
            entry = self._tokens.get(token)
        if not entry:
            return False
        token_room_id, expires_at = entry
        return token_room_id == room_id and expires_at > self.clock()

    def _prune(self) -> None:
        now = self.clock()
        expired = [token for token, (_, expires_at) in self._tokens.items() if expires_at <= now]
        for token in expired:
            del self._tokens[token]


def create_room_blueprint(
    *,
    store: LocalSnapshotStore,
    tokens: RoomTokenIssuer,
    public_key: str = "",
    require_tokens: bool = False,
) -> Blueprint:
    bp = Blueprint("rooms", __name__)
    require_auth = bool(public_key) or require_tokens

    def _json_body() -> dict:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def _document_payload(room_id: str):
        state, revision = store.read_record(room_id)
        return jsonify(room_id=room_id, state=state, revision=revision)

    def _is_authorized(room_id: str) -> bool:
        if not require_auth:
            return True
        presented_key = request.headers.get("X-Room-Public-Key", "")
        if public_key and presented_key and secrets.compare_digest(presented_key, public_key):
            return True
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return tokens.is_valid(auth_header[len("Bearer "):].strip(), room_id)
        return False

    def _guard(room_id: str) -> None:
        if not ROOM_ID_PATTERN.match(room_id):
            raise RoomApiError(400, "invalid_room_id", "Room id is not valid.")
        if not _is_authorized(room_id):
            raise RoomApiError(401, "unauthorized", "Missing or invalid room credentials.")

    @bp.route("/health")
    def health():
        return jsonify(status="ok")

    @bp.route("/api/auth", methods=["POST"])
    def api_auth():
        room_id = str(_json_body().get("room_id") or "").strip()
        if not room_id:
            raise RoomApiError(400, "auth_error", "room_id is required.", "missing_room_id")
        if not ROOM_ID_PATTERN.match(room_id):
            raise RoomApiError(400, "auth_error", "Room id is not valid.", "invalid_room_id")
        token = tokens.issue(room_id)
        current_app.logger.info("Issued room token for %s", room_id)
        return jsonify(token=token, room_id=room_id, expires_in=tokens.ttl_seconds)

    @bp.route("/api/rooms/<room_id>/storage", methods=["GET"])
    def api_get_document(room_id: str):
        _guard(room_id)
        return _document_payload(room_id)

    @bp.route("/api/rooms/<room_id>/storage", methods=["PUT"])
    def api_put_document(room_id: str):
        _guard(room_id)
        state = _json_body().get("state")
        if not isinstance(state, dict):
            raise RoomApiError(400, "invalid_state", "state must be a JSON object.")
        store.save(room_id, state)
        current_app.logger.info("Room document %s updated", room_id)
        return _document_payload(room_id)

    @bp.route("/api/rooms/<room_id>/storage", methods=["DELETE"])
    def api_delete_document(room_id: str):
        _guard(room_id)
        store.delete(room_id)
        current_app.logger.info("Room document %s deleted", room_id)
        return _document_payload(room_id)

    return bp


def create_room_server(
    *,
    db_path: str = "room_server.db",
    store: LocalSnapshotStore | None = None,
    public_key: str = "",
    require_tokens: bool = False,
    token_ttl_seconds: int = 3600,
) -> Flask:
    app = Flask(__name__)
    store = store or LocalSnapshotStore(db_path, key_prefix=DOCUMENT_KEY_PREFIX)
    app.register_blueprint(
        create_room_blueprint(
            store=store,
            tokens=RoomTokenIssuer(ttl_seconds=token_ttl_seconds),
            public_key=public_key,
            require_tokens=require_tokens,
        )
    )
    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = os.getenv("CORS_ORIGIN", "*")
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Headers"] = (
            "Content-Type, Authorization, X-Room-Public-Key"
        )
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    return app


def main() -> int:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO, format="[%(asctime)s] %(levelname)s: %(message)s"
    )
    app = create_room_server(
        db_path=os.getenv("ROOM_SERVER_DB", "room_server.db"),
        public_key=os.getenv("ROOM_SERVER_PUBLIC_KEY", "").strip(),
        require_tokens=os.getenv("ROOM_SERVER_REQUIRE_TOKENS", "false").strip().lower()
        in {"1", "true", "yes", "y"},
    )
    host = os.getenv("ROOM_SERVER_HOST", "127.0.0.1")
    port = int(os.getenv("ROOM_SERVER_PORT", "8050"))
    logger.info("Room server listening on %s:%s", host, port)
    app.run(debug=False, host=host, port=port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
