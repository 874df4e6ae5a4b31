from urllib.parse import urlsplit

import pytest

from conftest import make_snapshot
from local_snapshot_store import LocalSnapshotStore
from realtime_adapter import RealtimeSyncAdapter
from room_auth import RoomAuthDelegate
from room_document_client import HttpRoomDocumentClient
from room_server import DOCUMENT_KEY_PREFIX, RoomTokenIssuer, create_room_server


@pytest.fixture
def server_store(tmp_path):
    return LocalSnapshotStore(str(tmp_path / "server.db"), key_prefix=DOCUMENT_KEY_PREFIX)


@pytest.fixture
def open_client(server_store):
    app = create_room_server(store=server_store)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def token_client(server_store):
    app = create_room_server(store=server_store, require_tokens=True)
    app.config["TESTING"] = True
    return app.test_client()


class _FlaskResponse:
    def __init__(self, response):
        self.status_code = response.status_code
        self._response = response

    def json(self):
        payload = self._response.get_json(silent=True)
        if payload is None:
            raise ValueError("response body is not JSON")
        return payload


def _route_requests_to(monkeypatch, flask_client):
    def fake_request(method, url, json=None, headers=None, timeout=10):
        return _FlaskResponse(
            flask_client.open(urlsplit(url).path, method=method, json=json, headers=headers)
        )

    def fake_post(url, json=None, headers=None, timeout=10):
        return fake_request("POST", url, json=json, headers=headers)

    monkeypatch.setattr("room_document_client.requests.request", fake_request)
    monkeypatch.setattr("room_auth.requests.post", fake_post)


def test_health_and_cors(open_client):
    response = open_client.get("/health")
    assert response.get_json() == {"status": "ok"}
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_storage_crud_bumps_revision(open_client):
    empty = open_client.get("/api/rooms/room1/storage").get_json()
    assert empty == {"room_id": "room1", "state": None, "revision": 0}

    saved = open_client.put("/api/rooms/room1/storage", json={"state": {"round": 1}}).get_json()
    assert saved["state"] == {"round": 1}
    assert saved["revision"] == 1

    again = open_client.put("/api/rooms/room1/storage", json={"state": {"round": 2}}).get_json()
    assert again["revision"] == 2

    deleted = open_client.delete("/api/rooms/room1/storage").get_json()
    assert deleted["state"] is None
    assert deleted["revision"] == 3


def test_rejects_bad_input(open_client):
    response = open_client.put("/api/rooms/room1/storage", json={"state": [1, 2]})
    assert response.status_code == 400
    assert response.get_json()["reason"] == "invalid_state"

    response = open_client.get("/api/rooms/bad.id/storage")
    assert response.status_code == 400
    assert response.get_json()["code"] == "invalid_room_id"

    response = open_client.post("/api/auth", json={})
    assert response.status_code == 400
    assert response.get_json()["reason"] == "missing_room_id"


def test_unknown_routes_use_the_error_shape(open_client):
    response = open_client.get("/api/nowhere")
    assert response.status_code == 404
    payload = response.get_json()
    assert payload["code"] == "not_found"
    assert payload["reason"] == "http_404"
    assert payload["error"] == payload["message"]
    assert payload["details"] == {}

    assert open_client.post("/api/rooms/room1/storage").status_code == 405


def test_tokens_are_scoped_to_their_room(token_client):
    assert token_client.get("/api/rooms/room1/storage").status_code == 401

    issued = token_client.post("/api/auth", json={"room_id": "room1"}).get_json()
    assert issued["room_id"] == "room1"
    headers = {"Authorization": f"Bearer {issued['token']}"}

    assert token_client.get("/api/rooms/room1/storage", headers=headers).status_code == 200
    denied = token_client.get("/api/rooms/room2/storage", headers=headers)
    assert denied.status_code == 401
    assert denied.get_json()["code"] == "unauthorized"


def test_public_key_is_checked(server_store):
    client = create_room_server(store=server_store, public_key="pk_test").test_client()
    assert client.get("/api/rooms/room1/storage").status_code == 401
    ok = client.get("/api/rooms/room1/storage", headers={"X-Room-Public-Key": "pk_test"})
    assert ok.status_code == 200
    wrong = client.get("/api/rooms/room1/storage", headers={"X-Room-Public-Key": "nope"})
    assert wrong.status_code == 401


def test_token_expiry():
    now = [1000.0]
    issuer = RoomTokenIssuer(ttl_seconds=60, clock=lambda: now[0])
    token = issuer.issue("room1")
    assert issuer.is_valid(token, "room1")
    now[0] += 61
    assert not issuer.is_valid(token, "room1")
    assert not issuer.is_valid("unknown", "room1")


def test_http_client_round_trip_with_token_auth(monkeypatch, token_client, telemetry):
    _route_requests_to(monkeypatch, token_client)
    client = HttpRoomDocumentClient(
        "https://rooms.example.com",
        auth_delegate=RoomAuthDelegate("https://rooms.example.com/api/auth", telemetry=telemetry),
    )

    assert client.get_document("room1") is None
    client.set_document("room1", make_snapshot())
    assert client.get_record("room1") == (make_snapshot(), 1)
    client.delete_document("room1")
    assert client.get_document("room1") is None
    assert telemetry.counters == {}


def test_adapter_syncs_through_the_server(
    monkeypatch, tmp_path, open_client, server_store, status_registry, telemetry
):
    _route_requests_to(monkeypatch, open_client)
    adapter = RealtimeSyncAdapter(
        LocalSnapshotStore(str(tmp_path / "client.db")),
        client_factory=lambda: HttpRoomDocumentClient(
            "https://rooms.example.com", public_key="pk_unused"
        ),
        status_registry=status_registry,
        telemetry=telemetry,
    )
    try:
        adapter.load("room1")
        adapter.flush(timeout=5)
        adapter.update("room1", lambda prev: prev or make_snapshot())
        adapter.flush(timeout=5)
    finally:
        adapter.close()

    assert server_store.load("room1") == make_snapshot()
    assert status_registry.get("room1")["reason"] == "synced"
