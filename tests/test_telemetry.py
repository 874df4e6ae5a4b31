import requests

from telemetry import TelemetryReporter


def test_report_without_endpoint_only_records(monkeypatch):
    def fail_post(*args, **kwargs):
        raise AssertionError("should not post without an endpoint")

    monkeypatch.setattr("telemetry.requests.post", fail_post)
    reporter = TelemetryReporter(endpoint="  ", background=False)

    payload = reporter.report(category="sync", code="storage_save_failed", reason="boom")
    assert payload["adapter"] == "realtime"
    assert payload["category"] == "sync"
    assert "room_id" not in payload
    assert payload["timestamp"].endswith("+00:00")
    assert reporter.counters == {"storage_save_failed": 1}
    assert list(reporter.recent_events) == [payload]


def test_report_posts_payload_to_endpoint(monkeypatch):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured["url"] = url
        captured["json"] = json
        captured["timeout"] = timeout

    monkeypatch.setattr("telemetry.requests.post", fake_post)
    reporter = TelemetryReporter(endpoint="https://telemetry.example.com/events", background=False)

    reporter.report(category="auth", code="auth_http_error", reason="http_500", room_id="room1")
    assert captured["url"] == "https://telemetry.example.com/events"
    assert captured["json"]["room_id"] == "room1"
    assert captured["json"]["reason"] == "http_500"
    assert captured["timeout"] == TelemetryReporter.REQUEST_TIMEOUT_SECONDS


def test_delivery_failures_are_swallowed(monkeypatch):
    def broken_post(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr("telemetry.requests.post", broken_post)
    reporter = TelemetryReporter(endpoint="https://telemetry.example.com/events", background=False)

    reporter.report(category="sync", code="storage_seed_failed", reason="offline")
    reporter.report(category="sync", code="storage_seed_failed", reason="offline")
    assert reporter.counters["storage_seed_failed"] == 2
