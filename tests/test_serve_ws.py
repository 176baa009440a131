from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from captionsync.cli.serve_ws import _create_app

SEG_A = "segment_20250101_120000_000"
SEG_B = "segment_20250101_120000_500"


class _FakeBackend:
    def __init__(self, segments=None):
        self.segments = list(segments or [])
        self.translate_calls = []

    async def list_segments(self):
        return list(self.segments)

    async def translate_segment(self, segment_id, provider):
        self.translate_calls.append((segment_id, provider))

    async def translate_live(self, text, provider, segment_id, order):
        return None

    async def get_translate_provider(self):
        return "ollama"


def _args(**overrides):
    base = dict(
        load_on_startup=True,
        enable_translation=False,
        live_translation=False,
        translation_pacing_sec=0.0,
        hysteresis_hits=2,
        trace_log=False,
    )
    base.update(overrides)
    return SimpleNamespace(**base)


def _receive_until_type(ws, expected_type: str, max_steps: int = 20):
    seen = []
    for _ in range(max_steps):
        msg = ws.receive_json()
        if msg.get("type") == expected_type:
            return msg
        seen.append(msg.get("type"))
    pytest.fail(f"did not receive {expected_type}, seen={seen}")


def test_healthz_and_empty_snapshot():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    client = TestClient(app)
    assert client.get("/healthz").json() == {"ok": True}
    snap = client.get("/snapshot").json()
    assert snap["segments"] == []
    assert snap["status"] == "No segments"
    assert snap["caption"]["meta"] == "Idle"


def test_startup_loads_segments():
    backend = _FakeBackend(segments=[{"name": SEG_B, "transcript": "two"}, {"name": SEG_A, "transcript": "one"}])
    app = _create_app(_args(), backend)
    with TestClient(app) as client:
        snap = client.get("/snapshot").json()
    assert [row["segment_id"] for row in snap["segments"]] == [SEG_A, SEG_B]
    assert snap["finalized_text"] == "one two"
    assert snap["status"] == "Saved 2"


def test_post_event_applies_and_returns_snapshot():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    client = TestClient(app)
    resp = client.post("/events/segment-transcribed", json={"name": SEG_A, "transcript": "hello"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["applied"] is True
    assert body["snapshot"]["segments"][0]["transcript"] == "hello"

    again = client.post("/events/segment-transcribed", json={"name": SEG_A, "transcript": "hello"}).json()
    assert again["applied"] is False


def test_post_event_rejects_malformed_payloads():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    client = TestClient(app)
    assert client.post("/events/segment_created", json={}).status_code == 400
    assert client.post("/events/not_an_event", json={"name": "x"}).status_code == 400
    bad = client.post("/events/segment_created", content=b"[1, 2]", headers={"Content-Type": "application/json"})
    assert bad.status_code == 400
    assert client.post("/events/segment_list_cleared").status_code == 200


def test_ws_ready_then_snapshot_broadcast():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ready = ws.receive_json()
        assert ready["type"] == "ready"
        assert ready["snapshot"]["segments"] == []

        ws.send_json({"type": "window-transcribed", "text": "hello wor", "windowMs": 4000})
        snap = _receive_until_type(ws, "snapshot")
        assert snap["snapshot"]["caption"]["partial_text"] == "hello wor"
        assert snap["snapshot"]["caption"]["meta"] == "4.0s window"


def test_ws_reports_bad_frames_and_keeps_connection():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("not json")
        err = ws.receive_json()
        assert err["type"] == "error"
        assert "invalid json" in err["message"]

        ws.send_json({"type": "live_translation_chunk", "order": 1})
        err = ws.receive_json()
        assert err["type"] == "error"
        assert "live_translation_chunk" in err["message"]

        ws.send_json({"type": "segment_speakered", "name": SEG_A, "speakerId": 1})
        ignored = ws.receive_json()
        assert ignored == {"type": "ignored", "event": "segment_speakered"}

        ws.send_json({"type": "segment_created", "name": SEG_A})
        snap = _receive_until_type(ws, "snapshot")
        assert snap["snapshot"]["segments"][0]["segment_id"] == SEG_A


def test_post_event_is_broadcast_to_ws_clients():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            client.post("/events/live_translation_start", json={"order": 3, "id": "s1"})
            snap = _receive_until_type(ws, "snapshot")
            assert snap["snapshot"]["stream"]["stream_id"] == "s1"
            assert snap["snapshot"]["stream"]["status"] == "pending"


def test_broadcast_tasks_are_tracked_and_released_on_shutdown():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            for i in range(3):
                client.post("/events/segment_created", json={"name": f"segment_20250101_12000{i}_000"})
            snap = _receive_until_type(ws, "snapshot")
            assert snap["snapshot"]["segments"]
    assert app.state.broadcast_tasks == set()


def test_stale_live_result_is_reported_as_ignored():
    app = _create_app(_args(load_on_startup=False), _FakeBackend())
    client = TestClient(app)
    client.post("/events/live_translation_start", json={"order": 5, "id": "a"})
    first = client.post("/events/live_translation_done", json={"order": 5, "id": "a", "translation": "hola"}).json()
    assert first["applied"] is True
    again = client.post("/events/live_translation_done", json={"order": 5, "id": "a", "translation": "hola"}).json()
    assert again["applied"] is False
    assert again["snapshot"]["live_transcript"] == "hola"


def test_translation_toggle_dispatches_through_backend():
    backend = _FakeBackend(segments=[{"name": SEG_A, "transcript": "one"}])
    app = _create_app(_args(), backend)
    with TestClient(app) as client:
        body = client.post("/events/translation-toggled", json={"enabled": True}).json()
        assert body["applied"] is True
        assert body["snapshot"]["translation_enabled"] is True
        assert body["snapshot"]["segments"][0]["translation_state"] == "pending"
        client.post("/events/segment_translated", json={"name": SEG_A, "translation": "uno"})
        snap = client.get("/snapshot").json()
    assert backend.translate_calls == [(SEG_A, "ollama")]
    assert snap["segments"][0]["translation"] == "uno"
    assert snap["segments"][0]["translation_state"] == "ready"
