from __future__ import annotations

import asyncio
import base64

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from twilio.base.exceptions import TwilioRestException

from bridge.config import BridgeConfig
from integrations.twilio_client import TwilioConfig


class FakeTwilioCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid


class FakeTwilioCalls:
    def __init__(self) -> None:
        self.created: list[dict] = []

    def create(self, *, to: str, from_: str, url: str, method: str):
        self.created.append({"to": to, "from_": from_, "url": url, "method": method})
        return FakeTwilioCall("CA123")


class FailingTwilioCalls:
    def create(self, **kwargs):
        raise TwilioRestException(status=400, uri="/Calls", msg="invalid number")


class FakeTwilioClient:
    def __init__(self, calls=None) -> None:
        self.calls = calls or FakeTwilioCalls()


def _twilio_cfg() -> TwilioConfig:
    return TwilioConfig(
        account_sid="AC123",
        auth_token="token",
        from_number="+15005550006",
        public_base_url="https://bridge.example.com",
    )


@pytest.fixture()
def twilio_client(app):
    import api.twilio_routes as twilio_routes

    client = FakeTwilioClient()
    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: client
    app.dependency_overrides[twilio_routes.get_twilio_cfg] = _twilio_cfg
    yield client
    app.dependency_overrides.clear()


def test_health(app):
    with TestClient(app) as client:
        resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_twiml_connects_call_to_media_stream(app):
    with TestClient(app) as client:
        resp = client.post("/api/twilio/twiml")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    assert "<Connect>" in resp.text
    assert '<Stream url="wss://bridge.example.com/api/twilio/media-stream" />' in resp.text


def test_start_call_places_twilio_call(app, twilio_client):
    with TestClient(app) as client:
        resp = client.post("/api/calls", json={"name": "Ada", "phone": "+14155550100"})

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "call_sid": "CA123"}
    assert twilio_client.calls.created == [
        {
            "to": "+14155550100",
            "from_": "+15005550006",
            "url": "https://bridge.example.com/api/twilio/twiml",
            "method": "POST",
        }
    ]


def test_start_call_requires_name_and_phone(app, twilio_client):
    with TestClient(app) as client:
        resp = client.post("/api/calls", json={"name": "Ada"})
    assert resp.status_code == 422


def test_start_call_checks_api_key(app, twilio_client, monkeypatch):
    from config.settings import get_settings

    monkeypatch.setattr(get_settings(), "call_api_key", "secret")

    with TestClient(app) as client:
        denied = client.post("/api/calls", json={"name": "Ada", "phone": "+1"})
        allowed = client.post(
            "/api/calls", json={"name": "Ada", "phone": "+1"}, headers={"x-api-key": "secret"}
        )

    assert denied.status_code == 401
    assert allowed.status_code == 200


def test_start_call_maps_twilio_errors(app, twilio_client):
    twilio_client.calls = FailingTwilioCalls()

    with TestClient(app) as client:
        resp = client.post("/api/calls", json={"name": "Ada", "phone": "+1"})

    assert resp.status_code == 502
    assert "invalid number" in resp.json()["detail"]


def test_media_stream_bridges_caller_audio(app, fake_speech):
    import api.dependencies as deps

    async def connect():
        return fake_speech

    app.dependency_overrides[deps.get_speech_connector] = lambda: connect
    app.dependency_overrides[deps.get_bridge_config] = lambda: BridgeConfig(
        first_response_policy="listen_first", commit_delay_ms=0
    )
    payload = base64.b64encode(b"\xFF" * 160).decode("ascii")

    try:
        with TestClient(app) as client:
            with client.websocket_connect("/api/twilio/media-stream") as ws:
                ws.send_json({"event": "connected"})
                ws.send_json({"event": "start", "start": {"streamSid": "MZ1", "callSid": "CA1"}})
                for _ in range(10):
                    ws.send_json({"event": "media", "media": {"payload": payload}})
                ws.send_json({"event": "stop"})
                with pytest.raises(WebSocketDisconnect):
                    ws.receive_text()
    finally:
        app.dependency_overrides.clear()

    assert fake_speech.types() == [
        "session.update",
        "input_audio_buffer.append",
        "input_audio_buffer.commit",
        "response.create",
    ]
    assert fake_speech.closed is True


class LoopCheckingCalls(FakeTwilioCalls):
    def create(self, **kwargs):
        try:
            asyncio.get_running_loop()
            self.on_event_loop = True
        except RuntimeError:
            self.on_event_loop = False
        return super().create(**kwargs)


def test_start_call_runs_rest_request_off_the_event_loop(app, twilio_client):
    twilio_client.calls = LoopCheckingCalls()

    with TestClient(app) as client:
        resp = client.post("/api/calls", json={"name": "Ada", "phone": "+14155550100"})

    assert resp.status_code == 200
    assert twilio_client.calls.on_event_loop is False
    assert twilio_client.calls.created[0]["url"] == "https://bridge.example.com/api/twilio/twiml"


def test_start_call_without_twilio_settings(app):
    import api.twilio_routes as twilio_routes

    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: FakeTwilioClient()
    try:
        with TestClient(app) as client:
            resp = client.post("/api/calls", json={"name": "Ada", "phone": "+1"})
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 503
    assert "TWILIO_ACCOUNT_SID" in resp.json()["detail"]


def test_media_stream_ignores_binary_frames(app, fake_speech):
    import api.dependencies as deps

    async def connect():
        return fake_speech

    app.dependency_overrides[deps.get_speech_connector] = lambda: connect
    app.dependency_overrides[deps.get_bridge_config] = lambda: BridgeConfig(
        first_response_policy="listen_first", commit_delay_ms=0
    )
    payload = base64.b64encode(b"\xFF" * 160).decode("ascii")

    try:
        with TestClient(app) as client:
            with client.websocket_connect("/api/twilio/media-stream") as ws:
                ws.send_bytes(b"\x00\x01")
                ws.send_json({"event": "start", "start": {"streamSid": "MZ1", "callSid": "CA1"}})
                for _ in range(10):
                    ws.send_json({"event": "media", "media": {"payload": payload}})
                ws.send_json({"event": "stop"})
                with pytest.raises(WebSocketDisconnect):
                    ws.receive_text()
    finally:
        app.dependency_overrides.clear()

    assert fake_speech.types() == [
        "session.update",
        "input_audio_buffer.append",
        "input_audio_buffer.commit",
        "response.create",
    ]
