import json
import types

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

import app.providers.openrouter as openrouter_mod
from app.providers.openrouter import OpenRouterEmotionClient


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data or {}
        self.text = text

    def json(self):
        return self._json


def _fake_httpx(captured: dict, response: FakeResponse):
    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            captured["timeout"] = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, headers=None, json=None):
            captured["url"] = url
            captured["headers"] = headers or {}
            captured["payload"] = json
            return response

    return types.SimpleNamespace(AsyncClient=FakeAsyncClient)


def _chat_body(content: str) -> dict:
    return {"choices": [{"message": {"content": content}}]}


@pytest.mark.asyncio
async def test_openrouter_analyze_propagates_x_request_id(monkeypatch: pytest.MonkeyPatch):
    captured = {}
    body = _chat_body(json.dumps({
        "response": "You are doing great.",
        "emotion": "happy",
        "confidence": 0.9,
        "supportType": "celebration",
    }))
    monkeypatch.setattr(openrouter_mod, "httpx", _fake_httpx(captured, FakeResponse(json_data=body)))

    cli = OpenRouterEmotionClient("dummy", model="x")
    out = await cli.analyze("I read a whole page!", voice_tone="cheerful", request_id="req-123")

    assert out == {"response": "You are doing great.", "emotion": "happy", "confidence": 0.9, "supportType": "celebration"}
    assert captured["headers"].get("X-Request-Id") == "req-123"
    assert captured["payload"]["model"] == "x"
    assert "voiceTone: cheerful" in captured["payload"]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_openrouter_normalizes_out_of_range_fields(monkeypatch: pytest.MonkeyPatch):
    body = _chat_body("```json\n" + json.dumps({
        "response": "ok",
        "emotion": "ecstatic",
        "confidence": 7,
        "supportType": "hugs",
    }) + "\n```")
    monkeypatch.setattr(openrouter_mod, "httpx", _fake_httpx({}, FakeResponse(json_data=body)))

    out = await OpenRouterEmotionClient("dummy", model="x").analyze("hi")
    assert out == {"response": "ok", "emotion": "neutral", "confidence": 1.0, "supportType": "general"}


@pytest.mark.asyncio
async def test_openrouter_plain_text_reply_is_kept(monkeypatch: pytest.MonkeyPatch):
    body = _chat_body("I'm here for you.")
    monkeypatch.setattr(openrouter_mod, "httpx", _fake_httpx({}, FakeResponse(json_data=body)))

    out = await OpenRouterEmotionClient("dummy", model="x").analyze("hi")
    assert out["response"] == "I'm here for you."
    assert out["emotion"] == "neutral"


@pytest.mark.asyncio
async def test_openrouter_http_error_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(openrouter_mod, "httpx", _fake_httpx({}, FakeResponse(status_code=502, text="bad gateway")))

    with pytest.raises(RuntimeError):
        await OpenRouterEmotionClient("dummy", model="x").analyze("hi")


def test_openrouter_requires_api_key():
    with pytest.raises(RuntimeError):
        OpenRouterEmotionClient("", model="x")
    with pytest.raises(RuntimeError):
        OpenRouterEmotionClient("   ", model="x")


@pytest.mark.asyncio
async def test_openrouter_takes_timeout_and_origin_from_settings(monkeypatch: pytest.MonkeyPatch):
    from conftest import make_settings

    monkeypatch.setenv("AI_HTTP_TIMEOUT_SECONDS", "99")
    captured = {}
    body = _chat_body(json.dumps({"response": "ok", "emotion": "happy", "confidence": 0.5, "supportType": "celebration"}))
    monkeypatch.setattr(openrouter_mod, "httpx", _fake_httpx(captured, FakeResponse(json_data=body)))

    settings = make_settings(
        openrouter_api_key="key-1",
        emotion_model="m/1",
        http_timeout_seconds=7.5,
        public_app_origin="https://app.example.com",
    )
    cli = OpenRouterEmotionClient.from_settings(settings)
    await cli.analyze("hi")

    assert cli.model == "m/1"
    assert captured["timeout"] == 7.5
    assert captured["headers"]["Authorization"] == "Bearer key-1"
    assert captured["headers"]["HTTP-Referer"] == "https://app.example.com"


def _get_metric_count(name: str, labels: dict) -> float:
    val = REGISTRY.get_sample_value(name, labels)
    return float(val) if val is not None else 0.0


def test_request_id_is_echoed_or_generated(client: TestClient):
    r = client.get("/health", headers={"X-Request-Id": "rid-42"})
    assert r.headers["X-Request-Id"] == "rid-42"
    generated = client.get("/health").headers.get("X-Request-Id")
    assert generated and generated != "rid-42"


def test_emotion_metrics_emitted_on_chat_message(client: TestClient, signup_payload):
    client.post("/api/auth/signup", json=signup_payload)
    before = _get_metric_count("speechbridge_emotion_analysis_seconds_count", {"provider": "mock"})

    r = client.post("/api/chat/message", json={"message": "I feel happy"})
    assert r.status_code == 200

    after = _get_metric_count("speechbridge_emotion_analysis_seconds_count", {"provider": "mock"})
    assert after >= before + 1


def test_ws_frame_metrics(client: TestClient):
    before = _get_metric_count("speechbridge_ws_frames_total", {"type": "speech_practice"})
    before_anon = _get_metric_count("speechbridge_ws_handshake_total", {"outcome": "anonymous"})
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "speech_practice"})
        ws.receive_json()
    assert _get_metric_count("speechbridge_ws_frames_total", {"type": "speech_practice"}) >= before + 1
    assert _get_metric_count("speechbridge_ws_handshake_total", {"outcome": "anonymous"}) >= before_anon + 1
