import pytest

from app.providers.factory import get_emotion_client
from app.providers.mock import MockEmotionClient
from app.providers.openrouter import OpenRouterEmotionClient

from conftest import make_settings


@pytest.mark.parametrize("prov_env, expect_type", [
    ("mock", MockEmotionClient),
    ("test", MockEmotionClient),
    ("unknown", MockEmotionClient),
])
def test_get_emotion_client_basic(prov_env, expect_type, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER_EMOTION", prov_env)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    cli = get_emotion_client()
    assert isinstance(cli, expect_type)


def test_openrouter_missing_key_falls_back_to_mock(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER_EMOTION", "openrouter")
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    assert isinstance(get_emotion_client(), MockEmotionClient)


def test_openrouter_with_key_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("AI_PROVIDER_EMOTION", raising=False)
    monkeypatch.setenv("AI_PROVIDER", "openrouter")
    monkeypatch.setenv("OPENROUTER_API_KEY", "dummy")
    monkeypatch.setenv("AI_EMOTION_MODEL", "some/model")

    cli = get_emotion_client()
    assert isinstance(cli, OpenRouterEmotionClient)
    assert cli.model == "some/model"


def test_settings_select_provider_without_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AI_PROVIDER_EMOTION", "mock")
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    settings = make_settings(emotion_provider="openrouter", openrouter_api_key="k", emotion_model="cfg/model")
    cli = get_emotion_client(settings)
    assert isinstance(cli, OpenRouterEmotionClient)
    assert cli.model == "cfg/model"

    assert isinstance(get_emotion_client(make_settings(emotion_provider="openrouter")), MockEmotionClient)


def test_explicit_provider_overrides_settings():
    settings = make_settings(emotion_provider="openrouter", openrouter_api_key="k")
    assert isinstance(get_emotion_client(settings, provider="mock"), MockEmotionClient)


@pytest.mark.asyncio
@pytest.mark.parametrize("message, voice_tone, emotion, support", [
    ("I'm worried about my test", None, "anxious", "calming"),
    ("I feel sad today", None, "sad", "comfort"),
    ("this word is too hard", None, "frustrated", "encouragement"),
    ("I'm so mad", None, "angry", "validation"),
    ("nobody plays with me", None, "lonely", "companionship"),
    ("I did it!", None, "happy", "celebration"),
    ("the weather", "shaky", "anxious", "calming"),
    ("the weather", None, "neutral", "general"),
])
async def test_mock_emotion_lexicon(message, voice_tone, emotion, support):
    out = await MockEmotionClient().analyze(message, voice_tone=voice_tone)
    assert out["emotion"] == emotion
    assert out["supportType"] == support
    assert out["response"]
    assert 0.0 <= out["confidence"] <= 1.0
