from typing import Optional

from app.config import Settings

from .base import EmotionClient
from .mock import MockEmotionClient


def get_emotion_client(
    settings: Optional[Settings] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> EmotionClient:
    """Return an emotion-analysis client for ``settings`` or explicit overrides.

    Provider comes from ``settings.emotion_provider`` (AI_PROVIDER_EMOTION, then
    AI_PROVIDER, defaulting to 'mock'); model from ``settings.emotion_model``.
    """
    if settings is None:
        settings = Settings.from_env()
    prov = (provider or settings.emotion_provider or "mock").lower()
    mdl = model or settings.emotion_model or None

    if prov in ("mock", "test"):
        return MockEmotionClient(model=mdl)

    if prov in ("openrouter", "router"):
        from .openrouter import OpenRouterEmotionClient

        try:
            return OpenRouterEmotionClient.from_settings(settings, model=mdl)
        except RuntimeError:
            # Missing API key -> mock
            return MockEmotionClient(model=mdl)

    # Unknown -> mock
    return MockEmotionClient(model=mdl)
