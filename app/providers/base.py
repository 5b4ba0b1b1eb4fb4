from __future__ import annotations

import abc
from typing import Optional

EMOTIONS = ("happy", "sad", "anxious", "angry", "frustrated", "lonely", "neutral")
SUPPORT_TYPES = ("celebration", "comfort", "calming", "validation", "encouragement", "companionship", "general")


class EmotionClient(abc.ABC):
    """Emotion analysis + supportive reply for one user message.

    ``analyze`` returns a dict with keys:
      - response: str, the supportive reply
      - emotion: one of EMOTIONS
      - confidence: float in [0, 1]
      - supportType: one of SUPPORT_TYPES
    Transport failures raise; callers map them to their own error replies.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def analyze(self, message: str, voice_tone: Optional[str] = None, request_id: Optional[str] = None) -> dict:
        ...


def normalize_analysis(obj: dict, fallback_response: str = "") -> dict:
    """Coerce a provider result into the guaranteed shape."""
    emotion = str(obj.get("emotion") or "neutral").strip().lower()
    if emotion not in EMOTIONS:
        emotion = "neutral"
    support = str(obj.get("supportType") or obj.get("support_type") or "general").strip().lower()
    if support not in SUPPORT_TYPES:
        support = "general"
    try:
        confidence = float(obj.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = min(1.0, max(0.0, confidence))
    response = str(obj.get("response") or fallback_response).strip()
    return {"response": response, "emotion": emotion, "confidence": confidence, "supportType": support}
