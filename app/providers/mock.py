from typing import Dict, Optional, Tuple

from .base import EmotionClient, normalize_analysis

# emotion -> (cue words, support type, reply)
_LEXICON: Dict[str, Tuple[Tuple[str, ...], str, str]] = {
    "anxious": (
        ("nervous", "anxious", "worried", "scared", "afraid", "stress"),
        "calming",
        "It sounds like you're feeling nervous. Let's take a slow breath together before we try again.",
    ),
    "sad": (
        ("sad", "upset", "cry", "unhappy", "down"),
        "comfort",
        "I'm sorry you're feeling down. I'm here with you, and it's okay to feel this way.",
    ),
    "frustrated": (
        ("frustrated", "can't", "cannot", "hard", "difficult", "give up"),
        "encouragement",
        "Practicing can feel hard sometimes. Every try helps, and you're making progress.",
    ),
    "angry": (
        ("angry", "mad", "hate", "annoyed"),
        "validation",
        "It makes sense to feel annoyed. Let's pause for a moment and talk about what happened.",
    ),
    "lonely": (
        ("lonely", "alone", "nobody", "no one"),
        "companionship",
        "You're not alone right now. I'm glad you're talking to me.",
    ),
    "happy": (
        ("happy", "great", "excited", "proud", "good", "did it"),
        "celebration",
        "That's wonderful! I'm really proud of you for sharing that.",
    ),
}

_TONE_HINTS = {
    "shaky": "anxious",
    "trembling": "anxious",
    "quiet": "sad",
    "loud": "angry",
    "cheerful": "happy",
}


class MockEmotionClient(EmotionClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-emotion-1")

    async def analyze(self, message: str, voice_tone: Optional[str] = None, request_id: Optional[str] = None) -> dict:
        text = (message or "").lower()
        # First matching emotion in lexicon order wins; voice tone only breaks ties with neutral
        for emotion, (cues, support, reply) in _LEXICON.items():
            if any(cue in text for cue in cues):
                return normalize_analysis({"response": reply, "emotion": emotion, "confidence": 0.72, "supportType": support})
        hinted = _TONE_HINTS.get((voice_tone or "").strip().lower())
        if hinted:
            _, support, reply = _LEXICON[hinted]
            return normalize_analysis({"response": reply, "emotion": hinted, "confidence": 0.45, "supportType": support})
        return normalize_analysis({
            "response": "Thanks for sharing. Tell me more about how your practice is going.",
            "emotion": "neutral",
            "confidence": 0.3,
            "supportType": "general",
        })
