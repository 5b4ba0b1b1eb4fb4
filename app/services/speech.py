import json
import logging
import re
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional

from app.errors import NotFound, ValidationFailure
from app.storage.base import CredentialStore, now_iso

logger = logging.getLogger("speechbridge.speech")

CORRECT_THRESHOLD = 80
_PUNCT = re.compile(r"[^\w\s']+", re.UNICODE)
_SPACES = re.compile(r"\s+")


def _normalize(text: Optional[str]) -> str:
    text = _PUNCT.sub(" ", (text or "").lower())
    return _SPACES.sub(" ", text).strip()


def score_pronunciation(target: str, transcription: Optional[str]) -> int:
    """0-100 similarity between the target word/phrase and what was heard."""
    expected = _normalize(target)
    heard = _normalize(transcription)
    if not expected or not heard:
        return 0
    if expected == heard:
        return 100
    return int(round(SequenceMatcher(None, expected, heard).ratio() * 100))


def feedback_for(accuracy: int, word: str) -> str:
    if accuracy >= 90:
        return f"Excellent! You said \"{word}\" clearly."
    if accuracy >= 70:
        return f"Good job! \"{word}\" was almost perfect, try once more."
    if accuracy >= 40:
        return f"Nice try. Listen to \"{word}\" again and say it slowly."
    return f"Let's practice \"{word}\" together, one sound at a time."


def level_for(accuracy: float) -> str:
    if accuracy >= 85:
        return "advanced"
    if accuracy >= 60:
        return "intermediate"
    return "beginner"


def _item_score(item: Dict[str, Any]) -> Optional[int]:
    if item.get("accuracy") is not None:
        try:
            return int(max(0.0, min(100.0, float(item["accuracy"]))))
        except (TypeError, ValueError):
            return None
    if isinstance(item.get("correct"), bool):
        return 100 if item["correct"] else 0
    if item.get("word") and item.get("userTranscription") is not None:
        return score_pronunciation(item["word"], item["userTranscription"])
    return None


class SpeechService:
    def __init__(self, store: CredentialStore):
        self.store = store

    async def record_attempt(
        self,
        session_id: Optional[str],
        word: Optional[str],
        phonetic: str,
        user_transcription: Optional[str],
        language: Optional[str],
        user_audio: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not session_id or not word:
            raise ValidationFailure("sessionId and word are required")
        session = await self.store.get_speech_session(session_id)
        if session is None or (user_id and session.get("userId") != user_id):
            raise NotFound("Speech session not found")

        accuracy = score_pronunciation(word, user_transcription)
        attempt = {
            "word": word,
            "phonetic": phonetic or "",
            "userTranscription": user_transcription or "",
            "language": language or "english",
            "accuracy": accuracy,
            "feedback": feedback_for(accuracy, word),
            "hasAudio": bool(user_audio),
            "createdAt": now_iso(),
        }
        updated = await self.store.add_speech_attempt(session_id, attempt)
        if updated is None:
            raise NotFound("Speech session not found")
        logger.info(json.dumps({
            "event": "speech_attempt_recorded",
            "sessionId": session_id,
            "accuracy": accuracy,
        }))
        return {
            "sessionId": session_id,
            "word": word,
            "accuracy": accuracy,
            "isCorrect": accuracy >= CORRECT_THRESHOLD,
            "feedback": attempt["feedback"],
            "attemptNumber": len(updated.get("attempts") or []),
        }

    async def conduct_assessment(self, user_id: str, assessment_results: Any) -> Dict[str, Any]:
        if not isinstance(assessment_results, list) or not assessment_results:
            raise ValidationFailure("assessmentResults must be a non-empty list")
        scored: List[Dict[str, Any]] = []
        for item in assessment_results:
            if not isinstance(item, dict):
                continue
            score = _item_score(item)
            if score is None:
                continue
            scored.append({"word": str(item.get("word") or ""), "score": score})
        if not scored:
            raise ValidationFailure("assessmentResults contained no scorable items")

        overall = round(sum(s["score"] for s in scored) / len(scored), 1)
        focus = sorted((s for s in scored if s["score"] < 60), key=lambda s: s["score"])
        assessment = {
            "overallAccuracy": overall,
            "level": level_for(overall),
            "strengths": [s["word"] for s in scored if s["score"] >= CORRECT_THRESHOLD and s["word"]],
            "focusWords": [s["word"] for s in focus[:5] if s["word"]],
            "totalItems": len(scored),
        }
        saved = await self.store.save_assessment(user_id, assessment)
        logger.info(json.dumps({
            "event": "speech_assessment_saved",
            "userId": user_id,
            "level": assessment["level"],
            "overallAccuracy": overall,
        }))
        return saved

    async def get_user_progress(self, user_id: str) -> Dict[str, Any]:
        sessions = await self.store.list_speech_sessions(user_id)
        attempts = [a for s in sessions for a in (s.get("attempts") or [])]
        accuracies = [a.get("accuracy", 0) for a in attempts]
        words = {(a.get("word") or "").lower() for a in attempts if a.get("word")}
        mastered = {
            (a.get("word") or "").lower()
            for a in attempts
            if a.get("word") and a.get("accuracy", 0) >= CORRECT_THRESHOLD
        }
        return {
            "userId": user_id,
            "totalSessions": len(sessions),
            "totalAttempts": len(attempts),
            "averageAccuracy": round(sum(accuracies) / len(accuracies), 1) if accuracies else 0,
            "wordsPracticed": len(words),
            "wordsMastered": len(mastered),
            "recentAttempts": attempts[-10:],
            "latestAssessment": await self.store.latest_assessment(user_id),
        }
