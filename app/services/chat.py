import json
import logging
import time
from typing import Any, Dict, Optional

from app.metrics import EMOTION_ANALYSIS_SECONDS
from app.providers.base import EmotionClient
from app.storage.base import CredentialStore

logger = logging.getLogger("speechbridge.chat")


class ChatService:
    """Emotion analysis plus persistence of the exchange to an emotional session."""

    def __init__(self, store: CredentialStore, emotion_client: EmotionClient):
        self.store = store
        self.emotion_client = emotion_client

    async def analyze(self, message: str, voice_tone: Optional[str] = None, request_id: Optional[str] = None) -> Dict[str, Any]:
        t0 = time.perf_counter()
        try:
            return await self.emotion_client.analyze(message, voice_tone=voice_tone, request_id=request_id)
        finally:
            EMOTION_ANALYSIS_SECONDS.labels(provider=self.emotion_client.provider_name).observe(time.perf_counter() - t0)

    async def respond(
        self,
        session_id: Optional[str],
        message: str,
        voice_tone: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Analyze ``message`` and, when ``session_id`` is given, append both turns to that session."""
        analysis = await self.analyze(message, voice_tone=voice_tone, request_id=request_id)
        if session_id:
            await self.store.add_message_to_emotional_session(session_id, {"role": "user", "content": message})
            await self.store.add_message_to_emotional_session(session_id, {"role": "assistant", "content": analysis["response"]})
            logger.info(json.dumps({
                "event": "chat_exchange_saved",
                "sessionId": session_id,
                "emotion": analysis["emotion"],
                "requestId": request_id,
            }))
        return analysis
