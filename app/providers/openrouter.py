import json
from typing import Optional, Dict, Any
import httpx

from .base import EmotionClient, EMOTIONS, SUPPORT_TYPES, normalize_analysis

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_MODEL = "openai/gpt-4o-mini"

SYSTEM_PROMPT = (
    "You are a warm, patient emotional-support companion inside a speech therapy app "
    "used by adults and children. Read the user's message (and optional voice tone), "
    "identify their dominant emotion, and write a short supportive reply (1-3 sentences, "
    "simple words, no diagnosis). Output strict JSON with keys: "
    "response (string), emotion (one of " + ", ".join(EMOTIONS) + "), "
    "confidence (float 0..1), supportType (one of " + ", ".join(SUPPORT_TYPES) + ")."
)


class OpenRouterEmotionClient(EmotionClient):
    provider_name: str = "openrouter"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        timeout: float = 30.0,
        referer: str = "http://localhost:5173",
        title: str = "Speech Bridge",
    ):
        super().__init__(model=model or DEFAULT_MODEL)
        if not (api_key or "").strip():
            raise RuntimeError("OPENROUTER_API_KEY is required for OpenRouter provider")
        self._api_key = api_key.strip()
        self._timeout = timeout
        # Origin metadata (optional but recommended by OpenRouter)
        self._referer = referer
        self._title = title

    @classmethod
    def from_settings(cls, settings, model: Optional[str] = None) -> "OpenRouterEmotionClient":
        return cls(
            settings.openrouter_api_key,
            model=model or settings.emotion_model or None,
            timeout=settings.http_timeout_seconds,
            referer=settings.public_app_origin,
            title=settings.openrouter_app_title,
        )

    async def analyze(self, message: str, voice_tone: Optional[str] = None, request_id: Optional[str] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": "speech-bridge-api/0.1.0",
            "HTTP-Referer": self._referer,
            "X-Title": self._title,
        }
        if request_id:
            headers["X-Request-Id"] = request_id
        user_prompt = f"message:\n{message}"
        if voice_tone:
            user_prompt += f"\nvoiceTone: {voice_tone}"
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0.4,
            # Prefer JSON if model supports it; benign for others
            "response_format": {"type": "json_object"},
        }

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(OPENROUTER_URL, headers=headers, json=payload)
            if resp.status_code >= 400:
                # Raise to let caller map to its error reply
                raise RuntimeError(f"OpenRouter emotion error {resp.status_code}: {resp.text}")
            data = resp.json()

        msg = (((data or {}).get("choices") or [{}])[0].get("message") or {})
        content_text = (msg.get("content") or "").strip()
        # Strip markdown JSON fences if present
        if content_text.startswith("```"):
            content_text = content_text.strip("`")
            if content_text.startswith("json"):
                content_text = content_text[len("json"):]
        try:
            obj = json.loads(content_text)
        except ValueError:
            # Model ignored the JSON instruction; keep its text as the reply
            return normalize_analysis({"response": content_text, "confidence": 0.0}, fallback_response=content_text)
        if not isinstance(obj, dict):
            return normalize_analysis({}, fallback_response=str(obj))
        return normalize_analysis(obj)
