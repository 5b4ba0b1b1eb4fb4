import copy
import uuid
from typing import Any, Dict, List, Optional

from .base import CredentialStore, DuplicateUserError, now_iso


class MemoryCredentialStore(CredentialStore):
    """Process-local store used in development and tests.

    Returns deep copies so callers cannot mutate stored documents in place.
    """

    backend_name: str = "memory"

    def __init__(self):
        self._users: Dict[str, Dict[str, Any]] = {}
        self._speech_sessions: Dict[str, Dict[str, Any]] = {}
        self._assessments: List[Dict[str, Any]] = []
        # insertion ordered; recency queries walk it backwards
        self._emotional_sessions: Dict[str, Dict[str, Any]] = {}

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = self._users.get(user_id)
        return copy.deepcopy(doc) if doc else None

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        needle = (email or "").strip().lower()
        for doc in self._users.values():
            if (doc.get("email") or "").lower() == needle:
                return copy.deepcopy(doc)
        return None

    async def create_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        user_id = doc.get("id") or str(uuid.uuid4())
        if user_id in self._users:
            raise DuplicateUserError(f"user {user_id} already exists")
        email = doc.get("email")
        if email and await self.get_user_by_email(email):
            raise DuplicateUserError("User with this email already exists")
        ts = now_iso()
        stored = dict(doc, id=user_id, createdAt=ts, updatedAt=ts)
        self._users[user_id] = stored
        return copy.deepcopy(stored)

    async def upsert_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        user_id = doc["id"]
        doc = dict(doc)
        if doc.get("email"):
            doc["email"] = doc["email"].strip().lower()
            holder = await self.get_user_by_email(doc["email"])
            if holder and holder["id"] != user_id:
                raise DuplicateUserError("User with this email already exists")
        ts = now_iso()
        existing = self._users.get(user_id)
        if existing is None:
            stored = dict(doc, createdAt=ts, updatedAt=ts)
        else:
            stored = dict(existing)
            stored.update({k: v for k, v in doc.items() if v is not None})
            stored["updatedAt"] = ts
        self._users[user_id] = stored
        return copy.deepcopy(stored)

    async def create_speech_session(self, user_id: str, session_type: Optional[str]) -> Dict[str, Any]:
        ts = now_iso()
        doc = {
            "id": str(uuid.uuid4()),
            "userId": user_id,
            "sessionType": session_type or "practice",
            "attempts": [],
            "createdAt": ts,
            "updatedAt": ts,
        }
        self._speech_sessions[doc["id"]] = doc
        return copy.deepcopy(doc)

    async def get_speech_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        doc = self._speech_sessions.get(session_id)
        return copy.deepcopy(doc) if doc else None

    async def add_speech_attempt(self, session_id: str, attempt: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        doc = self._speech_sessions.get(session_id)
        if doc is None:
            return None
        doc["attempts"].append(dict(attempt))
        doc["updatedAt"] = now_iso()
        return copy.deepcopy(doc)

    async def list_speech_sessions(self, user_id: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(d) for d in self._speech_sessions.values() if d["userId"] == user_id]

    async def save_assessment(self, user_id: str, assessment: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(assessment, id=str(uuid.uuid4()), userId=user_id, createdAt=now_iso())
        self._assessments.append(doc)
        return copy.deepcopy(doc)

    async def latest_assessment(self, user_id: str) -> Optional[Dict[str, Any]]:
        for doc in reversed(self._assessments):
            if doc["userId"] == user_id:
                return copy.deepcopy(doc)
        return None

    async def create_emotional_session(self, user_id: str, session_type: str = "chat") -> Dict[str, Any]:
        ts = now_iso()
        doc = {
            "id": str(uuid.uuid4()),
            "userId": user_id,
            "sessionType": session_type,
            "messages": [],
            "createdAt": ts,
            "updatedAt": ts,
        }
        self._emotional_sessions[doc["id"]] = doc
        return copy.deepcopy(doc)

    async def get_emotional_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        doc = self._emotional_sessions.get(session_id)
        return copy.deepcopy(doc) if doc else None

    async def add_message_to_emotional_session(self, session_id: str, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        doc = self._emotional_sessions.get(session_id)
        if doc is None:
            return None
        doc["messages"].append(dict(message, createdAt=message.get("createdAt") or now_iso()))
        doc["updatedAt"] = now_iso()
        return copy.deepcopy(doc)

    async def get_emotional_sessions(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for doc in reversed(list(self._emotional_sessions.values())):
            if doc["userId"] != user_id:
                continue
            out.append(copy.deepcopy(doc))
            if len(out) >= limit:
                break
        return out
