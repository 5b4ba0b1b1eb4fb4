from __future__ import annotations

import abc
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Fields that never leave the store layer through the public user shape
PRIVATE_USER_FIELDS = ("passwordHash", "_id")


class DuplicateUserError(Exception):
    """Raised when creating a user whose id or email already exists."""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def public_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k not in PRIVATE_USER_FIELDS}


class CredentialStore(abc.ABC):
    """Persistence for users, speech sessions, assessments and emotional (chat) sessions.

    Documents are plain dicts with camelCase keys. Every method is a single
    document operation; implementations provide per-document atomicity.
    """

    backend_name: str = "unknown"

    # users
    @abc.abstractmethod
    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def create_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def upsert_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or merge by ``id``; raises DuplicateUserError when the email belongs to another user."""
        ...

    # speech practice
    @abc.abstractmethod
    async def create_speech_session(self, user_id: str, session_type: Optional[str]) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def get_speech_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def add_speech_attempt(self, session_id: str, attempt: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def list_speech_sessions(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def save_assessment(self, user_id: str, assessment: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def latest_assessment(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    # emotional support
    @abc.abstractmethod
    async def create_emotional_session(self, user_id: str, session_type: str = "chat") -> Dict[str, Any]:
        ...

    @abc.abstractmethod
    async def get_emotional_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def add_message_to_emotional_session(self, session_id: str, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def get_emotional_sessions(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent first."""
        ...

    async def close(self) -> None:
        return None
