from __future__ import annotations

import abc
import copy
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple


class SessionStore(abc.ABC):
    """Server-side storage for HTTP session records (session id -> JSON dict)."""

    backend_name: str = "unknown"

    @abc.abstractmethod
    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def set(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        ...

    @abc.abstractmethod
    async def destroy(self, session_id: str) -> None:
        ...

    async def close(self) -> None:
        return None


class MemorySessionStore(SessionStore):
    backend_name: str = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        rec = self._records.get(session_id)
        if rec is None:
            return None
        expires_at, data = rec
        if self._clock() >= expires_at:
            self._records.pop(session_id, None)
            return None
        return copy.deepcopy(data)

    async def set(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        self._records[session_id] = (self._clock() + ttl_seconds, copy.deepcopy(data))
        self._prune()

    async def destroy(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._records)

    def _prune(self) -> None:
        now = self._clock()
        stale = [sid for sid, (exp, _) in self._records.items() if now >= exp]
        for sid in stale:
            self._records.pop(sid, None)


class MongoSessionStore(SessionStore):
    """Sessions collection with a TTL index on ``expiresAt``.

    Expiry is also checked on read since the TTL monitor runs only periodically.
    """

    backend_name: str = "mongo"

    def __init__(self, database_url: str, database_name: str, collection: str = "sessions"):
        from motor.motor_asyncio import AsyncIOMotorClient

        self._client = AsyncIOMotorClient(database_url)
        self._coll = self._client[database_name][collection]
        self._index_ready = False

    async def _ensure_index(self) -> None:
        if self._index_ready:
            return
        await self._coll.create_index("expiresAt", expireAfterSeconds=0)
        self._index_ready = True

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._coll.find_one({"_id": session_id})
        if not doc:
            return None
        expires_at = doc.get("expiresAt")
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= datetime.now(timezone.utc):
                return None
        return doc.get("data") or {}

    async def set(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        await self._ensure_index()
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        await self._coll.replace_one(
            {"_id": session_id},
            {"_id": session_id, "data": data, "expiresAt": expires_at},
            upsert=True,
        )

    async def destroy(self, session_id: str) -> None:
        await self._coll.delete_one({"_id": session_id})

    async def close(self) -> None:
        self._client.close()


def get_session_store(settings) -> SessionStore:
    if settings.database_url:
        return MongoSessionStore(settings.database_url, settings.database_name)
    return MemorySessionStore()
