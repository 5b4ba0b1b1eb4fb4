import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .base import CredentialStore, DuplicateUserError, now_iso

logger = logging.getLogger("speechbridge.storage")

_NO_ID = {"_id": 0}


class MongoCredentialStore(CredentialStore):
    """MongoDB-backed store (motor).

    Collections: users, speech_sessions, assessments, emotional_sessions.
    Appends use ``$push`` through ``find_one_and_update`` so each write is a
    single atomic document update.
    """

    backend_name: str = "mongo"

    def __init__(self, database_url: str, database_name: str, client: Optional[AsyncIOMotorClient] = None):
        if not database_url and client is None:
            raise ValueError("database_url is required for the MongoDB store")
        self._client = client or AsyncIOMotorClient(database_url)
        db = self._client[database_name]
        self._users = db["users"]
        self._speech_sessions = db["speech_sessions"]
        self._assessments = db["assessments"]
        self._emotional_sessions = db["emotional_sessions"]
        self._indexes_ready = False
        self._index_lock = asyncio.Lock()

    async def _ensure_indexes(self) -> None:
        if self._indexes_ready:
            return
        async with self._index_lock:
            if self._indexes_ready:
                return
            await self._users.create_index([("id", ASCENDING)], unique=True)
            await self._users.create_index([("email", ASCENDING)], unique=True, sparse=True)
            await self._speech_sessions.create_index([("id", ASCENDING)], unique=True)
            await self._speech_sessions.create_index([("userId", ASCENDING)])
            await self._assessments.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
            await self._emotional_sessions.create_index([("id", ASCENDING)], unique=True)
            await self._emotional_sessions.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
            self._indexes_ready = True
            logger.info(json.dumps({"event": "mongo_indexes_ready"}))

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self._users.find_one({"id": user_id}, _NO_ID)

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self._users.find_one({"email": (email or "").strip().lower()}, _NO_ID)

    async def create_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        await self._ensure_indexes()
        ts = now_iso()
        stored = dict(doc, id=doc.get("id") or str(uuid.uuid4()), createdAt=ts, updatedAt=ts)
        if stored.get("email"):
            stored["email"] = stored["email"].strip().lower()
        try:
            await self._users.insert_one(dict(stored))
        except DuplicateKeyError as e:
            raise DuplicateUserError("User with this email already exists") from e
        return stored

    async def upsert_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        await self._ensure_indexes()
        ts = now_iso()
        fields = {k: v for k, v in doc.items() if v is not None and k not in ("createdAt", "updatedAt")}
        if fields.get("email"):
            fields["email"] = fields["email"].strip().lower()
        fields["updatedAt"] = ts
        try:
            return await self._users.find_one_and_update(
                {"id": doc["id"]},
                {"$set": fields, "$setOnInsert": {"createdAt": ts}},
                upsert=True,
                projection=_NO_ID,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise DuplicateUserError("User with this email already exists") from e

    async def create_speech_session(self, user_id: str, session_type: Optional[str]) -> Dict[str, Any]:
        await self._ensure_indexes()
        ts = now_iso()
        doc = {
            "id": str(uuid.uuid4()),
            "userId": user_id,
            "sessionType": session_type or "practice",
            "attempts": [],
            "createdAt": ts,
            "updatedAt": ts,
        }
        await self._speech_sessions.insert_one(dict(doc))
        return doc

    async def get_speech_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self._speech_sessions.find_one({"id": session_id}, _NO_ID)

    async def add_speech_attempt(self, session_id: str, attempt: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._speech_sessions.find_one_and_update(
            {"id": session_id},
            {"$push": {"attempts": attempt}, "$set": {"updatedAt": now_iso()}},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )

    async def list_speech_sessions(self, user_id: str) -> List[Dict[str, Any]]:
        cursor = self._speech_sessions.find({"userId": user_id}, _NO_ID).sort("createdAt", ASCENDING)
        return await cursor.to_list(length=None)

    async def save_assessment(self, user_id: str, assessment: Dict[str, Any]) -> Dict[str, Any]:
        await self._ensure_indexes()
        doc = dict(assessment, id=str(uuid.uuid4()), userId=user_id, createdAt=now_iso())
        await self._assessments.insert_one(dict(doc))
        return doc

    async def latest_assessment(self, user_id: str) -> Optional[Dict[str, Any]]:
        cursor = self._assessments.find({"userId": user_id}, _NO_ID).sort("createdAt", DESCENDING).limit(1)
        docs = await cursor.to_list(length=1)
        return docs[0] if docs else None

    async def create_emotional_session(self, user_id: str, session_type: str = "chat") -> Dict[str, Any]:
        await self._ensure_indexes()
        ts = now_iso()
        doc = {
            "id": str(uuid.uuid4()),
            "userId": user_id,
            "sessionType": session_type,
            "messages": [],
            "createdAt": ts,
            "updatedAt": ts,
        }
        await self._emotional_sessions.insert_one(dict(doc))
        return doc

    async def get_emotional_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self._emotional_sessions.find_one({"id": session_id}, _NO_ID)

    async def add_message_to_emotional_session(self, session_id: str, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ts = now_iso()
        entry = dict(message, createdAt=message.get("createdAt") or ts)
        return await self._emotional_sessions.find_one_and_update(
            {"id": session_id},
            {"$push": {"messages": entry}, "$set": {"updatedAt": ts}},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )

    async def get_emotional_sessions(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        cursor = self._emotional_sessions.find({"userId": user_id}, _NO_ID).sort("createdAt", DESCENDING).limit(limit)
        return await cursor.to_list(length=limit)

    async def close(self) -> None:
        self._client.close()
