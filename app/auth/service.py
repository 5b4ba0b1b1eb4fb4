import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional

import bcrypt

from app.errors import AuthenticationFailure, ValidationFailure
from app.storage.base import CredentialStore, DuplicateUserError, public_user

from .identity import USER_TYPES

logger = logging.getLogger("speechbridge.auth")

SIGNUP_FIELDS = ("firstName", "lastName", "email", "password", "userType", "language")


class AuthService:
    """Local email/password accounts backed by the credential store.

    Password hashing runs in a worker thread so bcrypt does not stall the
    event loop.
    """

    def __init__(self, store: CredentialStore, rounds: int = 12):
        self.store = store
        self.rounds = rounds

    def _hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    @staticmethod
    def _check(password: str, password_hash: Optional[str]) -> bool:
        if not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    async def signup(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if any(not data.get(k) for k in SIGNUP_FIELDS):
            raise ValidationFailure("All fields are required")
        user_type = str(data["userType"]).lower()
        if user_type not in USER_TYPES:
            raise ValidationFailure(f"userType must be one of {', '.join(USER_TYPES)}")
        email = str(data["email"]).strip().lower()
        if "@" not in email:
            raise ValidationFailure("A valid email is required")
        if await self.store.get_user_by_email(email):
            raise ValidationFailure("User with this email already exists")

        password_hash = await asyncio.to_thread(self._hash, str(data["password"]))
        doc = {
            "id": str(uuid.uuid4()),
            "email": email,
            "firstName": str(data["firstName"]).strip(),
            "lastName": str(data["lastName"]).strip(),
            "profileImageUrl": data.get("profileImageUrl"),
            "userType": user_type,
            "language": str(data["language"]).strip().lower(),
            "passwordHash": password_hash,
        }
        try:
            created = await self.store.create_user(doc)
        except DuplicateUserError as e:
            raise ValidationFailure("User with this email already exists") from e
        logger.info(json.dumps({"event": "user_signup", "userId": created["id"], "userType": user_type}))
        return public_user(created)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        user = await self.store.get_user_by_email(str(email).strip().lower())
        ok = user is not None and await asyncio.to_thread(self._check, str(password), user.get("passwordHash"))
        if not ok:
            raise AuthenticationFailure("Invalid email or password")
        return public_user(user)
