from typing import Any, Dict, Optional

from fastapi import Request, WebSocket

from app.middleware.session import get_session
from app.storage.base import CredentialStore, public_user

from .identity import Principal

BEARER_PREFIX = "Bearer "


def bearer_from_header(value: Optional[str]) -> Optional[str]:
    """Strip the ``Bearer `` prefix; anything else yields None."""
    if not value or not value.startswith(BEARER_PREFIX):
        return None
    token = value[len(BEARER_PREFIX):].strip()
    return token or None


def websocket_token(websocket: WebSocket) -> Optional[str]:
    """Handshake token: ``?token=`` first, then the Authorization header."""
    token = (websocket.query_params.get("token") or "").strip()
    if token:
        return token
    return bearer_from_header(websocket.headers.get("authorization"))


class TokenResolver:
    """Resolves callers from sessions and bearer tokens.

    Bearer tokens are user ids: a token resolves iff a user with that id
    exists in the credential store. Unknown ids resolve to None. Store errors
    propagate to the caller.
    """

    def __init__(self, store: CredentialStore):
        self.store = store

    async def resolve_token(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        return public_user(await self.store.get_user(token))

    def session_principal(self, request: Request) -> Optional[Principal]:
        session = get_session(request)
        auth_user = session.get("auth_user")
        if isinstance(auth_user, dict):
            principal = Principal.from_session_record(auth_user, "session")
            if principal:
                return principal
        dev_user = session.get("user")
        if isinstance(dev_user, dict):
            return Principal.from_session_record(dev_user, "dev_session")
        return None

    async def resolve_http(self, request: Request) -> Optional[Principal]:
        principal = self.session_principal(request)
        if principal:
            return principal
        token = bearer_from_header(request.headers.get("authorization"))
        user = await self.resolve_token(token)
        if user is None:
            return None
        return Principal(id=user["id"], source="bearer", record={"id": user["id"], "claims": {"sub": user["id"]}}, user=user)
