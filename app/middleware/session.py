import json
import logging
import secrets
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from itsdangerous import BadSignature, TimestampSigner
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.config import Settings
from app.sessions.store import SessionStore

logger = logging.getLogger("speechbridge.session")


class Session(dict):
    """Session data for one request, tracking whether it needs saving.

    Nested mutations are not observed; call ``touch()`` after changing a
    value in place.
    """

    def __init__(self, session_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        super().__init__(data or {})
        self.session_id = session_id
        self.modified = False
        self.destroyed = False
        self.stale_id: Optional[str] = None

    def __setitem__(self, key, value):
        self.modified = True
        super().__setitem__(key, value)

    def __delitem__(self, key):
        self.modified = True
        super().__delitem__(key)

    def pop(self, key, *default):
        self.modified = True
        return super().pop(key, *default)

    def update(self, *args, **kwargs):
        self.modified = True
        super().update(*args, **kwargs)

    def clear(self):
        self.modified = True
        super().clear()

    def touch(self) -> None:
        self.modified = True

    def regenerate(self) -> None:
        """Issue a fresh session id on the next save, dropping the current record."""
        if self.session_id:
            self.stale_id = self.session_id
        self.session_id = None
        self.modified = True

    def destroy(self) -> None:
        super().clear()
        self.destroyed = True


def get_session(request: Request) -> Session:
    session = getattr(request.state, "session", None)
    if session is None:
        session = Session()
        request.state.session = session
    return session


class SessionMiddleware(BaseHTTPMiddleware):
    """Server-side sessions behind a signed cookie.

    The cookie holds only the signed session id; the record lives in the
    SessionStore. Sessions are saved only when modified and removed from the
    store when destroyed.
    """

    def __init__(self, app: ASGIApp, settings: Settings, store: SessionStore):
        super().__init__(app)
        self.settings = settings
        self.store = store
        self.signer = TimestampSigner(settings.session_secret)

    def _unsign(self, cookie: str) -> Optional[str]:
        try:
            return self.signer.unsign(cookie, max_age=self.settings.session_ttl_seconds).decode("utf-8")
        except BadSignature:
            return None

    async def dispatch(self, request: Request, call_next: Callable):
        name = self.settings.session_cookie_name
        session_id: Optional[str] = None
        data: Optional[Dict[str, Any]] = None
        cookie = request.cookies.get(name)
        if cookie:
            session_id = self._unsign(cookie)
            if session_id:
                data = await self.store.get(session_id)
            if data is None:
                session_id = None
        session = Session(session_id, data)
        request.state.session = session

        response = await call_next(request)

        if session.stale_id:
            await self.store.destroy(session.stale_id)
        if session.destroyed:
            if session.session_id:
                await self.store.destroy(session.session_id)
            response.delete_cookie(name, path="/", httponly=True, secure=self.settings.cookie_secure)
            logger.info(json.dumps({"event": "session_destroyed", "path": request.url.path}))
        elif session.modified:
            if not session:
                if session.session_id:
                    await self.store.destroy(session.session_id)
                response.delete_cookie(name, path="/", httponly=True, secure=self.settings.cookie_secure)
            else:
                sid = session.session_id or secrets.token_urlsafe(32)
                await self.store.set(sid, dict(session), self.settings.session_ttl_seconds)
                response.set_cookie(
                    name,
                    self.signer.sign(sid).decode("utf-8"),
                    max_age=self.settings.session_ttl_seconds,
                    path="/",
                    httponly=True,
                    secure=self.settings.cookie_secure,
                    samesite="lax",
                )
        return response
