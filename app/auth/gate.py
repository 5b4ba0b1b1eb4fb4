import json
import logging
import time
from typing import Callable, Optional

from fastapi import Request

from app.config import Settings
from app.errors import AuthenticationFailure
from app.metrics import AUTH_GATE_TOTAL, OIDC_REFRESH_TOTAL
from app.middleware.session import get_session

from .identity import Principal
from .oidc import OidcClient, apply_tokens
from .resolver import TokenResolver

logger = logging.getLogger("speechbridge.auth.gate")


class AuthGate:
    """Guard for protected routes.

    development: any identity the resolver finds (login principal, local
    login session object, bearer token) is admitted.

    production: requires the OIDC login principal with an ``expires_at``.
    Expired principals get exactly one refresh-token grant; the refreshed
    tokens are written back to the session, never to the credential store.
    """

    def __init__(
        self,
        settings: Settings,
        resolver: TokenResolver,
        oidc: Optional[OidcClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.resolver = resolver
        self.oidc = oidc
        self._clock = clock

    async def __call__(self, request: Request) -> Principal:
        if self.settings.is_development:
            return await self._admit_development(request)
        return await self._admit_production(request)

    def _reject(self, mode: str, reason: str, message: str) -> AuthenticationFailure:
        AUTH_GATE_TOTAL.labels(mode=mode, outcome=reason).inc()
        logger.info(json.dumps({"event": "auth_gate_reject", "mode": mode, "reason": reason}))
        return AuthenticationFailure(message)

    async def _admit_development(self, request: Request) -> Principal:
        principal = await self.resolver.resolve_http(request)
        if principal is None:
            raise self._reject("development", "no_session", "Unauthorized - No valid session found")
        AUTH_GATE_TOTAL.labels(mode="development", outcome="admit").inc()
        return principal

    async def _admit_production(self, request: Request) -> Principal:
        session = get_session(request)
        record = session.get("auth_user")
        principal = Principal.from_session_record(record, "session") if isinstance(record, dict) else None
        if principal is None:
            raise self._reject("production", "not_authenticated", "Unauthorized - Not authenticated")
        expires_at = record.get("expires_at")
        if not expires_at:
            raise self._reject("production", "invalid_user", "Unauthorized - Invalid user data")

        now = int(self._clock())
        if now <= int(expires_at):
            AUTH_GATE_TOTAL.labels(mode="production", outcome="admit").inc()
            return principal

        refresh_token = record.get("refresh_token")
        if not refresh_token or self.oidc is None:
            raise self._reject("production", "expired", "Unauthorized")
        try:
            tokens = await self.oidc.refresh(refresh_token)
        except Exception as e:
            OIDC_REFRESH_TOTAL.labels(outcome="error").inc()
            logger.warning(json.dumps({
                "event": "oidc_refresh_failed",
                "userId": principal.id,
                "error": type(e).__name__,
            }))
            raise self._reject("production", "refresh_failed", "Unauthorized")

        OIDC_REFRESH_TOTAL.labels(outcome="ok").inc()
        apply_tokens(record, tokens, now=now)
        session["auth_user"] = record
        AUTH_GATE_TOTAL.labels(mode="production", outcome="refreshed").inc()
        return Principal.from_session_record(record, "session") or principal


async def require_auth(request: Request) -> Principal:
    """FastAPI dependency running the app's auth gate."""
    gate: AuthGate = request.app.state.auth_gate
    return await gate(request)
