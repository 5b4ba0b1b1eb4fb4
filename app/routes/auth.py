import json
import logging
import secrets
import time
from typing import Any, Dict
from urllib.parse import unquote

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from app.auth.identity import MOCK_USER, dashboard_url, mock_user
from app.auth.oidc import OidcError, apply_tokens, new_code_verifier, new_nonce
from app.errors import AuthenticationFailure, NotFound, UpstreamFailure, ValidationFailure
from app.middleware.session import get_session
from app.storage.base import DuplicateUserError, public_user

from .common import json_body, upstream_guard

logger = logging.getLogger("speechbridge.api.auth")

router = APIRouter()

_REDACTED_KEYS = ("access_token", "refresh_token", "verifier", "nonce")


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: ("[redacted]" if k in _REDACTED_KEYS else _redact(v)) for k, v in value.items()}
    return value


def _session_principal_record(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": user["id"], "claims": {"sub": user["id"]}}


@router.get("/api/auth/user", tags=["auth"], description="Current identity from the session or a bearer token.")
async def auth_user(request: Request):
    state = request.app.state
    if state.settings.is_development:
        # Development always answers; the mock user stands in when nothing resolves
        try:
            principal = await state.resolver.resolve_http(request)
            if principal:
                user = principal.user or await state.store.get_user(principal.id)
                if user:
                    return public_user(user)
            logger.info(json.dumps({"event": "auth_user_mock"}))
        except Exception as e:
            logger.warning(json.dumps({"event": "auth_user_store_unavailable", "error": type(e).__name__}))
        return mock_user()

    async with upstream_guard(request, "auth_user_error", "Failed to fetch user"):
        principal = await state.resolver.resolve_http(request)
        if principal is None:
            raise AuthenticationFailure("User ID not found in session")
        user = principal.user or await state.store.get_user(principal.id)
        if not user:
            raise NotFound("User not found in database")
        return public_user(user)


@router.post("/api/auth/login", tags=["auth"], description="Local email/password login.")
async def auth_login(request: Request):
    payload = await json_body(request)
    email = payload.get("email")
    password = payload.get("password")
    if not email or not password:
        raise ValidationFailure("Email and password are required")

    async with upstream_guard(request, "login_error", "Login failed"):
        user = await request.app.state.auth_service.login(email, password)

    session = get_session(request)
    session.regenerate()
    session["user"] = _session_principal_record(user)
    logger.info(json.dumps({"event": "user_login", "userId": user["id"], "userType": user.get("userType")}))
    return {"success": True, "user": user, "authToken": user["id"]}


@router.post("/api/auth/signup", tags=["auth"], description="Local signup; also opens a session.")
async def auth_signup(request: Request):
    try:
        payload = await json_body(request)
        async with upstream_guard(request, "signup_error", "Signup failed"):
            user = await request.app.state.auth_service.signup(payload)
    except ValidationFailure as e:
        raise ValidationFailure(e.message, extra={"success": False}) from e

    session = get_session(request)
    session.regenerate()
    session["user"] = _session_principal_record(user)
    return {"success": True, "user": user, "authToken": user["id"]}


@router.get("/api/auth/session", tags=["auth"], description="Debug view of the current session.")
async def auth_session(request: Request):
    session = get_session(request)
    principal = request.app.state.resolver.session_principal(request)
    return {
        "session": _redact(dict(session)),
        "user": _redact(principal.record) if principal else None,
        "isAuthenticated": principal is not None,
    }


@router.get("/api/logout", tags=["auth"], description="Destroy the current session.")
async def logout(request: Request):
    get_session(request).destroy()
    return {"success": True, "message": "Logged out successfully"}


@router.get("/api/login", tags=["auth"], description="Development: mock login. Production: redirect to the OIDC provider.")
async def login(request: Request):
    if request.app.state.settings.is_development:
        return await _mock_login(request)
    return await _oidc_login(request)


@router.get("/api/callback", tags=["auth"], description="OIDC redirect target.")
async def callback(request: Request):
    if request.app.state.settings.is_development:
        return RedirectResponse("/", status_code=302)
    return await _oidc_callback(request)


async def _mock_login(request: Request) -> RedirectResponse:
    user_data: Dict[str, Any] = dict(MOCK_USER)
    signup_data = request.query_params.get("signupData")
    if signup_data:
        try:
            parsed = json.loads(unquote(signup_data))
            if not isinstance(parsed, dict):
                raise ValueError("signupData must be an object")
            user_data = {
                "id": f"user-{int(time.time() * 1000)}",
                "email": parsed.get("email") or MOCK_USER["email"],
                "firstName": parsed.get("firstName") or MOCK_USER["firstName"],
                "lastName": parsed.get("lastName") or MOCK_USER["lastName"],
                "profileImageUrl": MOCK_USER["profileImageUrl"],
                "userType": parsed.get("userType") or MOCK_USER["userType"],
                "language": parsed.get("language") or MOCK_USER["language"],
            }
        except ValueError:
            logger.info(json.dumps({"event": "mock_login_bad_signup_data"}))

    try:
        await request.app.state.store.upsert_user(user_data)
    except Exception as e:
        logger.warning(json.dumps({"event": "mock_login_store_unavailable", "error": type(e).__name__}))

    session = get_session(request)
    session.regenerate()
    session["auth_user"] = dict(user_data, claims={"sub": user_data["id"]})
    logger.info(json.dumps({"event": "mock_login", "userId": user_data["id"], "userType": user_data["userType"]}))
    return RedirectResponse(dashboard_url(user_data["userType"]), status_code=302)


def _callback_url(request: Request) -> str:
    domains = request.app.state.settings.domains
    host = domains[0] if domains else (request.url.hostname or "localhost")
    return f"https://{host}/api/callback"


async def _oidc_login(request: Request) -> RedirectResponse:
    oidc = request.app.state.oidc
    redirect_uri = _callback_url(request)
    state = secrets.token_urlsafe(24)
    verifier = new_code_verifier()
    nonce = new_nonce()
    try:
        url = await oidc.authorization_url(redirect_uri, state, verifier, nonce=nonce)
    except OidcError as e:
        logger.error(json.dumps({"event": "oidc_login_unavailable", "error": str(e)}))
        raise UpstreamFailure("Login unavailable") from e
    get_session(request)["oidc"] = {
        "state": state,
        "verifier": verifier,
        "nonce": nonce,
        "redirect_uri": redirect_uri,
    }
    return RedirectResponse(url, status_code=302)


async def _oidc_callback(request: Request) -> RedirectResponse:
    session = get_session(request)
    pending = session.pop("oidc", None)
    code = request.query_params.get("code")
    state = request.query_params.get("state")
    if not isinstance(pending, dict) or not code or state != pending.get("state"):
        raise AuthenticationFailure("Invalid login callback")
    try:
        tokens = await request.app.state.oidc.exchange_code(
            code, pending["redirect_uri"], pending["verifier"], nonce=pending.get("nonce")
        )
    except OidcError as e:
        logger.warning(json.dumps({"event": "oidc_callback_failed", "error": str(e)}))
        raise AuthenticationFailure("Login failed") from e
    claims = tokens.claims
    if not claims.get("sub"):
        raise AuthenticationFailure("Login failed")

    async with upstream_guard(request, "oidc_upsert_error", "Login failed"):
        try:
            user = await request.app.state.store.upsert_user({
                "id": str(claims["sub"]),
                "email": claims.get("email"),
                "firstName": claims.get("first_name"),
                "lastName": claims.get("last_name"),
                "profileImageUrl": claims.get("profile_image_url"),
            })
        except DuplicateUserError as e:
            logger.warning(json.dumps({"event": "oidc_email_conflict", "userId": str(claims["sub"])}))
            raise AuthenticationFailure("An account with this email already exists") from e

    record = apply_tokens({"id": str(claims["sub"])}, tokens)
    session.regenerate()
    session["auth_user"] = record
    logger.info(json.dumps({"event": "oidc_login", "userId": record["id"]}))
    return RedirectResponse(dashboard_url((user or {}).get("userType")), status_code=302)
