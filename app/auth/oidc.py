"""OpenID Connect client for the production login flow.

Built on authlib's httpx OAuth2 client: authorization-code grant with PKCE
(S256) and a nonce, plus the refresh-token grant the auth gate uses when a
session's tokens have expired. Provider metadata and the provider's JWKS are
each cached for ``oidc_discovery_ttl_seconds``.

ID tokens are verified against the JWKS: signature, issuer, audience, expiry,
and the login nonce when one was sent.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.common.security import generate_token
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.jose import JsonWebKey, jwt
from authlib.oidc.core import CodeIDToken

from app.config import Settings

from .cache import TimedCache

logger = logging.getLogger("speechbridge.auth.oidc")

DEFAULT_SCOPE = "openid email profile offline_access"
# Clock skew tolerated on exp/iat
ID_TOKEN_LEEWAY = 120

_GRANT_ERRORS = (AuthlibBaseError, httpx.HTTPError, ValueError)


class OidcError(Exception):
    """Discovery, token exchange, refresh or ID-token verification failed."""


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: Optional[int] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def new_code_verifier() -> str:
    return generate_token(64)


def new_nonce() -> str:
    return generate_token(24)


def apply_tokens(record: Dict[str, Any], tokens: TokenSet, now: Optional[float] = None) -> Dict[str, Any]:
    """Copy a token response onto a session principal record.

    A refresh response without a new refresh token keeps the previous one.
    """
    if tokens.claims:
        record["claims"] = tokens.claims
    record["access_token"] = tokens.access_token
    if tokens.refresh_token:
        record["refresh_token"] = tokens.refresh_token
    exp = (tokens.claims or {}).get("exp")
    if exp is None and tokens.expires_in is not None:
        exp = int((now if now is not None else time.time()) + tokens.expires_in)
    record["expires_at"] = exp
    return record


class OidcClient:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self._transport = transport
        self._clock = clock
        self._metadata = TimedCache(settings.oidc_discovery_ttl_seconds)
        self._jwks = TimedCache(settings.oidc_discovery_ttl_seconds)

    def _client(self, redirect_uri: Optional[str] = None) -> AsyncOAuth2Client:
        kwargs: Dict[str, Any] = {"timeout": self.settings.http_timeout_seconds}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        # Public client: PKCE instead of a client secret
        return AsyncOAuth2Client(
            client_id=self.settings.client_id,
            scope=DEFAULT_SCOPE,
            redirect_uri=redirect_uri,
            token_endpoint_auth_method="none",
            code_challenge_method="S256",
            **kwargs,
        )

    async def _get_json(self, url: str, what: str) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.request("GET", url, withhold_token=True)
        except httpx.HTTPError as e:
            raise OidcError(f"{what} request failed: {type(e).__name__}") from e
        if resp.status_code >= 400:
            raise OidcError(f"{what} error {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise OidcError(f"{what} response is not JSON") from e

    async def _load_metadata(self) -> Dict[str, Any]:
        url = self.settings.issuer_url.rstrip("/") + "/.well-known/openid-configuration"
        doc = await self._get_json(url, "discovery")
        for key in ("authorization_endpoint", "token_endpoint", "jwks_uri"):
            if not doc.get(key):
                raise OidcError(f"discovery document missing {key}")
        logger.info(json.dumps({"event": "oidc_discovery_loaded", "issuer": doc.get("issuer")}))
        return doc

    async def discover(self) -> Dict[str, Any]:
        return await self._metadata.get_or_load(self.settings.issuer_url, self._load_metadata)

    async def _key_set(self, config: Dict[str, Any]):
        async def load():
            return JsonWebKey.import_key_set(await self._get_json(config["jwks_uri"], "jwks"))

        return await self._jwks.get_or_load(config["jwks_uri"], load)

    async def authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_verifier: str,
        nonce: Optional[str] = None,
    ) -> str:
        config = await self.discover()
        extra = {"nonce": nonce} if nonce else {}
        async with self._client(redirect_uri) as client:
            url, _ = client.create_authorization_url(
                config["authorization_endpoint"],
                state=state,
                code_verifier=code_verifier,
                prompt="login consent",
                **extra,
            )
        return url

    async def _verify_id_token(self, id_token: str, config: Dict[str, Any], nonce: Optional[str]) -> Dict[str, Any]:
        key_set = await self._key_set(config)
        claims_options = {
            "iss": {"essential": True, "value": config.get("issuer") or self.settings.issuer_url},
            "aud": {"essential": True, "value": self.settings.client_id},
        }
        try:
            claims = jwt.decode(
                id_token,
                key_set,
                claims_cls=CodeIDToken,
                claims_options=claims_options,
                claims_params={"nonce": nonce, "client_id": self.settings.client_id},
            )
            claims.validate(now=int(self._clock()), leeway=ID_TOKEN_LEEWAY)
        except (AuthlibBaseError, ValueError) as e:
            raise OidcError(f"invalid id_token: {type(e).__name__}") from e
        return dict(claims)

    async def _token_set(self, token: Dict[str, Any], config: Dict[str, Any], nonce: Optional[str]) -> TokenSet:
        access_token = token.get("access_token")
        if not access_token:
            raise OidcError("token response missing access_token")
        id_token = token.get("id_token")
        claims = await self._verify_id_token(id_token, config, nonce) if id_token else {}
        expires_in = token.get("expires_in")
        return TokenSet(
            access_token=access_token,
            refresh_token=token.get("refresh_token"),
            id_token=id_token,
            expires_in=int(expires_in) if expires_in is not None else None,
            claims=claims,
        )

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str,
        nonce: Optional[str] = None,
    ) -> TokenSet:
        config = await self.discover()
        try:
            async with self._client(redirect_uri) as client:
                token = await client.fetch_token(
                    config["token_endpoint"],
                    grant_type="authorization_code",
                    code=code,
                    code_verifier=code_verifier,
                )
        except _GRANT_ERRORS as e:
            raise OidcError(f"code exchange failed: {type(e).__name__}") from e
        return await self._token_set(token, config, nonce)

    async def refresh(self, refresh_token: str) -> TokenSet:
        config = await self.discover()
        try:
            async with self._client() as client:
                token = await client.refresh_token(config["token_endpoint"], refresh_token=refresh_token)
        except _GRANT_ERRORS as e:
            raise OidcError(f"refresh failed: {type(e).__name__}") from e
        return await self._token_set(token, config, None)
