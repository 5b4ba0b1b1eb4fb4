import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_list(name: str, default: str = "") -> List[str]:
    raw = _env_str(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


DEV_SESSION_SECRET = "speechbridge-dev-secret"
SESSION_TTL_ONE_WEEK = 7 * 24 * 60 * 60


@dataclass
class Settings:
    """Process-wide configuration.

    Built once (normally via ``Settings.from_env()``) and handed to
    ``create_app`` which passes it on to the stores, the auth gate, the OIDC
    client and the realtime channel manager.
    """

    env: str = "development"
    session_secret: str = DEV_SESSION_SECRET
    session_cookie_name: str = "speechbridge.sid"
    session_ttl_seconds: int = SESSION_TTL_ONE_WEEK
    # None -> derived from env (secure cookies in production only)
    session_https_only: Optional[bool] = None
    database_url: str = ""
    database_name: str = "speechbridge"
    issuer_url: str = "https://replit.com/oidc"
    client_id: str = ""
    domains: List[str] = field(default_factory=list)
    oidc_discovery_ttl_seconds: int = 3600
    http_timeout_seconds: float = 30.0
    emotion_provider: str = "mock"
    emotion_model: str = ""
    openrouter_api_key: str = ""
    public_app_origin: str = "http://localhost:5173"
    openrouter_app_title: str = "Speech Bridge"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def cookie_secure(self) -> bool:
        if self.session_https_only is not None:
            return self.session_https_only
        return self.is_production

    @classmethod
    def from_env(cls) -> "Settings":
        env = (_env_str("APP_ENV") or _env_str("NODE_ENV") or "development").lower()
        return cls(
            env=env,
            session_secret=_env_str("SESSION_SECRET") or DEV_SESSION_SECRET,
            session_cookie_name=_env_str("SESSION_COOKIE_NAME") or "speechbridge.sid",
            session_ttl_seconds=_env_int("SESSION_TTL_SECONDS", SESSION_TTL_ONE_WEEK),
            database_url=_env_str("DATABASE_URL"),
            database_name=_env_str("DATABASE_NAME") or "speechbridge",
            issuer_url=_env_str("ISSUER_URL") or "https://replit.com/oidc",
            client_id=_env_str("REPL_ID"),
            domains=_env_list("REPLIT_DOMAINS"),
            oidc_discovery_ttl_seconds=_env_int("OIDC_DISCOVERY_TTL_SECONDS", 3600),
            http_timeout_seconds=_env_float("AI_HTTP_TIMEOUT_SECONDS", 30.0),
            emotion_provider=(_env_str("AI_PROVIDER_EMOTION") or _env_str("AI_PROVIDER") or "mock").lower(),
            emotion_model=_env_str("AI_EMOTION_MODEL"),
            openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
            public_app_origin=_env_str("PUBLIC_APP_ORIGIN") or "http://localhost:5173",
            openrouter_app_title=_env_str("OPENROUTER_APP_TITLE") or "Speech Bridge",
            cors_origins=_env_list("CORS_ORIGINS", "http://localhost:5173"),
            log_level=(_env_str("LOG_LEVEL") or "INFO").upper(),
        )

    def warnings(self) -> List[str]:
        """Configuration problems worth logging at startup (never fatal in development)."""
        out: List[str] = []
        if self.is_development:
            return out
        if not self.domains:
            out.append("REPLIT_DOMAINS not provided, using default")
        if not self.database_url:
            out.append("DATABASE_URL not found, falling back to memory store")
        if self.session_secret == DEV_SESSION_SECRET:
            out.append("SESSION_SECRET not set, using the development secret")
        if not self.client_id:
            out.append("REPL_ID not set, OIDC login and refresh will fail")
        return out
