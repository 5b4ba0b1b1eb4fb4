from fastapi import FastAPI, WebSocket
from fastapi.openapi.utils import get_openapi
from fastapi.responses import Response
from starlette.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import json
import logging
import os

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
from dotenv import load_dotenv
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from app.auth.gate import AuthGate
from app.auth.oidc import OidcClient
from app.auth.resolver import TokenResolver
from app.auth.service import AuthService
from app.config import Settings
from app.errors import register_exception_handlers
from app.middleware.request_id import RequestIdMiddleware
from app.middleware.session import SessionMiddleware
from app.providers.base import EmotionClient
from app.providers.factory import get_emotion_client
from app.realtime.channel import ChannelManager
from app.routes import auth as auth_routes
from app.routes import chat as chat_routes
from app.routes import guardian as guardian_routes
from app.routes import speech as speech_routes
from app.services.chat import ChatService
from app.services.speech import SpeechService
from app.sessions.store import SessionStore, get_session_store
from app.storage.base import CredentialStore
from app.storage.factory import get_credential_store

logger = logging.getLogger("speechbridge")


def configure_logging(level_name: str) -> None:
    # Ensure our application logger emits under Uvicorn:
    # - honor LOG_LEVEL (default INFO)
    # - attach a StreamHandler if none present
    # - disable propagate to avoid duplicate logs with Uvicorn root handlers
    lvl = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    logger.setLevel(lvl)
    if not logger.handlers:
        _h = logging.StreamHandler()
        _h.setLevel(lvl)
        _h.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(_h)
    logger.propagate = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    for warning in settings.warnings():
        logger.warning(json.dumps({"event": "config_warning", "message": warning}))
    logger.info(json.dumps({
        "event": "startup",
        "env": settings.env,
        "credentialStore": app.state.store.backend_name,
        "sessionStore": app.state.session_store.backend_name,
        "emotionProvider": app.state.chat_service.emotion_client.provider_name,
    }))
    try:
        yield
    finally:
        await app.state.store.close()
        await app.state.session_store.close()
        logger.info(json.dumps({"event": "shutdown"}))


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[CredentialStore] = None,
    session_store: Optional[SessionStore] = None,
    emotion_client: Optional[EmotionClient] = None,
    oidc: Optional[OidcClient] = None,
    password_rounds: int = 12,
) -> FastAPI:
    """Build the application; collaborators default to those selected by ``settings``."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Speech Bridge API",
        description="Speech therapy practice and emotional support: auth, REST and realtime feedback.",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Stores define __len__; an empty one is falsy
    if store is None:
        store = get_credential_store(settings)
    if session_store is None:
        session_store = get_session_store(settings)
    if oidc is None:
        oidc = OidcClient(settings)
    if emotion_client is None:
        emotion_client = get_emotion_client(settings=settings)
    resolver = TokenResolver(store)
    chat_service = ChatService(store, emotion_client)

    app.state.settings = settings
    app.state.store = store
    app.state.session_store = session_store
    app.state.resolver = resolver
    app.state.oidc = oidc
    app.state.auth_gate = AuthGate(settings, resolver, oidc)
    app.state.auth_service = AuthService(store, rounds=password_rounds)
    app.state.speech_service = SpeechService(store)
    app.state.chat_service = chat_service
    app.state.channel_manager = ChannelManager(resolver, chat_service)

    # Last added runs first: request id -> CORS -> session
    app.add_middleware(SessionMiddleware, settings=settings, store=session_store)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
        allow_credentials=True,
    )
    app.add_middleware(RequestIdMiddleware)
    register_exception_handlers(app)

    @app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics", tags=["meta"], include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        await websocket.app.state.channel_manager.handle(websocket)

    app.include_router(auth_routes.router)
    app.include_router(speech_routes.router)
    app.include_router(chat_routes.router)
    app.include_router(guardian_routes.router)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )
        openapi_schema["tags"] = [
            {"name": "meta", "description": "Service metadata and liveness"},
            {"name": "auth", "description": "Sessions, local accounts and OIDC login"},
            {"name": "speech", "description": "Speech practice sessions, scoring and progress"},
            {"name": "chat", "description": "Emotional support chat"},
            {"name": "guardian", "description": "Guardian dashboard"},
        ]
        openapi_schema["servers"] = [
            {"url": "http://localhost:5000", "description": "Local dev"}
        ]
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[assignment]
    return app


app = create_app()
