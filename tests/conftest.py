import sys
import os
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import app.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: keep the emotion provider on the deterministic mock unless a test opts in
os.environ.setdefault("AI_PROVIDER", "mock")

from fastapi.testclient import TestClient  # noqa: E402

from app.config import Settings  # noqa: E402
from app.main import create_app  # noqa: E402
from app.providers.mock import MockEmotionClient  # noqa: E402
from app.sessions.store import MemorySessionStore  # noqa: E402
from app.storage.memory import MemoryCredentialStore  # noqa: E402


def make_settings(**overrides) -> Settings:
    base = dict(env="development", session_secret="test-secret", session_https_only=False)
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def make_app(store, session_store):
    def _make(settings: Settings = None, **kwargs):
        return create_app(
            settings or make_settings(),
            store=kwargs.pop("store", store),
            session_store=kwargs.pop("session_store", session_store),
            emotion_client=kwargs.pop("emotion_client", MockEmotionClient()),
            password_rounds=4,
            **kwargs,
        )
    return _make


@pytest.fixture
def client(make_app) -> TestClient:
    return TestClient(make_app())


SIGNUP = {
    "firstName": "Maya",
    "lastName": "Lopez",
    "email": "maya@example.com",
    "password": "s3cret-pass",
    "userType": "child",
    "language": "english",
}


@pytest.fixture
def signup_payload() -> dict:
    return dict(SIGNUP)
