import pytest

from app.config import Settings
from app.sessions.store import MemorySessionStore, get_session_store
from app.storage.base import DuplicateUserError, public_user
from app.storage.factory import get_credential_store
from app.storage.memory import MemoryCredentialStore


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_memory_session_store_ttl():
    clock = FakeClock(100.0)
    store = MemorySessionStore(clock=clock)
    await store.set("sid-1", {"user": {"id": "u"}}, ttl_seconds=60)
    assert await store.get("sid-1") == {"user": {"id": "u"}}

    clock.now = 159.0
    assert await store.get("sid-1") is not None
    clock.now = 160.0
    assert await store.get("sid-1") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_memory_session_store_copies_and_destroys():
    store = MemorySessionStore()
    data = {"user": {"id": "u"}}
    await store.set("sid", data, ttl_seconds=60)
    data["user"]["id"] = "mutated"
    got = await store.get("sid")
    assert got["user"]["id"] == "u"
    got["user"]["id"] = "mutated"
    assert (await store.get("sid"))["user"]["id"] == "u"

    await store.destroy("sid")
    await store.destroy("sid")
    assert await store.get("sid") is None


@pytest.mark.asyncio
async def test_memory_session_store_prunes_expired_on_write():
    clock = FakeClock(0.0)
    store = MemorySessionStore(clock=clock)
    await store.set("old", {"a": 1}, ttl_seconds=10)
    clock.now = 20.0
    await store.set("new", {"b": 2}, ttl_seconds=10)
    assert len(store) == 1


def test_factories_default_to_memory():
    settings = Settings()
    assert get_session_store(settings).backend_name == "memory"
    assert get_credential_store(settings).backend_name == "memory"


@pytest.mark.asyncio
async def test_users_unique_by_id_and_email():
    store = MemoryCredentialStore()
    created = await store.create_user({"email": "Ann@Example.com", "passwordHash": "h"})
    assert created["id"]
    assert created["createdAt"] == created["updatedAt"]
    assert (await store.get_user_by_email("ann@example.com"))["id"] == created["id"]

    with pytest.raises(DuplicateUserError):
        await store.create_user({"email": "ANN@example.com"})
    with pytest.raises(DuplicateUserError):
        await store.create_user({"id": created["id"], "email": "other@example.com"})

    assert "passwordHash" not in public_user(created)
    assert public_user(None) is None


@pytest.mark.asyncio
async def test_upsert_user_merges_non_null_fields():
    store = MemoryCredentialStore()
    first = await store.upsert_user({"id": "oidc-1", "email": "a@example.com", "firstName": "A"})
    assert first["firstName"] == "A"
    second = await store.upsert_user({"id": "oidc-1", "email": "b@example.com", "firstName": None})
    assert second["email"] == "b@example.com"
    assert second["firstName"] == "A"
    assert second["createdAt"] == first["createdAt"]


@pytest.mark.asyncio
async def test_returned_documents_are_copies():
    store = MemoryCredentialStore()
    user = await store.create_user({"id": "u", "email": "u@example.com"})
    user["email"] = "changed"
    assert (await store.get_user("u"))["email"] == "u@example.com"


@pytest.mark.asyncio
async def test_emotional_sessions_recency_and_messages():
    store = MemoryCredentialStore()
    s1 = await store.create_emotional_session("u")
    s2 = await store.create_emotional_session("u")
    await store.create_emotional_session("other")

    recent = await store.get_emotional_sessions("u", 10)
    assert [s["id"] for s in recent] == [s2["id"], s1["id"]]
    assert len(await store.get_emotional_sessions("u", 1)) == 1

    updated = await store.add_message_to_emotional_session(s1["id"], {"role": "user", "content": "hi"})
    assert updated["messages"][0]["createdAt"]
    assert await store.add_message_to_emotional_session("missing", {"role": "user", "content": "x"}) is None


@pytest.mark.asyncio
async def test_assessments_latest_per_user():
    store = MemoryCredentialStore()
    assert await store.latest_assessment("u") is None
    await store.save_assessment("u", {"level": "beginner"})
    await store.save_assessment("v", {"level": "advanced"})
    await store.save_assessment("u", {"level": "intermediate"})
    assert (await store.latest_assessment("u"))["level"] == "intermediate"
    assert await store.add_speech_attempt("missing", {"word": "x"}) is None


@pytest.mark.asyncio
async def test_upsert_user_rejects_email_owned_by_another_user():
    store = MemoryCredentialStore()
    await store.create_user({"id": "local-1", "email": "kim@example.com"})

    with pytest.raises(DuplicateUserError):
        await store.upsert_user({"id": "oidc-2", "email": "Kim@Example.com"})
    assert await store.get_user("oidc-2") is None

    same = await store.upsert_user({"id": "local-1", "email": "KIM@example.com", "firstName": "Kim"})
    assert same["email"] == "kim@example.com"
    assert same["firstName"] == "Kim"
