import json

import pytest
from fastapi.testclient import TestClient

from conftest import make_settings

COOKIE = "speechbridge.sid"


def test_injected_empty_stores_are_kept(make_app, store, session_store):
    assert len(session_store) == 0
    app = make_app()
    assert app.state.session_store is session_store
    assert app.state.store is store


def test_signup_returns_user_token_and_opens_session(client, signup_payload, session_store):
    r = client.post("/api/auth/signup", json=signup_payload)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["authToken"] == body["user"]["id"]
    assert body["user"]["email"] == "maya@example.com"
    assert body["user"]["userType"] == "child"
    assert "passwordHash" not in body["user"]
    assert client.cookies.get(COOKIE)
    assert len(session_store) == 1


@pytest.mark.parametrize("missing", ["firstName", "lastName", "email", "password", "userType", "language"])
def test_signup_requires_every_field(client, signup_payload, missing):
    signup_payload.pop(missing)
    r = client.post("/api/auth/signup", json=signup_payload)
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "All fields are required"}


def test_signup_rejects_unknown_user_type_and_duplicates(client, signup_payload):
    bad = dict(signup_payload, userType="robot")
    r = client.post("/api/auth/signup", json=bad)
    assert r.status_code == 400
    assert r.json()["success"] is False

    assert client.post("/api/auth/signup", json=signup_payload).status_code == 200
    dup = client.post("/api/auth/signup", json=dict(signup_payload, email="MAYA@example.com"))
    assert dup.status_code == 400
    assert "already exists" in dup.json()["message"]


def test_signup_invalid_json_is_400(client):
    r = client.post("/api/auth/signup", content=b"not json", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_login_success_and_failures(make_app, signup_payload):
    client = TestClient(make_app())
    client.post("/api/auth/signup", json=signup_payload)
    client.cookies.clear()

    r = client.post("/api/auth/login", json={"email": "maya@example.com", "password": "s3cret-pass"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["authToken"] == body["user"]["id"]

    wrong = client.post("/api/auth/login", json={"email": "maya@example.com", "password": "nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"message": "Invalid email or password"}

    unknown = client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"})
    assert unknown.status_code == 401

    missing = client.post("/api/auth/login", json={"email": "maya@example.com"})
    assert missing.status_code == 400
    assert missing.json() == {"message": "Email and password are required"}


def test_dev_auth_user_falls_back_to_mock_user(client):
    r = client.get("/api/auth/user")
    assert r.status_code == 200
    assert r.json()["id"] == "local-user-123"


def test_dev_auth_user_returns_stored_user_for_session(client, signup_payload):
    user = client.post("/api/auth/signup", json=signup_payload).json()["user"]
    r = client.get("/api/auth/user")
    assert r.status_code == 200
    assert r.json()["id"] == user["id"]


def test_dev_mock_login_redirects_by_user_type(client):
    r = client.get("/api/login", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/adult-dashboard"
    me = client.get("/api/auth/user").json()
    assert me["id"] == "local-user-123"

    s = client.get("/api/auth/session").json()
    assert s["isAuthenticated"] is True
    assert s["user"]["claims"] == {"sub": "local-user-123"}


def test_dev_mock_login_with_signup_data(client):
    data = json.dumps({"firstName": "Ana", "userType": "guardian", "email": "ana@example.com"})
    r = client.get("/api/login", params={"signupData": data}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/guardian-dashboard"
    me = client.get("/api/auth/user").json()
    assert me["id"].startswith("user-")
    assert me["firstName"] == "Ana"
    assert me["lastName"] == "Developer"


def test_dev_mock_login_bad_signup_data_uses_default(client):
    r = client.get("/api/login", params={"signupData": "{broken"}, follow_redirects=False)
    assert r.headers["location"] == "/adult-dashboard"


def test_dev_callback_redirects_home(client):
    r = client.get("/api/callback", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/"


def test_logout_kills_session_but_bearer_keeps_working(make_app, signup_payload, session_store):
    client = TestClient(make_app(make_settings(env="production")))
    body = client.post("/api/auth/signup", json=signup_payload).json()
    token = body["authToken"]
    old_cookie = client.cookies.get(COOKIE)
    assert old_cookie

    assert client.get("/api/auth/user").json()["id"] == token
    assert len(session_store) == 1

    out = client.get("/api/logout")
    assert out.status_code == 200
    assert out.json() == {"success": True, "message": "Logged out successfully"}
    assert len(session_store) == 0

    # replaying the old cookie no longer finds a session
    client.cookies.clear()
    client.cookies.set(COOKIE, old_cookie)
    replay = client.get("/api/auth/user")
    assert replay.status_code == 401
    assert replay.json() == {"message": "User ID not found in session"}

    bearer = client.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})
    assert bearer.status_code == 200
    assert bearer.json()["id"] == token


def test_prod_auth_user_404_and_500(make_app, signup_payload, store, monkeypatch):
    client = TestClient(make_app(make_settings(env="production")))
    token = client.post("/api/auth/signup", json=signup_payload).json()["authToken"]

    store._users.clear()
    r = client.get("/api/auth/user")
    assert r.status_code == 404
    assert r.json() == {"message": "User not found in database"}

    client.cookies.clear()

    async def boom(user_id):
        raise RuntimeError("db down")

    monkeypatch.setattr(store, "get_user", boom)
    r = client.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 500
    assert r.json() == {"message": "Failed to fetch user"}


def test_tampered_cookie_is_ignored(client, signup_payload):
    client.post("/api/auth/signup", json=signup_payload)
    cookie = client.cookies.get(COOKIE)
    client.cookies.clear()
    client.cookies.set(COOKIE, cookie[:-2] + "xx")
    s = client.get("/api/auth/session").json()
    assert s["isAuthenticated"] is False
    assert s["session"] == {}
