"""Auth API tests — registration, login, sessions, password change.

Learn: Tests cover:
1. Registration (first user is admin, duplicates, closed registration)
2. Login → session cookie, by username or email
3. /me with cookie, Session header and Bearer token
4. Logout and password change invalidating sessions
5. Session-only endpoints refusing API tokens
"""

import pytest
from sqlalchemy import update

from coditime.config import settings
from coditime.db.models import User
from coditime.services.account_service import AccountService

from conftest import PASSWORD, bearer, session_auth


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_first_user_is_admin(client):
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "root", "email": "Root@Example.com", "password": PASSWORD},
    )
    assert r.status_code == 201
    user = r.json()
    assert user["group"] == "admin"
    assert user["email"] == "root@example.com"
    assert "password_hash" not in user

    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "second", "email": "second@example.com", "password": PASSWORD},
    )
    assert r.status_code == 201
    assert r.json()["group"] == "user"


@pytest.mark.asyncio
async def test_register_duplicate(client):
    body = {"username": "alice", "email": "alice@example.com", "password": PASSWORD}
    assert (await client.post("/api/v1/auth/register", json=body)).status_code == 201

    r = await client.post("/api/v1/auth/register", json=body)
    assert r.status_code == 409

    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "alice2", "email": "ALICE@example.com", "password": PASSWORD},
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_register_race_is_409_not_500(client, monkeypatch):
    body = {"username": "alice", "email": "alice@example.com", "password": PASSWORD}
    assert (await client.post("/api/v1/auth/register", json=body)).status_code == 201

    # Both requests passed the availability check; only the insert tells.
    real = AccountService._taken_field
    stale = [None]

    async def racing_check(self, username, email):
        if stale:
            return stale.pop()
        return await real(self, username, email)

    monkeypatch.setattr(AccountService, "_taken_field", racing_check)
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "alice", "email": "other@example.com", "password": PASSWORD},
    )
    assert r.status_code == 409
    assert r.json()["detail"] == "Username already registered"


@pytest.mark.asyncio
async def test_register_short_password(client):
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "alice", "email": "alice@example.com", "password": "short"},
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_closed_registration_still_allows_first_user(client, monkeypatch):
    monkeypatch.setattr(settings, "public_registration", False)

    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "root", "email": "root@example.com", "password": PASSWORD},
    )
    assert r.status_code == 201

    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "late", "email": "late@example.com", "password": PASSWORD},
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_register_while_logged_in_is_rejected(client, signup):
    _, sid = await signup()
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "bob", "email": "bob@example.com", "password": PASSWORD},
        headers=session_auth(sid),
    )
    assert r.status_code == 403


# ═══════════════════════════════════════════════════════════
# Login / logout
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_sets_session_cookie(client, signup, session_store):
    await signup()

    r = await client.post(
        "/api/v1/auth/login",
        json={"username_or_email": "alice@example.com", "password": PASSWORD},
    )
    assert r.status_code == 200
    body = r.json()
    sid = body["session"]["session_id"]
    assert body["user"]["username"] == "alice"

    cookie = r.headers["set-cookie"]
    assert cookie.startswith(f"session={sid}")
    assert "HttpOnly" in cookie
    assert "samesite=strict" in cookie.lower()
    assert "Path=/" in cookie

    assert await session_store.get_session(sid) is not None


@pytest.mark.asyncio
async def test_login_wrong_password(client, signup):
    await signup()
    r = await client.post(
        "/api/v1/auth/login",
        json={"username_or_email": "alice", "password": "not the password"},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_login_unknown_user(client):
    r = await client.post(
        "/api/v1/auth/login",
        json={"username_or_email": "ghost", "password": PASSWORD},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_banned_user_cannot_login_or_use_session(client, signup, db_session):
    user, sid = await signup()
    await db_session.execute(update(User).values(banned=True))
    await db_session.commit()

    r = await client.get("/api/v1/auth/me", headers=session_auth(sid))
    assert r.status_code == 401

    r = await client.post(
        "/api/v1/auth/login",
        json={"username_or_email": "alice", "password": PASSWORD},
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_invalidates_session(client, signup):
    _, sid = await signup()

    r = await client.post("/api/v1/auth/logout", headers=session_auth(sid))
    assert r.status_code == 204
    assert 'session=""' in r.headers["set-cookie"] or "Max-Age=0" in r.headers["set-cookie"]

    r = await client.get("/api/v1/auth/me", headers=session_auth(sid))
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# /me — the three ways in
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_requires_auth(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_me_with_cookie(client, signup):
    _, sid = await signup()
    r = await client.get("/api/v1/auth/me", headers={"Cookie": f"session={sid}"})
    assert r.status_code == 200
    assert r.json()["method"] == "session"
    assert r.json()["user"]["username"] == "alice"


@pytest.mark.asyncio
async def test_me_with_session_header(client, signup):
    _, sid = await signup()
    r = await client.get("/api/v1/auth/me", headers=session_auth(sid))
    assert r.status_code == 200
    assert r.json()["method"] == "session"


@pytest.mark.asyncio
async def test_session_header_can_be_disabled(client, signup, monkeypatch):
    _, sid = await signup()
    monkeypatch.setattr(settings, "session_allow_in_header", False)

    r = await client.get("/api/v1/auth/me", headers=session_auth(sid))
    assert r.status_code == 401

    r = await client.get("/api/v1/auth/me", headers={"Cookie": f"session={sid}"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_me_with_api_token(client, signup):
    _, sid = await signup()
    r = await client.post(
        "/api/v1/api-keys", json={"name": "editor"}, headers=session_auth(sid)
    )
    token = r.json()["key"]

    r = await client.get("/api/v1/auth/me", headers=bearer(token))
    assert r.status_code == 200
    assert r.json()["method"] == "api_token"
    assert r.json()["user"]["username"] == "alice"


@pytest.mark.asyncio
async def test_me_with_garbage_credentials(client):
    r = await client.get("/api/v1/auth/me", headers=bearer("ct_nonsense"))
    assert r.status_code == 401
    r = await client.get("/api/v1/auth/me", headers=session_auth("nonsense"))
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_bearer_header_beats_cookie(client, signup):
    _, sid = await signup()
    r = await client.get(
        "/api/v1/auth/me",
        headers={"Cookie": f"session={sid}", "Authorization": "Bearer ct_revoked_or_fake"},
    )
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Password change
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_password_change_logs_out_other_sessions(client, signup):
    _, current = await signup()
    r = await client.post(
        "/api/v1/auth/login",
        json={"username_or_email": "alice", "password": PASSWORD},
    )
    other = r.json()["session"]["session_id"]
    client.cookies.clear()

    r = await client.put(
        "/api/v1/auth/me/password",
        json={"old_password": PASSWORD, "new_password": "a brand new password"},
        headers=session_auth(current),
    )
    assert r.status_code == 200
    assert r.json() == {"removed_sessions": 1, "removed_api_keys": 0}

    assert (await client.get("/api/v1/auth/me", headers=session_auth(current))).status_code == 200
    assert (await client.get("/api/v1/auth/me", headers=session_auth(other))).status_code == 401

    r = await client.post(
        "/api/v1/auth/login",
        json={"username_or_email": "alice", "password": "a brand new password"},
    )
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_password_change_can_revoke_api_keys(client, signup):
    _, sid = await signup()
    r = await client.post("/api/v1/api-keys", json={"name": "k"}, headers=session_auth(sid))
    token = r.json()["key"]

    r = await client.put(
        "/api/v1/auth/me/password",
        json={
            "old_password": PASSWORD,
            "new_password": "a brand new password",
            "revoke_api_keys": True,
        },
        headers=session_auth(sid),
    )
    assert r.json()["removed_api_keys"] == 1
    assert (await client.get("/api/v1/auth/me", headers=bearer(token))).status_code == 401


@pytest.mark.asyncio
async def test_password_change_wrong_old_password(client, signup):
    _, sid = await signup()
    r = await client.put(
        "/api/v1/auth/me/password",
        json={"old_password": "guess", "new_password": "a brand new password"},
        headers=session_auth(sid),
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_password_change_refuses_api_token(client, signup):
    _, sid = await signup()
    r = await client.post("/api/v1/api-keys", json={"name": "k"}, headers=session_auth(sid))
    token = r.json()["key"]

    r = await client.put(
        "/api/v1/auth/me/password",
        json={"old_password": PASSWORD, "new_password": "a brand new password"},
        headers=bearer(token),
    )
    assert r.status_code == 403
