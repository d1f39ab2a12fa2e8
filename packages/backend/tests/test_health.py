"""Health and state endpoint tests."""

import pytest

from conftest import session_auth


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert data["database"] == "ok"
    assert data["redis"] == "disabled"
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_health_reports_session_store(client, signup):
    await signup()
    data = (await client.get("/api/v1/health")).json()
    assert data["sessions"] == {"backend": "memory", "count": 1}
    assert data["cli_requests"] == {"pending": 0, "completed": 0}


@pytest.mark.asyncio
async def test_state_on_fresh_install(client):
    data = (await client.get("/api/v1/state")).json()
    assert data["is_first_user"] is True
    assert data["public_registration"] is True
    assert data["home_url"] == "https://coditime.example"
    assert data["recaptcha"] is None


@pytest.mark.asyncio
async def test_state_after_first_user(client, signup):
    _, sid = await signup()
    data = (await client.get("/api/v1/state", headers=session_auth(sid))).json()
    assert data["is_first_user"] is False
