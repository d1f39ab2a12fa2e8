"""Middleware tests — security headers, request IDs, storage errors.

Learn: Rate limiting is skipped when there is no Redis, so the limiter
tests swap in a dict-backed counter with the two calls it makes.
"""

import pytest

from coditime.auth.sessions import StorageError
from coditime.config import settings
from coditime.middleware import rate_limit
from coditime.middleware.rate_limit import is_auth_path


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    r = await client.get("/api/v1/health")
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "no-referrer"
    assert "Cache-Control" not in r.headers
    assert "Strict-Transport-Security" not in r.headers


@pytest.mark.asyncio
async def test_auth_responses_are_not_cached(client):
    r = await client.get("/api/v1/auth/me")
    assert r.headers["Cache-Control"] == "no-store"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    r1 = await client.get("/api/v1/health")
    r2 = await client.get("/api/v1/health")
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    r = await client.get("/api/v1/health", headers={"X-Request-ID": "trace-12345"})
    assert r.headers["X-Request-ID"] == "trace-12345"


@pytest.mark.asyncio
async def test_oversized_request_id_replaced(client):
    r = await client.get("/api/v1/health", headers={"X-Request-ID": "x" * 500})
    assert r.headers["X-Request-ID"] != "x" * 500


@pytest.mark.asyncio
async def test_storage_error_is_500(client, session_store, monkeypatch):
    async def broken(session_id):
        raise StorageError("disk on fire")

    monkeypatch.setattr(session_store, "get_session", broken)
    r = await client.get("/api/v1/auth/me", headers={"Authorization": "Session abc"})
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal storage error"}


def test_auth_paths_get_the_strict_bucket():
    assert is_auth_path("/api/v1/auth/login")
    assert is_auth_path("/api/v1/auth/register")
    assert is_auth_path("/api/v1/cli/complete-access/abc")
    assert not is_auth_path("/api/v1/cli/retrieve-result/abc")
    assert not is_auth_path("/api/v1/health")


# ─── Rate limiting ──────────────────────────────────────


class FakeRedis:
    def __init__(self):
        self.counts = {}

    async def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        return True


@pytest.fixture()
def fake_redis(monkeypatch):
    redis = FakeRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: redis)
    return redis


def login_attempt(forwarded_for: str = None):
    headers = {"X-Forwarded-For": forwarded_for} if forwarded_for else {}
    return dict(
        json={"username_or_email": "nobody", "password": "wrong password"},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_auth_bucket_exhausts(client, fake_redis):
    for _ in range(settings.rate_limit_auth_rpm):
        r = await client.post("/api/v1/auth/login", **login_attempt())
        assert r.status_code == 401
    assert r.headers["X-RateLimit-Remaining"] == "0"

    r = await client.post("/api/v1/auth/login", **login_attempt())
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_forwarded_clients_get_separate_buckets(client, fake_redis, monkeypatch):
    monkeypatch.setattr(settings, "trust_forwarded_for", True)

    for _ in range(settings.rate_limit_auth_rpm + 1):
        r = await client.post("/api/v1/auth/login", **login_attempt("203.0.113.7"))
    assert r.status_code == 429

    r = await client.post("/api/v1/auth/login", **login_attempt("198.51.100.9, 10.0.0.1"))
    assert r.status_code == 401

    keys = list(fake_redis.counts)
    assert any(":203.0.113.7:auth:" in k for k in keys)
    assert any(":198.51.100.9:auth:" in k for k in keys)
    assert not any(":10.0.0.1:" in k for k in keys)


@pytest.mark.asyncio
async def test_forwarded_for_ignored_unless_trusted(client, fake_redis):
    await client.post("/api/v1/auth/login", **login_attempt("203.0.113.7"))
    await client.post("/api/v1/auth/login", **login_attempt("198.51.100.9"))

    assert list(fake_redis.counts.values()) == [2]
    assert ":10.0.0.1:auth:" in next(iter(fake_redis.counts))
