"""Test fixtures — in-memory SQLite per test, fresh auth state per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI without a database
server:

1. Each test gets its own `sqlite+aiosqlite://` engine. StaticPool keeps
   the single in-memory connection alive, so the schema created by
   create_all is the one every query sees. The database vanishes with
   the engine.
2. get_db is overridden to hand routes the test's session, so tests can
   inspect or modify rows the API wrote.
3. ASGITransport doesn't run the app lifespan, so the fixtures put a
   session store, CLI pairing maps and a (disabled) reCAPTCHA verifier
   on app.state themselves.

Environment overrides must happen before coditime is imported: settings
and the default engine are built at import time.
"""

import os

os.environ["CODITIME_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CODITIME_SESSION_COOKIE_SECURE"] = "false"
os.environ["CODITIME_HOME_URL"] = "https://coditime.example"
os.environ["CODITIME_RECAPTCHA_SECRET_KEY"] = ""
os.environ["CODITIME_RECAPTCHA_SITE_KEY"] = ""

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from coditime.auth import password  # noqa: E402
from coditime.auth.sessions import MemorySessionStore  # noqa: E402
from coditime.db.engine import get_db  # noqa: E402
from coditime.db.models import Base  # noqa: E402
from coditime.main import app  # noqa: E402
from coditime.services.cli_access import CLIAccess  # noqa: E402
from coditime.services.recaptcha import RecaptchaVerifier  # noqa: E402

CLIENT_IP = "10.0.0.1"
OTHER_IP = "10.0.0.2"
PASSWORD = "correct horse battery"


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Minimum bcrypt work factor; hashing at 12 rounds dominates test time."""
    monkeypatch.setattr(password, "ROUNDS", 4)


@pytest_asyncio.fixture()
async def db_session():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest.fixture()
def session_store():
    return MemorySessionStore(timedelta(hours=24))


@pytest.fixture()
def cli_access():
    return CLIAccess()


@pytest_asyncio.fixture()
async def client(db_session, session_store, cli_access):
    """HTTP client for the real auth pipeline, calling from CLIENT_IP."""
    app.state.session_store = session_store
    app.state.cli_access = cli_access
    app.state.recaptcha = RecaptchaVerifier()

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app, client=(CLIENT_IP, 51000))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def other_client(client):
    """Second client sharing the app state, calling from OTHER_IP."""
    transport = ASGITransport(app=app, client=(OTHER_IP, 52000))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def signup(client):
    """Register an account and log it in. Returns (user, session_id).

    The cookie jar is cleared afterwards; tests pass credentials
    explicitly so it's obvious which one a request uses.
    """

    async def _signup(username: str = "alice", email: str = None, password: str = PASSWORD):
        r = await client.post(
            "/api/v1/auth/register",
            json={
                "username": username,
                "email": email or f"{username}@example.com",
                "password": password,
            },
        )
        assert r.status_code == 201, r.text
        r = await client.post(
            "/api/v1/auth/login",
            json={"username_or_email": username, "password": password},
        )
        assert r.status_code == 200, r.text
        client.cookies.clear()
        return r.json()["user"], r.json()["session"]["session_id"]

    return _signup


def session_auth(session_id: str) -> dict:
    return {"Authorization": f"Session {session_id}"}


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
