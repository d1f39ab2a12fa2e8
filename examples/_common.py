"""
Shared helpers for Coditime examples.

Handles the health check and account setup (register + login) so each
example can focus on its specific flow.
"""

import sys
import uuid

import httpx

BASE = "http://localhost:5312/api/v1"
PASSWORD = "demo-password-123"


def check_backend() -> None:
    """Verify the backend is reachable and healthy."""
    try:
        resp = httpx.get(f"{BASE}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {BASE}")
        print("Start it with:  uvicorn coditime.main:app --http httptools --port 5312")
        sys.exit(1)

    health = resp.json()
    print("Backend health:")
    print(f"  Database: {health['database']}")
    print(f"  Sessions: {health['sessions']}")
    print(f"  Redis:    {health['redis']}")

    if health["database"] != "ok":
        print("\nERROR: Database is not reachable. Start it with: docker compose up -d")
        sys.exit(1)


def create_account() -> tuple[str, str]:
    """Register a fresh user and return (username, session_id).

    Uses a unique username per run so examples are repeatable.
    """
    username = f"demo-{uuid.uuid4().hex[:8]}"

    resp = httpx.post(
        f"{BASE}/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": PASSWORD},
        timeout=10,
    )
    if resp.status_code != 201:
        print(f"ERROR: Registration failed: {resp.status_code} {resp.text}")
        sys.exit(1)

    resp = httpx.post(
        f"{BASE}/auth/login",
        json={"username_or_email": username, "password": PASSWORD},
        timeout=10,
    )
    if resp.status_code != 200:
        print(f"ERROR: Login failed: {resp.status_code} {resp.text}")
        sys.exit(1)

    return username, resp.json()["session"]["session_id"]


def session_client(session_id: str) -> httpx.Client:
    """An httpx Client that authenticates with a browser session."""
    return httpx.Client(
        base_url=BASE,
        timeout=10,
        headers={"Authorization": f"Session {session_id}"},
    )
