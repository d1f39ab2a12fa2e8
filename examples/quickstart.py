#!/usr/bin/env python3
"""
Coditime Quickstart — account, session and API key in one script.

Registers a user → logs in → mints an API key → uses it → revokes it.
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:5312
"""

import httpx

from _common import BASE, check_backend, create_account, session_client


def main():
    check_backend()

    print("\n1. Registering and logging in...")
    username, session_id = create_account()
    client = session_client(session_id)
    me = client.get("/auth/me").json()
    print(f"   Logged in as {me['user']['username']} via {me['method']}")

    print("\n2. Minting an API key for an editor plugin...")
    resp = client.post("/api-keys", json={"name": "editor", "permissions": ["WriteHeartbeat"]})
    assert resp.status_code == 201, f"Failed: {resp.text}"
    key = resp.json()
    print(f"   Key {key['prefix']}... (shown once)")

    print("\n3. Using the key...")
    resp = httpx.get(f"{BASE}/auth/me", headers={"Authorization": f"Bearer {key['key']}"})
    print(f"   /auth/me → {resp.status_code} ({resp.json()['method']})")

    resp = httpx.post(
        f"{BASE}/api-keys",
        json={"name": "sneaky"},
        headers={"Authorization": f"Bearer {key['key']}"},
    )
    print(f"   Minting a key with a key → {resp.status_code} (sessions only)")

    print("\n4. Revoking it...")
    client.delete(f"/api-keys/{key['id']}")
    resp = httpx.get(f"{BASE}/auth/me", headers={"Authorization": f"Bearer {key['key']}"})
    print(f"   /auth/me → {resp.status_code}")

    print("\n5. Logging out...")
    client.post("/auth/logout")
    print(f"   /auth/me → {client.get('/auth/me').status_code}")


if __name__ == "__main__":
    main()
