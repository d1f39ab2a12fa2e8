#!/usr/bin/env python3
"""
Coditime CLI pairing — both sides of the handshake in one script.

Plays the CLI (init-session, poll retrieve-result) and the human
(approve with a login) against a running backend. The real CLI does the
first half with `coditime login`.

Run with: python examples/cli_pairing.py

Requires: pip install httpx
Backend must be running with the httptools HTTP implementation, since
retrieve-result answers 102 while the request is pending.
"""

import time

import httpx

from _common import BASE, PASSWORD, check_backend, create_account


def main():
    check_backend()
    username, _ = create_account()
    cli = httpx.Client(base_url=BASE, timeout=httpx.Timeout(10, read=60))

    print("\n1. CLI starts the handshake...")
    resp = cli.post("/cli/init-session", json={
        "machine_hostname": "example-laptop",
        "cli_version": "0.1.0",
        "cli_platform": "linux-x86_64",
        "cli_commit": "",
        "username": username,
    })
    started = resp.json()
    key = started["token"]
    print(f"   Claim key: {key}")
    print(f"   Approval URL: {started['absolute_url'] or '(no home_url configured)'}")

    print("\n2. Approval page shows the request...")
    pending = httpx.get(f"{BASE}/cli/pending/{key}").json()
    print(f"   {pending['client']['machine_hostname']} wants access as {pending['username']}")

    print("\n3. Human approves with their login...")
    resp = httpx.post(
        f"{BASE}/cli/complete-access/{key}",
        json={"username_or_email": username, "password": PASSWORD},
    )
    print(f"   complete-access → {resp.status_code}")

    print("\n4. CLI collects the token...")
    for _ in range(10):
        try:
            resp = cli.get(f"/cli/retrieve-result/{key}")
        except httpx.ReadTimeout:
            continue
        if resp.status_code == 200:
            break
        time.sleep(1)
    token = resp.json()["token"]
    print(f"   Got {token[:11]}...")

    me = httpx.get(f"{BASE}/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    print(f"   Authenticated as {me['user']['username']} via {me['method']}")

    try:
        status = cli.get(f"/cli/retrieve-result/{key}").status_code
    except httpx.ReadTimeout:
        status = 102
    print(f"   Retrieving again → {status} (single use)")


if __name__ == "__main__":
    main()
