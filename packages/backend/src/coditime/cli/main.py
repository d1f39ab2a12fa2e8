"""Coditime CLI — pair this machine with a Coditime server.

Usage:
    coditime login                      # Approve in the browser, save a token
    coditime login --username alice     # Only alice may approve
    coditime whoami                     # Check the saved token
    coditime logout                     # Forget the saved token

Learn: `login` never sees your password. It asks the server for a claim
key, you approve the request in a browser where you are logged in, and
the CLI polls until the server hands over a freshly minted API token.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import platform
import socket
import sys
import time
from pathlib import Path
from typing import Optional

import click
import httpx

from coditime import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:5312"
POLL_INTERVAL = 2.0
LOGIN_TIMEOUT = 15 * 60  # matches the server's pending-request TTL

# httpx swallows a final 102 as informational, so a pending poll ends on
# the read timeout. It must outlast a slow 200: a result is handed out once.
POLL_READ_TIMEOUT = 60.0
POLL_TIMEOUT = httpx.Timeout(30.0, read=POLL_READ_TIMEOUT)


def _api_url(server: Optional[str] = None) -> str:
    return (server or os.environ.get("CODITIME_API_URL", DEFAULT_API_URL)).rstrip("/")


def _credentials_path() -> Path:
    override = os.environ.get("CODITIME_CREDENTIALS")
    if override:
        return Path(override)
    return Path.home() / ".config" / "coditime" / "credentials.json"


def _client(base_url: str, token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at a Coditime server."""
    headers = {"User-Agent": f"coditime-cli/{__version__}"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=30.0,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Falls back to a worker thread when a loop is already running (e.g.
    CliRunner invoked from an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _client_info(username: Optional[str]) -> dict:
    return {
        "machine_hostname": socket.gethostname(),
        "cli_version": __version__,
        "cli_platform": f"{platform.system().lower()}-{platform.machine().lower()}",
        "cli_commit": os.environ.get("CODITIME_CLI_COMMIT", ""),
        "username": username,
    }


def _save_credentials(server: str, token: str, token_id: str) -> Path:
    path = _credentials_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"server": server, "token": token, "token_id": token_id}, indent=2))
    path.chmod(0o600)
    return path


def _load_credentials() -> dict:
    path = _credentials_path()
    if not path.exists():
        click.secho("Not logged in. Run `coditime login` first.", fg="red", err=True)
        sys.exit(1)
    return json.loads(path.read_text())


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="coditime")
def main():
    """Coditime — pair your machine with a Coditime server."""


# ---------------------------------------------------------------------------
# coditime login
# ---------------------------------------------------------------------------


@main.command()
@click.option("--server", "-s", help="Server URL (or set CODITIME_API_URL)")
@click.option("--username", "-u", help="Only this account may approve the login")
@click.option("--no-open", is_flag=True, help="Print the approval URL, don't open a browser")
@click.option("--poll-interval", type=float, default=POLL_INTERVAL, hidden=True)
@click.option("--timeout", type=float, default=LOGIN_TIMEOUT, hidden=True)
def login(server: Optional[str], username: Optional[str], no_open: bool,
          poll_interval: float, timeout: float):
    """Log in by approving this CLI in your browser."""
    _run(_login_impl(_api_url(server), username, no_open, poll_interval, timeout))


async def _login_impl(server: str, username: Optional[str], no_open: bool,
                      poll_interval: float, timeout: float):
    async with _client(server) as c:
        try:
            r = await c.post("/api/v1/cli/init-session", json=_client_info(username))
        except httpx.HTTPError as e:
            _fail(f"could not reach {server}: {e}")
        if r.status_code != 200:
            _fail(f"server refused the login request ({r.status_code})")
        data = r.json()
        claim_key = data["token"]
        url = data.get("absolute_url")

        if url:
            click.echo("Approve this login in your browser:")
            click.secho(f"  {url}", bold=True)
            if not no_open:
                click.launch(url)
        else:
            click.echo("The server has no public URL configured.")
            click.echo(f"Approve this login from the web app with the key: {claim_key}")

        click.echo("Waiting for approval...")
        start = time.monotonic()
        while True:
            try:
                r = await c.get(
                    f"/api/v1/cli/retrieve-result/{claim_key}", timeout=POLL_TIMEOUT
                )
            except httpx.ReadTimeout:
                r = None

            if r is not None:
                if r.status_code == 200:
                    break
                if r.status_code == 401:
                    _fail("the approval was claimed from a different IP address")
                if r.status_code != 102:
                    _fail(f"unexpected response from server ({r.status_code})")

            if time.monotonic() - start > timeout:
                _fail("timed out waiting for approval")
            await asyncio.sleep(poll_interval)

    result = r.json()
    path = _save_credentials(server, result["token"], result["token_id"])
    click.secho("Logged in.", fg="green")
    click.echo(f"Token saved to {path}")


# ---------------------------------------------------------------------------
# coditime whoami / logout
# ---------------------------------------------------------------------------


@main.command()
def whoami():
    """Show the account the saved token belongs to."""
    _run(_whoami_impl())


async def _whoami_impl():
    creds = _load_credentials()
    async with _client(creds["server"], creds["token"]) as c:
        try:
            r = await c.get("/api/v1/auth/me")
        except httpx.HTTPError as e:
            _fail(f"could not reach {creds['server']}: {e}")
    if r.status_code == 401:
        _fail("the saved token is no longer valid. Run `coditime login` again.")
    r.raise_for_status()
    me = r.json()
    user = me["user"]
    click.echo(f"{user['username']} <{user['email']}> on {creds['server']}")


@main.command()
def logout():
    """Forget the saved token. It stays valid until revoked on the server."""
    path = _credentials_path()
    if path.exists():
        path.unlink()
        click.echo(f"Removed {path}")
    else:
        click.echo("Not logged in.")


if __name__ == "__main__":
    main()
