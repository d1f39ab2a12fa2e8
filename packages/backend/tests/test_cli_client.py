"""`coditime` command tests — CliRunner against a mocked server.

Learn: _client() is monkeypatched to return an httpx.AsyncClient on a
MockTransport, so the command's real request/response handling runs
without a server. Credentials go to a tmp file via CODITIME_CREDENTIALS.
"""

import json

import httpx
import pytest
from click.testing import CliRunner

from coditime.cli import main as cli

TOKEN = "ct_minted_for_the_cli"


@pytest.fixture()
def creds_path(tmp_path, monkeypatch):
    path = tmp_path / "credentials.json"
    monkeypatch.setenv("CODITIME_CREDENTIALS", str(path))
    return path


def use_server(monkeypatch, handler):
    """Route every CLI request to `handler`, recording what was sent."""
    seen = []

    def recording(request):
        seen.append(request)
        return handler(request)

    def fake_client(base_url, token=None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return httpx.AsyncClient(
            base_url=base_url, headers=headers, transport=httpx.MockTransport(recording)
        )

    monkeypatch.setattr(cli, "_client", fake_client)
    return seen


def pairing_server(retrieve_statuses):
    statuses = iter(retrieve_statuses)

    def handler(request):
        if request.url.path == "/api/v1/cli/init-session":
            return httpx.Response(
                200,
                json={"token": "K" * 16, "absolute_url": "https://ct.example/login-cli/" + "K" * 16},
            )
        if request.url.path == f"/api/v1/cli/retrieve-result/{'K' * 16}":
            status = next(statuses)
            if status is None:
                raise httpx.ReadTimeout("no final response", request=request)
            if status == 200:
                return httpx.Response(
                    200,
                    json={"token": TOKEN, "token_id": "id-1", "completed_at": "2026-01-01T00:00:00Z"},
                )
            return httpx.Response(status)
        return httpx.Response(404)

    return handler


def test_login_polls_until_approved(monkeypatch, creds_path):
    seen = use_server(monkeypatch, pairing_server([102, 102, 200]))

    result = CliRunner().invoke(
        cli.main,
        ["login", "--server", "https://ct.example", "--username", "alice",
         "--no-open", "--poll-interval", "0"],
    )

    assert result.exit_code == 0, result.output
    assert "https://ct.example/login-cli/" in result.output
    saved = json.loads(creds_path.read_text())
    assert saved == {"server": "https://ct.example", "token": TOKEN, "token_id": "id-1"}

    init = json.loads(seen[0].content)
    assert init["username"] == "alice"
    assert set(init) >= {"machine_hostname", "cli_version", "cli_platform", "cli_commit"}
    assert len(seen) == 4


def test_login_treats_read_timeout_as_pending(monkeypatch, creds_path):
    use_server(monkeypatch, pairing_server([None, 102, 200]))

    result = CliRunner().invoke(
        cli.main, ["login", "--server", "https://ct.example", "--no-open", "--poll-interval", "0"]
    )

    assert result.exit_code == 0, result.output
    assert json.loads(creds_path.read_text())["token"] == TOKEN


def test_login_polls_with_a_long_read_timeout(monkeypatch, creds_path):
    seen = use_server(monkeypatch, pairing_server([200]))

    result = CliRunner().invoke(
        cli.main, ["login", "--server", "https://ct.example", "--no-open", "--poll-interval", "0"]
    )

    assert result.exit_code == 0, result.output
    poll = seen[-1]
    assert poll.url.path.startswith("/api/v1/cli/retrieve-result/")
    assert poll.extensions["timeout"]["read"] == cli.POLL_READ_TIMEOUT
    assert cli.POLL_READ_TIMEOUT >= 30


def test_login_aborts_on_ip_mismatch(monkeypatch, creds_path):
    use_server(monkeypatch, pairing_server([102, 401]))

    result = CliRunner().invoke(
        cli.main, ["login", "--server", "https://ct.example", "--no-open", "--poll-interval", "0"]
    )

    assert result.exit_code == 1
    assert not creds_path.exists()


def test_login_times_out(monkeypatch, creds_path):
    use_server(monkeypatch, pairing_server([102] * 10))

    result = CliRunner().invoke(
        cli.main,
        ["login", "--server", "https://ct.example", "--no-open",
         "--poll-interval", "0", "--timeout", "0"],
    )

    assert result.exit_code == 1
    assert "timed out" in result.output


def test_whoami_uses_saved_token(monkeypatch, creds_path):
    creds_path.write_text(json.dumps({"server": "https://ct.example", "token": TOKEN, "token_id": "x"}))

    def handler(request):
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        return httpx.Response(
            200,
            json={"method": "api_token", "user": {"username": "alice", "email": "alice@example.com"}},
        )

    use_server(monkeypatch, handler)
    result = CliRunner().invoke(cli.main, ["whoami"])

    assert result.exit_code == 0, result.output
    assert "alice <alice@example.com> on https://ct.example" in result.output


def test_whoami_without_login(creds_path):
    result = CliRunner().invoke(cli.main, ["whoami"])
    assert result.exit_code == 1


def test_logout_removes_credentials(creds_path):
    creds_path.write_text("{}")
    result = CliRunner().invoke(cli.main, ["logout"])
    assert result.exit_code == 0
    assert not creds_path.exists()
