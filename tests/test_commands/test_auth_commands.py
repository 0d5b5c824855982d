"""Tests for the ``labctl auth`` command group."""

from __future__ import annotations

import json
import logging
import socket
from http.client import HTTPConnection
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from labctl import __version__
from labctl.app import app
from labctl.auth.credential_store import FileCredentialStore
from labctl.models import AuthMethod, HostRecord

HOST = "gitlab.example.com"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_response(payload: object, status_code: int = 200) -> MagicMock:
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.json.return_value = payload
    mock_response.text = str(payload)
    return mock_response


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _approve_in_browser(url: str) -> bool:
    """Follow the authorize URL back to the redirect URI with a code."""
    params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
    redirect = urlparse(params["redirect_uri"])
    query = urlencode({"code": "auth-code", "state": params["state"]})
    conn = HTTPConnection(redirect.hostname, redirect.port, timeout=5)
    try:
        conn.request("GET", f"{redirect.path}?{query}")
        conn.getresponse().read()
    finally:
        conn.close()
    return True


def _invoke(cli_runner, *args: str, **kwargs):
    return cli_runner.invoke(app, ["--no-color", *args], **kwargs)


# ---------------------------------------------------------------------------
# Root options
# ---------------------------------------------------------------------------


def test_version(cli_runner) -> None:
    result = cli_runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"labctl {__version__}" in result.output


def test_logging_stays_off_stderr_without_verbose(cli_runner) -> None:
    logger = logging.getLogger("labctl")

    _invoke(cli_runner, "--verbose", "auth", "status")
    debug_handlers = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
    assert debug_handlers

    _invoke(cli_runner, "auth", "status")
    assert logger.level == logging.WARNING
    assert any(isinstance(h, logging.NullHandler) for h in logger.handlers)
    assert not any(h in logger.handlers for h in debug_handlers)


# ---------------------------------------------------------------------------
# auth login
# ---------------------------------------------------------------------------


class TestLoginWithToken:
    def test_token_flag(self, cli_runner, file_store: FileCredentialStore) -> None:
        with patch("labctl.client.httpx.get", return_value=_mock_response({"username": "bob"})):
            result = _invoke(
                cli_runner, "auth", "login", "--hostname", HOST, "--token", "glpat-1234567890",
                "--git-protocol", "ssh",
            )

        assert result.exit_code == 0, result.output
        assert f"Logged in to {HOST} as bob" in result.output
        record = file_store.load(HOST)
        assert record.access_token == "glpat-1234567890"
        assert record.auth_method is AuthMethod.STATIC_TOKEN
        assert record.git_protocol == "ssh"

    def test_stdin(self, cli_runner, file_store: FileCredentialStore) -> None:
        with patch("labctl.client.httpx.get", return_value=_mock_response({"username": "bob"})):
            result = _invoke(
                cli_runner, "auth", "login", "--hostname", HOST, "--stdin",
                input="glpat-from-stdin\n",
            )

        assert result.exit_code == 0, result.output
        assert file_store.load(HOST).access_token == "glpat-from-stdin"

    def test_token_and_stdin_conflict(self, cli_runner) -> None:
        result = _invoke(cli_runner, "auth", "login", "--token", "x", "--stdin", input="y\n")
        assert result.exit_code == 2
        assert "either --token or --stdin" in result.output

    def test_invalid_git_protocol(self, cli_runner) -> None:
        result = _invoke(cli_runner, "auth", "login", "--token", "x", "--git-protocol", "ftp")
        assert result.exit_code == 2
        assert "invalid git protocol" in result.output

    def test_invalid_hostname(self, cli_runner) -> None:
        result = _invoke(cli_runner, "auth", "login", "--hostname", "evil.com/x", "--token", "x")
        assert result.exit_code == 2

    def test_rejected_token(self, cli_runner, file_store: FileCredentialStore) -> None:
        with patch(
            "labctl.client.httpx.get",
            return_value=_mock_response({"message": "401 Unauthorized"}, status_code=401),
        ):
            result = _invoke(cli_runner, "auth", "login", "--hostname", HOST, "--token", "glpat-bad")

        assert result.exit_code == 3
        assert "Error: HTTP 401" in result.output
        assert file_store.load(HOST) is None


class TestLoginWithOAuth:
    @pytest.fixture
    def redirect_uri(self) -> str:
        return f"http://127.0.0.1:{_free_port()}/auth/redirect"

    @pytest.fixture
    def token_endpoint(self):
        payload = {
            "access_token": "oauth-access-token",
            "refresh_token": "oauth-refresh-token",
            "expires_in": 7200,
            "created_at": 1_700_000_000,
        }
        with patch(
            "labctl.auth.token_client.httpx.post", return_value=_mock_response(payload)
        ) as mock_post, patch(
            "labctl.client.httpx.get", return_value=_mock_response({"username": "alice"})
        ):
            yield mock_post

    def test_prompts_for_client_id_and_stores_it(
        self, cli_runner, file_store: FileCredentialStore, redirect_uri: str, token_endpoint
    ) -> None:
        with patch("labctl.auth.manager.open_in_browser", _approve_in_browser):
            result = _invoke(
                cli_runner, "auth", "login", "--hostname", HOST, "--redirect-uri", redirect_uri,
                input="client-xyz\n",
            )

        assert result.exit_code == 0, result.output
        assert "OAuth Application ID" in result.output
        assert f"Logged in to {HOST} as alice" in result.output
        record = file_store.load(HOST)
        assert record.auth_method is AuthMethod.OAUTH
        assert record.client_id == "client-xyz"
        assert record.redirect_uri == redirect_uri
        assert record.token_expires_at == 1_700_000_000 + 7200
        assert token_endpoint.call_args.kwargs["data"]["client_id"] == "client-xyz"

    def test_reuses_stored_application_settings(
        self, cli_runner, file_store: FileCredentialStore, redirect_uri: str, token_endpoint
    ) -> None:
        file_store.save(
            HostRecord(
                host=HOST,
                access_token="old",
                auth_method=AuthMethod.OAUTH,
                client_id="stored-client",
                redirect_uri=redirect_uri,
                scopes="api",
            )
        )
        opener = MagicMock(side_effect=_approve_in_browser)
        with patch("labctl.auth.manager.open_in_browser", opener):
            result = _invoke(cli_runner, "auth", "login", "--hostname", HOST)

        assert result.exit_code == 0, result.output
        assert "OAuth Application ID" not in result.output
        authorize = parse_qs(urlparse(opener.call_args.args[0]).query)
        assert authorize["client_id"] == ["stored-client"]
        assert authorize["scope"] == ["api"]
        assert file_store.load(HOST).access_token == "oauth-access-token"

    def test_no_input_without_client_id(self, cli_runner) -> None:
        result = cli_runner.invoke(
            app, ["--no-color", "--no-input", "auth", "login", "--hostname", HOST]
        )
        assert result.exit_code == 2
        assert "--client-id" in result.output


# ---------------------------------------------------------------------------
# auth logout / status / token / refresh
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout(self, cli_runner, file_store: FileCredentialStore, static_record: HostRecord) -> None:
        file_store.save(static_record)
        result = _invoke(cli_runner, "auth", "logout", "--hostname", HOST)
        assert result.exit_code == 0
        assert f"Logged out of {HOST}" in result.output
        assert file_store.load(HOST) is None

    def test_not_logged_in(self, cli_runner) -> None:
        result = _invoke(cli_runner, "auth", "logout", "--hostname", HOST)
        assert result.exit_code == 3
        assert f"not logged in to {HOST}" in result.output


class TestStatus:
    def test_no_hosts(self, cli_runner) -> None:
        result = _invoke(cli_runner, "auth", "status")
        assert result.exit_code == 3
        assert "no authenticated hosts" in result.output

    def test_plain_table(
        self, cli_runner, file_store: FileCredentialStore, static_record: HostRecord
    ) -> None:
        file_store.save(static_record)
        result = _invoke(cli_runner, "--plain", "auth", "status")

        assert result.exit_code == 0
        assert "Host\tUser\tSource\tMethod\tToken\tExpires" in result.output
        assert f"{HOST}\talice\t{HOST}\tstatic-token\tglpa****oken\tnever" in result.output
        assert "glpat-static-token" not in result.output

    def test_json(
        self, cli_runner, file_store: FileCredentialStore, oauth_record: HostRecord
    ) -> None:
        file_store.save(oauth_record)
        result = _invoke(cli_runner, "--json", "auth", "status")

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data[0]["host"] == HOST
        assert data[0]["auth_method"] == "oauth"
        assert data[0]["token"] == "old-****oken"
        assert data[0]["expires_at"] == oauth_record.token_expires_at


class TestToken:
    def test_prints_stored_token(
        self, cli_runner, file_store: FileCredentialStore, static_record: HostRecord
    ) -> None:
        file_store.save(static_record)
        result = _invoke(cli_runner, "auth", "token", "--hostname", HOST)
        assert result.exit_code == 0
        assert "glpat-static-token" in result.stdout

    def test_environment_token(self, cli_runner, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LABCTL_TOKEN", "env-token")
        result = _invoke(cli_runner, "auth", "token")
        assert result.exit_code == 0
        assert "env-token" in result.stdout

    def test_not_authenticated(self, cli_runner) -> None:
        result = _invoke(cli_runner, "auth", "token", "--hostname", HOST)
        assert result.exit_code == 3
        assert f"labctl auth login --hostname {HOST}" in result.output

    def test_failed_refresh_warns_and_prints_stale_token(
        self, cli_runner, file_store: FileCredentialStore, oauth_record: HostRecord
    ) -> None:
        file_store.save(oauth_record.model_copy(update={"token_expires_at": 1}))
        with patch(
            "labctl.auth.token_client.httpx.post",
            return_value=_mock_response({"error": "invalid_grant"}, status_code=400),
        ):
            result = _invoke(cli_runner, "auth", "token", "--hostname", HOST)

        assert result.exit_code == 0
        assert "old-access-token" in result.stdout
        assert "could not refresh the token" in result.output


class TestRefresh:
    def test_refresh(
        self, cli_runner, file_store: FileCredentialStore, oauth_record: HostRecord
    ) -> None:
        file_store.save(oauth_record)
        with patch(
            "labctl.auth.token_client.httpx.post",
            return_value=_mock_response({"access_token": "fresh", "expires_in": 7200}),
        ):
            result = _invoke(cli_runner, "auth", "refresh", "--hostname", HOST)

        assert result.exit_code == 0, result.output
        assert f"Refreshed token for {HOST}" in result.output
        assert file_store.load(HOST).access_token == "fresh"

    def test_refresh_failure_is_reported(
        self, cli_runner, file_store: FileCredentialStore, oauth_record: HostRecord
    ) -> None:
        file_store.save(oauth_record)
        with patch(
            "labctl.auth.token_client.httpx.post",
            return_value=_mock_response({"error": "invalid_grant"}, status_code=400),
        ):
            result = _invoke(cli_runner, "auth", "refresh", "--hostname", HOST)

        assert result.exit_code == 3
        assert "token refresh failed (HTTP 400)" in result.output

    def test_static_token(
        self, cli_runner, file_store: FileCredentialStore, static_record: HostRecord
    ) -> None:
        file_store.save(static_record)
        result = _invoke(cli_runner, "auth", "refresh", "--hostname", HOST)
        assert result.exit_code == 3
        assert "no refresh token stored" in result.output
