"""Auth manager -- the entry point the rest of labctl uses for credentials.

The :class:`AuthManager` ties together the credential store, the session
resolver and both login paths (browser OAuth and static personal access
token). Command handlers and API client construction only ever call
:meth:`AuthManager.resolve_token` and :meth:`AuthManager.login`, plus the
housekeeping methods behind ``labctl auth logout/status/refresh``.

For most use cases, call :func:`create_default_manager` to get a manager
backed by the on-disk hosts file.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from labctl.auth.credential_store import CredentialStore, FileCredentialStore
from labctl.auth.oauth import BrowserOpener, Notifier, open_in_browser, run_oauth_flow
from labctl.auth.refresher import TokenRefresher
from labctl.auth.session import SessionResolver
from labctl.client import fetch_current_user
from labctl.config import env_token, resolve_host, validate_host
from labctl.exceptions import InvalidUsageError, NotAuthenticatedError
from labctl.models import AuthMethod, HostRecord, LoginParams, Status


def mask_token(token: str) -> str:
    """Show the first and last four characters of *token*, or ``****`` if it is short."""
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}****{token[-4:]}"


class AuthManager:
    """Login, logout, status and token resolution for every host.

    Args:
        store: Credential store. Defaults to the hosts file in the config
            directory.
        open_browser: Used by the OAuth flow to launch the browser.
        notify: Receives user-facing progress lines during login.
        clock: Current Unix time, shared with the resolver and refresher.

    Example::

        manager = create_default_manager()
        token = manager.resolve_token("gitlab.com")
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        open_browser: Optional[BrowserOpener] = open_in_browser,
        notify: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store if store is not None else FileCredentialStore()
        self._open_browser = open_browser
        self._notify = notify
        self._clock = clock
        self._refresher = TokenRefresher(self._store, clock)
        self._resolver = SessionResolver(self._store, self._refresher, clock)

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def resolver(self) -> SessionResolver:
        return self._resolver

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def resolve_token(self, host: str) -> str:
        """Return a usable bearer token for *host*; see :class:`SessionResolver`."""
        return self._resolver.resolve_token(host)

    def refresh(self, host: str) -> str:
        """Force a refresh for *host*, raising instead of falling back.

        Raises:
            NotAuthenticatedError: Nothing is stored for *host*.
            RefreshUnavailableError: The record cannot be refreshed.
            TokenRefreshError: The token endpoint refused or was unreachable.
        """
        host = validate_host(host)
        record = self._store.load(host)
        if record is None:
            raise NotAuthenticatedError(
                f"not authenticated with {host}; run 'labctl auth login --hostname {host}'"
            )
        return self._refresher.refresh(record)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, host: str, params: LoginParams) -> Status:
        """Authenticate with *host* and store the credentials.

        A ``params.token`` selects the static personal-token path;
        otherwise the interactive OAuth flow runs.
        """
        host = validate_host(host)
        if params.token is not None:
            record = self.login_with_token(host, params.token, params.git_protocol)
        else:
            record = run_oauth_flow(
                host,
                params,
                self._store,
                open_browser=self._open_browser,
                notify=self._notify,
                clock=self._clock,
            )
        return self._status_for(record)

    def login_with_token(
        self,
        host: str,
        token: str,
        git_protocol: Optional[str] = None,
    ) -> HostRecord:
        """Verify a personal access token against ``GET /user`` and store it.

        OAuth application settings already stored for the host are kept so a
        later OAuth login does not prompt for them again.

        Raises:
            InvalidUsageError: *token* is empty.
            AuthError: The host rejected the token.
        """
        token = token.strip()
        if not token:
            raise InvalidUsageError("no token provided; use --token or pipe a token via --stdin")
        user = fetch_current_user(host, token)

        existing = self._store.load(host)
        merged = existing.model_dump() if existing is not None else {}
        merged.update(
            host=host,
            access_token=token,
            refresh_token=None,
            token_created_at=0,
            token_expires_at=0,
            auth_method=AuthMethod.STATIC_TOKEN,
            username=user.get("username"),
        )
        if git_protocol:
            merged["git_protocol"] = git_protocol
        record = HostRecord.model_validate(merged)
        self._store.save(record)
        return record

    def logout(self, host: str) -> None:
        """Delete the stored record for *host*.

        Raises:
            NotAuthenticatedError: Nothing was stored for *host*.
        """
        host = validate_host(host)
        if not self._store.delete(host):
            raise NotAuthenticatedError(f"not logged in to {host}")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def statuses(self) -> list[Status]:
        """Describe every credential labctl would use, without network calls.

        A token from the environment is listed first, attributed to the
        default host.

        Raises:
            NotAuthenticatedError: No credentials exist at all.
        """
        result: list[Status] = []
        token, var = env_token()
        if token and var:
            result.append(Status(host=resolve_host(), token=mask_token(token), source=var))

        for host in self._store.hosts():
            record = self._store.load(host)
            if record is not None:
                result.append(self._status_for(record))

        if not result:
            raise NotAuthenticatedError(
                "no authenticated hosts; run 'labctl auth login' to authenticate"
            )
        return result

    def _status_for(self, record: HostRecord) -> Status:
        # Expired tokens with a refresh token are renewed on next use.
        expired = (
            record.is_oauth
            and record.token_expires_at != 0
            and self._clock() >= record.token_expires_at
            and not record.refresh_token
        )
        return Status(
            host=record.host,
            user=record.username,
            token=mask_token(record.access_token),
            source=record.host,
            auth_method=record.auth_method,
            expires_at=record.token_expires_at,
            active=not expired,
            error="token expired; log in again" if expired else None,
        )


def create_default_manager(notify: Optional[Notifier] = None) -> AuthManager:
    """Create an :class:`AuthManager` backed by the hosts file and the system browser."""
    return AuthManager(FileCredentialStore(), open_browser=open_in_browser, notify=notify)
