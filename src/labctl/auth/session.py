"""Session resolution: the single place API code gets a bearer token from.

:class:`SessionResolver` owns the expiry policy. A token is considered due
for renewal once the current time is within :data:`EXPIRY_BUFFER_SECONDS`
of its recorded expiry; nothing else in the package repeats that number.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from labctl.auth.credential_store import CredentialStore
from labctl.auth.refresher import TokenRefresher
from labctl.config import env_token, validate_host
from labctl.exceptions import LabctlError, NotAuthenticatedError, TokenRefreshError
from labctl.models import HostRecord

logger = logging.getLogger(__name__)

EXPIRY_BUFFER_SECONDS = 300


class SessionResolver:
    """Return a live bearer token for a host, refreshing it when due.

    Args:
        store: Credential store holding the host records.
        refresher: Used when an OAuth token is inside the expiry buffer.
            Defaults to a :class:`~labctl.auth.refresher.TokenRefresher`
            writing back to *store*.
        clock: Returns the current Unix time.
        use_env: Honour ``LABCTL_TOKEN`` / ``GITLAB_TOKEN`` before stored
            records.

    Attributes:
        last_refresh_error: The error from the most recent refresh attempt
            that fell back to a stale token, or ``None``.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresher: Optional[TokenRefresher] = None,
        clock: Callable[[], float] = time.time,
        use_env: bool = True,
    ) -> None:
        self._store = store
        self._clock = clock
        self._refresher = refresher if refresher is not None else TokenRefresher(store, clock)
        self._use_env = use_env
        self.last_refresh_error: Optional[LabctlError] = None

    def needs_refresh(self, record: HostRecord) -> bool:
        """Whether *record* must be renewed before use.

        Static tokens never do. OAuth records without a known expiry
        (``token_expires_at == 0``, written before expiry was tracked) are
        treated as still valid.
        """
        if not record.is_oauth or record.token_expires_at == 0:
            return False
        return self._clock() >= record.token_expires_at - EXPIRY_BUFFER_SECONDS

    def resolve_token(self, host: str) -> str:
        """Return a bearer token for *host*.

        The common path reads the store and returns without any network
        call. When a refresh is due and fails for any reason, the current
        token is returned anyway; an expired token is then rejected by the
        API itself with a clear authentication error.

        Raises:
            InvalidUsageError: *host* is not a bare hostname.
            NotAuthenticatedError: Nothing is stored for *host*.
        """
        host = validate_host(host)
        self.last_refresh_error = None

        if self._use_env:
            token, var = env_token()
            if token:
                logger.debug("using token from %s for %s", var, host)
                return token

        record = self._store.load(host)
        if record is None:
            raise NotAuthenticatedError(
                f"not authenticated with {host}; run 'labctl auth login --hostname {host}'"
            )
        if not self.needs_refresh(record):
            return record.access_token

        try:
            return self._refresher.refresh(record)
        except LabctlError as exc:
            self.last_refresh_error = exc
            if isinstance(exc, TokenRefreshError) and exc.requires_login:
                logger.warning(
                    "refresh token for %s is no longer valid (%s); run "
                    "'labctl auth login --hostname %s'",
                    host,
                    exc,
                    host,
                )
            else:
                logger.warning("token refresh for %s failed: %s; using stored token", host, exc)
            return record.access_token
