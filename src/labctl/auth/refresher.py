"""Silent renewal of OAuth access tokens from a stored refresh token."""

from __future__ import annotations

import logging
import time
from typing import Callable

from labctl.auth.credential_store import CredentialStore
from labctl.auth.token_client import refresh_grant
from labctl.exceptions import ConfigError, RefreshUnavailableError
from labctl.models import HostRecord

logger = logging.getLogger(__name__)


class TokenRefresher:
    """Exchange a host's refresh token for new tokens and persist the result.

    The refresher never retries and never prompts. Every failure is raised
    to the caller, which decides whether a stale token is acceptable.

    Args:
        store: Where the updated record is written back.
        clock: Returns the current Unix time; ``time.time`` by default.
    """

    def __init__(
        self,
        store: CredentialStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    def refresh(self, record: HostRecord) -> str:
        """Renew the access token for *record* and return it.

        Only the token fields and both timestamps change; username, client
        ID, redirect URI, scopes, auth method and git protocol are carried
        over untouched. If the server does not rotate the refresh token the
        old one is kept.

        The new access token is returned even when writing the updated record
        fails; the write failure is only logged as a warning.

        Raises:
            RefreshUnavailableError: The record is not OAuth or has no
                refresh token. The user has to log in again.
            TokenRefreshError: The token endpoint refused the grant or could
                not be reached.
            TokenResponseError: The endpoint answered 2xx with an
                unparseable body.
        """
        if not record.is_oauth or not record.refresh_token:
            raise RefreshUnavailableError(
                f"no refresh token stored for {record.host}; re-authenticate "
                f"with 'labctl auth login --hostname {record.host}'"
            )

        tokens = refresh_grant(
            record.host,
            record.client_id,
            record.refresh_token,
            record.redirect_uri,
        )
        now = self._clock()
        updated = record.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or record.refresh_token,
                "token_created_at": tokens.issued_at(now),
                "token_expires_at": tokens.expires_at(now),
            }
        )
        try:
            self._store.save(updated)
        except (ConfigError, OSError) as exc:
            logger.warning("refreshed token for %s could not be saved: %s", record.host, exc)
            return updated.access_token
        logger.debug(
            "refreshed token for %s, expires at %s", record.host, updated.token_expires_at
        )
        return updated.access_token
