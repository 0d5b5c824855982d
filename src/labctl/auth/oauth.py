"""Interactive OAuth2 Authorization Code + PKCE login.

:func:`run_oauth_flow` drives one complete login:

1. Generate the PKCE verifier/challenge and a CSRF ``state``.
2. Bind the loopback :class:`~labctl.auth.callback.CallbackListener`.
3. Show (and optionally open) the ``/oauth/authorize`` URL.
4. Block until the redirect arrives, the provider refuses, or the timeout hits.
5. Exchange the code for tokens and confirm them against ``GET /user``.
6. Write the complete host record back to the credential store.

Any failure along the way aborts the attempt; nothing is retried.
"""

from __future__ import annotations

import logging
import time
import webbrowser
from typing import Callable, Optional

from labctl.auth.callback import CallbackListener
from labctl.auth.credential_store import CredentialStore
from labctl.auth.pkce import generate_pkce
from labctl.auth.token_client import authorize_url, exchange_code
from labctl.client import fetch_current_user
from labctl.exceptions import InvalidUsageError
from labctl.models import AuthMethod, HostRecord, LoginParams

logger = logging.getLogger(__name__)

BrowserOpener = Callable[[str], bool]
Notifier = Callable[[str], None]


def open_in_browser(url: str) -> bool:
    """Open *url* with the system browser. Returns ``False`` if none could be launched."""
    try:
        return webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.debug("could not open browser: %s", exc)
        return False


def run_oauth_flow(
    host: str,
    params: LoginParams,
    store: CredentialStore,
    open_browser: Optional[BrowserOpener] = open_in_browser,
    notify: Optional[Notifier] = None,
    clock: Callable[[], float] = time.time,
) -> HostRecord:
    """Log in to *host* through the browser and persist the resulting tokens.

    Fields of an existing record that the login does not produce (such as
    the git protocol) are preserved.

    Args:
        host: Bare hostname.
        params: OAuth application parameters; ``client_id`` is required.
        store: Credential store the new record is written to.
        open_browser: Called with the authorization URL. ``None`` (or
            ``params.open_browser`` false) only prints the URL.
        notify: Receives progress lines meant for the user.
        clock: Current Unix time, used when the token response has no
            ``created_at``.

    Returns:
        The record that was saved.

    Raises:
        InvalidUsageError: No client ID, or a malformed redirect URI.
        PortInUseError: The redirect URI's port is taken.
        SecurityError: State mismatch or entropy failure.
        AuthorizationDeniedError: The user or provider refused.
        CallbackError: The callback had no code.
        CallbackTimeoutError: The user never completed the browser step.
        TokenExchangeError: The token endpoint refused the code.
        TokenResponseError: The token endpoint replied with garbage.
        AuthError: The new token was rejected by ``GET /user``.
    """
    if not params.client_id:
        raise InvalidUsageError(
            f"an OAuth application ID is required; create one at "
            f"https://{host}/-/user_settings/applications and pass --client-id"
        )
    say = notify or logger.info

    pkce = generate_pkce()
    with CallbackListener(
        params.redirect_uri,
        expected_state=pkce.state,
        timeout=params.callback_timeout,
    ) as listener:
        url = authorize_url(
            host,
            params.client_id,
            params.redirect_uri,
            params.scopes,
            pkce.state,
            pkce.code_challenge,
        )
        opened = False
        if params.open_browser and open_browser is not None:
            opened = open_browser(url)
        if opened:
            say(f"Opening {host} in your browser...")
        else:
            say(f"Open this URL in your browser to authenticate:\n  {url}")
        say("Waiting for authentication...")
        code = listener.wait()

    tokens = exchange_code(
        host, params.client_id, code, params.redirect_uri, pkce.code_verifier
    )
    user = fetch_current_user(host, tokens.access_token)

    now = clock()
    existing = store.load(host)
    merged = existing.model_dump() if existing is not None else {}
    merged.update(
        host=host,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_created_at=tokens.issued_at(now),
        token_expires_at=tokens.expires_at(now),
        auth_method=AuthMethod.OAUTH,
        client_id=params.client_id,
        redirect_uri=params.redirect_uri,
        scopes=params.scopes,
        username=user.get("username"),
    )
    if params.git_protocol:
        merged["git_protocol"] = params.git_protocol
    record = HostRecord.model_validate(merged)
    store.save(record)
    logger.debug("stored OAuth credentials for %s", host)
    return record
