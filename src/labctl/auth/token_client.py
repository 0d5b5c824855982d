"""Wire-level calls to the host's OAuth endpoints.

* :func:`authorize_url` builds the browser URL for ``/oauth/authorize``.
* :func:`exchange_code` trades an authorization code plus PKCE verifier for
  tokens (``grant_type=authorization_code``).
* :func:`refresh_grant` trades a refresh token for new tokens
  (``grant_type=refresh_token``).

Both grants POST ``application/x-www-form-urlencoded`` bodies to
``https://<host>/oauth/token`` and parse the JSON reply into a
:class:`~labctl.models.TokenResponse`. Nothing here retries; callers decide
what a failure means.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from labctl.auth.pkce import CHALLENGE_METHOD
from labctl.exceptions import TokenExchangeError, TokenRefreshError, TokenResponseError
from labctl.models import TokenResponse

logger = logging.getLogger(__name__)

TOKEN_REQUEST_TIMEOUT = 30.0


def token_url(host: str) -> str:
    return f"https://{host}/oauth/token"


def authorize_url(
    host: str,
    client_id: str,
    redirect_uri: str,
    scopes: str,
    state: str,
    code_challenge: str,
) -> str:
    """Return the ``/oauth/authorize`` URL the user opens in a browser."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scopes,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": CHALLENGE_METHOD,
    }
    return f"https://{host}/oauth/authorize?{urlencode(params)}"


def _post_token(host: str, data: dict[str, str]) -> httpx.Response:
    logger.debug("POST %s grant_type=%s", token_url(host), data.get("grant_type"))
    return httpx.post(
        token_url(host),
        data=data,
        headers={"Accept": "application/json"},
        timeout=TOKEN_REQUEST_TIMEOUT,
    )


def _is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def _parse_token_response(response: httpx.Response) -> TokenResponse:
    try:
        return TokenResponse.model_validate(response.json())
    except ValueError as exc:
        # Covers both undecodable JSON and a body of the wrong shape.
        raise TokenResponseError(f"parsing token response: {exc}") from exc


def _oauth_error_code(response: httpx.Response) -> Optional[str]:
    """Return the ``error`` member of an OAuth error body, if there is one."""
    try:
        payload: Any = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return None


def exchange_code(
    host: str,
    client_id: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
) -> TokenResponse:
    """Exchange an authorization code for an access/refresh token pair.

    Args:
        host: Bare hostname of the service.
        client_id: OAuth application ID.
        code: Authorization code from the callback.
        redirect_uri: Must be byte-for-byte the URI sent to ``/oauth/authorize``.
        code_verifier: The PKCE verifier whose challenge was sent.

    Raises:
        TokenExchangeError: Non-2xx status (with status and body) or a
            transport failure.
        TokenResponseError: 2xx body that is not a token response.
    """
    data = {
        "client_id": client_id,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }
    try:
        response = _post_token(host, data)
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"requesting token: {exc}") from exc

    if not _is_success(response):
        raise TokenExchangeError(
            f"token exchange failed (HTTP {response.status_code}): {response.text}",
            status_code=response.status_code,
            body=response.text,
        )
    return _parse_token_response(response)


def refresh_grant(
    host: str,
    client_id: Optional[str],
    refresh_token: str,
    redirect_uri: Optional[str],
) -> TokenResponse:
    """Exchange a refresh token for a new token pair.

    Raises:
        TokenRefreshError: Non-2xx status or a transport failure. The OAuth
            ``error`` code is attached when the body carries one.
        TokenResponseError: 2xx body that is not a token response.
    """
    data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    }
    if client_id:
        data["client_id"] = client_id
    if redirect_uri:
        data["redirect_uri"] = redirect_uri

    try:
        response = _post_token(host, data)
    except httpx.HTTPError as exc:
        raise TokenRefreshError(f"token refresh failed: {exc}") from exc

    if not _is_success(response):
        raise TokenRefreshError(
            f"token refresh failed (HTTP {response.status_code})",
            status_code=response.status_code,
            error_code=_oauth_error_code(response),
        )
    return _parse_token_response(response)
