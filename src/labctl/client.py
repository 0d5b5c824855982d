"""Minimal REST helpers shared by login and API-calling commands.

API-calling code obtains a token from
:meth:`~labctl.auth.manager.AuthManager.resolve_token` and the base URL from
:func:`api_url`; :func:`fetch_current_user` is the one request the auth core
itself makes, to confirm a freshly obtained token and learn the username.
"""

from __future__ import annotations

from typing import Any

import httpx

from labctl.exceptions import AuthError, ConnectionError_, NotFoundError, ServerError

API_REQUEST_TIMEOUT = 30.0


def api_url(host: str) -> str:
    """Return the REST v4 base URL for *host*."""
    return f"https://{host}/api/v4"


def _map_response_error(response: httpx.Response) -> None:
    """Raise a typed exception for error HTTP status codes."""
    status = response.status_code
    if status < 400:
        return

    try:
        detail = response.json()
        if isinstance(detail, dict):
            msg = detail.get("message") or detail.get("error_description") or detail.get("error") or ""
        else:
            msg = str(detail)
    except ValueError:
        msg = response.text[:200] if response.text else ""

    prefix = f"HTTP {status}"
    full_msg = f"{prefix}: {msg}" if msg else prefix

    if status in (401, 403):
        raise AuthError(full_msg)
    if status == 404:
        raise NotFoundError(full_msg)
    # Other 4xx are reported with the 5xx class and their status info.
    raise ServerError(full_msg)


def fetch_current_user(host: str, token: str) -> dict[str, Any]:
    """Return the ``GET /user`` payload for the owner of *token*.

    Raises:
        AuthError: The token was rejected (401/403).
        NotFoundError: The host has no such endpoint.
        ServerError: Any other error status.
        ConnectionError_: The host could not be reached.
    """
    try:
        response = httpx.get(
            f"{api_url(host)}/user",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            timeout=API_REQUEST_TIMEOUT,
        )
    except httpx.HTTPError as exc:
        raise ConnectionError_(f"authenticating with {host}: {exc}") from exc

    _map_response_error(response)
    try:
        payload = response.json()
    except ValueError as exc:
        raise ServerError(f"unexpected response from {host}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ServerError(f"unexpected response from {host}: expected a user object")
    return payload
