"""Authentication core for labctl.

This package owns every credential the CLI uses: it runs the OAuth2
Authorization Code + PKCE browser login, stores per-host records, and keeps
OAuth access tokens fresh.

The main entry points are:

- :class:`AuthManager` -- login, logout, status and token resolution.
- :func:`create_default_manager` -- an :class:`AuthManager` backed by the
  hosts file in the config directory.
- :class:`SessionResolver` -- the expiry policy; returns a live bearer token.
- :class:`CredentialStore` / :class:`FileCredentialStore` -- persistence of
  :class:`~labctl.models.HostRecord` objects.

Typical usage::

    from labctl.auth import create_default_manager
    from labctl.client import api_url

    manager = create_default_manager()
    headers = {"Authorization": f"Bearer {manager.resolve_token(host)}"}
    base_url = api_url(host)
"""

from labctl.auth.callback import CallbackListener
from labctl.auth.credential_store import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
)
from labctl.auth.manager import AuthManager, create_default_manager, mask_token
from labctl.auth.pkce import PKCEParams, generate_pkce
from labctl.auth.refresher import TokenRefresher
from labctl.auth.session import EXPIRY_BUFFER_SECONDS, SessionResolver

__all__ = [
    "AuthManager",
    "CallbackListener",
    "CredentialStore",
    "EXPIRY_BUFFER_SECONDS",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "PKCEParams",
    "SessionResolver",
    "TokenRefresher",
    "create_default_manager",
    "generate_pkce",
    "mask_token",
]
