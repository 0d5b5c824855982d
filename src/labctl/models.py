"""Pydantic models shared across the entire labctl package.

Persisted state:
    :class:`HostRecord` (one per authenticated host, owned by the
    credential store), :class:`OAuthConfig` and :class:`GlobalConfig`
    (``config.json``).

Wire and result types:
    :class:`AuthMethod`, :class:`TokenResponse` (token endpoint JSON),
    :class:`LoginParams` (input to a login) and :class:`Status`
    (result of a login and of ``labctl auth status``).
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_HOST = "gitlab.com"
DEFAULT_SCOPES = "openid profile api read_user write_repository"
DEFAULT_REDIRECT_URI = "http://localhost:7171/auth/redirect"
DEFAULT_CALLBACK_TIMEOUT = 300.0


class AuthMethod(str, enum.Enum):
    """How the credential in a :class:`HostRecord` was obtained."""

    STATIC_TOKEN = "static-token"
    OAUTH = "oauth"


class HostRecord(BaseModel):
    """Persisted authentication state for one remote host.

    Timestamps are Unix seconds. A static personal access token has both
    ``token_created_at`` and ``token_expires_at`` set to ``0`` and is never
    refreshed. OAuth records carry the application parameters used to obtain
    them so that refresh and re-login never need to prompt again.
    """

    host: str = Field(description="Hostname only, without scheme or path")
    access_token: str = Field(description="Bearer credential presented to the API")
    refresh_token: Optional[str] = Field(
        default=None,
        description="OAuth refresh token; None for static tokens",
    )
    token_created_at: int = 0
    token_expires_at: int = 0
    auth_method: AuthMethod = AuthMethod.STATIC_TOKEN
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: Optional[str] = None
    username: Optional[str] = None
    git_protocol: Optional[str] = Field(
        default=None,
        description="Preferred git protocol for this host (https or ssh)",
    )

    @field_validator("auth_method", mode="before")
    @classmethod
    def _legacy_auth_method(cls, value: Any) -> Any:
        # Older hosts files wrote "pat" or nothing for personal tokens.
        if value in (None, "", "pat"):
            return AuthMethod.STATIC_TOKEN
        return value

    @property
    def is_oauth(self) -> bool:
        return self.auth_method is AuthMethod.OAUTH


class TokenResponse(BaseModel):
    """JSON body returned by ``POST /oauth/token``."""

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int = 0
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    created_at: int = 0

    def issued_at(self, now: float) -> int:
        """Return ``created_at``, or *now* when the server omitted it."""
        return self.created_at or int(now)

    def expires_at(self, now: float) -> int:
        """Absolute expiry (``created_at + expires_in``), ``0`` when unknown."""
        if self.expires_in <= 0:
            return 0
        return self.issued_at(now) + self.expires_in


class OAuthConfig(BaseModel):
    """Default OAuth application parameters from ``config.json``."""

    client_id: Optional[str] = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: str = DEFAULT_SCOPES
    callback_timeout: float = Field(
        default=DEFAULT_CALLBACK_TIMEOUT,
        gt=0,
        description="Seconds to wait for the browser callback",
    )


class GlobalConfig(BaseModel):
    """Global settings stored in ``<config_dir>/config.json``."""

    default_host: Optional[str] = None
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)


class LoginParams(BaseModel):
    """Inputs to a login attempt.

    When ``token`` is set a static personal access token is stored; otherwise
    the OAuth browser flow runs with the given application parameters.
    """

    token: Optional[str] = None
    client_id: Optional[str] = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: str = DEFAULT_SCOPES
    git_protocol: Optional[str] = None
    callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT
    open_browser: bool = True


class Status(BaseModel):
    """Authentication status for one host, safe to display."""

    host: str
    user: Optional[str] = None
    token: str = Field(description="Masked token")
    source: str = Field(description="Where the token came from (host name or env var)")
    auth_method: Optional[AuthMethod] = None
    expires_at: int = 0
    active: bool = Field(default=True, description="False once the token has expired for good")
    error: Optional[str] = None
