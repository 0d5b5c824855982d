"""Exception hierarchy for labctl.

All exceptions inherit from :class:`LabctlError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`labctl.exit_codes`.
The top-level error handler in :func:`labctl.app.main` catches
``LabctlError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    LabctlError (exit 1)
    +-- InvalidUsageError            (exit 2)
    +-- AuthError                    (exit 3)
    |   +-- NotAuthenticatedError
    |   +-- SecurityError
    |   |   +-- StateMismatchError
    |   |   +-- EntropyError
    |   +-- AuthorizationDeniedError
    |   +-- CallbackError
    |   +-- CallbackTimeoutError
    |   +-- TokenExchangeError
    |   +-- TokenResponseError
    |   +-- TokenRefreshError
    |       +-- RefreshUnavailableError
    +-- NotFoundError                (exit 4)
    +-- ServerError                  (exit 5)
    +-- ConnectionError_             (exit 6)
    +-- PortInUseError               (exit 8)
    +-- ConfigError                  (exit 1)
"""

from __future__ import annotations

from typing import Optional

from labctl.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_RESOURCE_ERROR,
    EXIT_SERVER_ERROR,
)


class LabctlError(Exception):
    """Base exception for all labctl errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`labctl.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(LabctlError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(LabctlError):
    """Raised when authentication or authorisation fails."""

    exit_code = EXIT_AUTH_FAILURE


class NotAuthenticatedError(AuthError):
    """Raised when no credentials are stored for the requested host."""


class SecurityError(AuthError):
    """A security fault during login. Always fatal and never retried."""


class StateMismatchError(SecurityError):
    """The callback ``state`` did not match the value issued for this login (possible CSRF)."""


class EntropyError(SecurityError):
    """The operating system's random source failed while generating PKCE material."""


class AuthorizationDeniedError(AuthError):
    """The identity provider redirected back with an ``error`` parameter.

    Attributes:
        error: The OAuth ``error`` code (e.g. ``"access_denied"``).
        description: The provider's ``error_description``, verbatim.
    """

    def __init__(self, error: str, description: str = ""):
        message = f"authorization denied: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)
        self.error = error
        self.description = description


class CallbackError(AuthError):
    """The authorization callback was malformed (e.g. no ``code`` parameter)."""


class CallbackTimeoutError(AuthError):
    """No authorization callback arrived before the login timeout elapsed."""


class TokenExchangeError(AuthError):
    """The token endpoint rejected the authorization-code exchange.

    Attributes:
        status_code: HTTP status returned by the token endpoint, or ``None``
            when the request never got a response.
        body: Raw response body for diagnosis.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenResponseError(AuthError):
    """A successful token endpoint response could not be parsed."""


class TokenRefreshError(AuthError):
    """The token endpoint rejected a refresh-token grant.

    Attributes:
        status_code: HTTP status, or ``None`` for transport failures.
        error_code: The OAuth ``error`` field of the response body when
            present (``"invalid_grant"`` means the refresh token was revoked
            or has expired).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def requires_login(self) -> bool:
        """``True`` when retrying later cannot help and the user must log in again."""
        return self.error_code == "invalid_grant"


class RefreshUnavailableError(TokenRefreshError):
    """The stored session has no refresh token and cannot be renewed silently."""

    @property
    def requires_login(self) -> bool:
        return True


class NotFoundError(LabctlError):
    """Raised when the API returns HTTP 404 (resource not found)."""

    exit_code = EXIT_NOT_FOUND


class ServerError(LabctlError):
    """Raised when the API returns an HTTP 5xx server error."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(LabctlError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class PortInUseError(LabctlError):
    """The fixed OAuth callback address is already bound by another process."""

    exit_code = EXIT_RESOURCE_ERROR


class ConfigError(LabctlError):
    """Raised for configuration problems (invalid JSON, unreadable files)."""

    exit_code = EXIT_GENERIC_FAILURE
