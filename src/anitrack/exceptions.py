"""Exception hierarchy for anitrack.

All exceptions inherit from :class:`AnitrackError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`anitrack.exit_codes`.
The top-level error handler in :func:`anitrack.app.main` catches
``AnitrackError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    AnitrackError (exit 1)
    +-- InvalidUsageError         (exit 2)
    +-- ConfigError               (exit 1)
    +-- FlowError                 (exit 1)
    +-- CredentialWriteError      (exit 1)
    +-- AuthError                 (exit 3)
    |   +-- PKCEError
    |   +-- ListenerError
    |   |   +-- PortInUseError
    |   |   +-- BindError
    |   +-- CallbackError
    |   |   +-- AuthorizationDeniedError
    |   |   +-- CallbackTimeoutError
    |   |   +-- LoginCancelledError (exit 130)
    |   +-- TokenExchangeError
    |   +-- MalformedResponseError
    |   +-- CredentialNotFoundError
    |   +-- CorruptRecordError
    +-- NotFoundError             (exit 4)
    +-- ServerError               (exit 5)
    +-- ConnectionError_          (exit 6)
"""

from __future__ import annotations

from anitrack.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class AnitrackError(Exception):
    """Base exception for all anitrack errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`anitrack.exit_codes`. The entry point catches
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


class InvalidUsageError(AnitrackError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(AnitrackError):
    """Raised for configuration problems (invalid config file, no home directory, unresolvable client id)."""

    exit_code = EXIT_GENERIC_FAILURE


class FlowError(AnitrackError):
    """Raised when a :class:`~anitrack.auth.flow.LoginFlow` is driven out of order."""

    exit_code = EXIT_GENERIC_FAILURE


class CredentialWriteError(AnitrackError):
    """Raised when the credential file cannot be written.

    The previous credential file, if any, is left untouched.
    """

    exit_code = EXIT_GENERIC_FAILURE


# --- Login failures ---


class AuthError(AnitrackError):
    """Raised when logging in fails or no usable credential is available."""

    exit_code = EXIT_AUTH_FAILURE


class PKCEError(AuthError):
    """Raised when a PKCE pair cannot be generated (no entropy, unknown method)."""


class ListenerError(AuthError):
    """Base class for failures to bring up the local callback listener."""


class PortInUseError(ListenerError):
    """Raised when the callback port is already bound, e.g. by another login in progress."""


class BindError(ListenerError):
    """Raised for any other OS-level failure to bind the callback listener."""


class CallbackError(AuthError):
    """Base class for a login that ended without an authorization code."""


class AuthorizationDeniedError(CallbackError):
    """Raised when the provider redirects back with an ``error`` parameter.

    Args:
        error: The OAuth error code (e.g. ``access_denied``).
        description: Optional ``error_description`` sent by the provider.
    """

    def __init__(self, error: str, description: str | None = None):
        message = f"Authorization failed: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)
        self.error = error
        self.description = description


class CallbackTimeoutError(CallbackError):
    """Raised when no redirect arrives before the callback timeout."""


class LoginCancelledError(CallbackError):
    """Raised when the wait for the redirect is interrupted or cancelled."""

    exit_code = EXIT_CANCELLED


class TokenExchangeError(AuthError):
    """Raised when the token endpoint rejects the code or cannot be reached.

    Args:
        message: Human-readable description.
        status: HTTP status code, or ``None`` for transport failures.
        body: Raw response body, kept for diagnosis.
    """

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class MalformedResponseError(AuthError):
    """Raised when the token endpoint's body cannot be read as a token record."""


class CredentialNotFoundError(AuthError):
    """Raised when no credential file exists; the user has to log in first."""


class CorruptRecordError(AuthError):
    """Raised when the credential file exists but cannot be parsed or has no access token."""


# --- API failures ---


class NotFoundError(AnitrackError):
    """Raised when the API returns HTTP 404 (unknown user, etc.)."""

    exit_code = EXIT_NOT_FOUND


class ServerError(AnitrackError):
    """Raised when the API returns an HTTP 5xx server error or an unexpected 4xx."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(AnitrackError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR
