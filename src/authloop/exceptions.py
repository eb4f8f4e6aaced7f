"""Exception hierarchy for authloop.

All fatal errors inherit from :class:`AuthloopError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`authloop.exit_codes`.
The top-level error handler in :func:`authloop.app.main` catches
``AuthloopError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    AuthloopError (exit 1)
    +-- InvalidUsageError        (exit 2)
    +-- ConfigurationError       (exit 1)
    +-- AllAddressesUnavailable  (exit 6)
    +-- AuthError                (exit 3)
    |   +-- AuthorizationDenied  (exit 3)
    |   +-- TokenExchangeError   (exit 3)
    +-- AuthorizationCancelled   (exit 130)

:class:`ShutdownWarning` is not an error: it is emitted through
:mod:`logging` when the local server could not be closed cleanly after the
outcome of the flow was already decided.
"""

from __future__ import annotations

from authloop.exit_codes import (
    EXIT_ADDRESS_UNAVAILABLE,
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class AuthloopError(Exception):
    """Base exception for all authloop errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`authloop.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(AuthloopError):
    """Raised for invalid CLI arguments or missing required options."""

    exit_code = EXIT_INVALID_USAGE


class ConfigurationError(AuthloopError):
    """Raised for configuration problems detected before any network operation.

    Covers partial or malformed TLS material, unparseable bind addresses,
    missing profiles, and credential sources that cannot be resolved.
    """

    exit_code = EXIT_GENERIC_FAILURE


class AllAddressesUnavailable(AuthloopError):
    """Raised when every candidate bind address failed.

    Args:
        errors: ``(candidate, OSError)`` pairs in the order they were tried.
    """

    exit_code = EXIT_ADDRESS_UNAVAILABLE

    def __init__(self, errors: list[tuple[str, OSError]]):
        self.errors = list(errors)
        details = "; ".join(f"{candidate}: {exc}" for candidate, exc in self.errors)
        super().__init__(f"could not bind any of the candidate addresses ({details})")


class AuthError(AuthloopError):
    """Raised when the authorization flow fails on the provider side."""

    exit_code = EXIT_AUTH_FAILURE


class AuthorizationDenied(AuthError):
    """Raised when the provider redirected back with an ``error`` parameter.

    Args:
        error_code: The ``error`` query parameter (e.g. ``access_denied``).
        description: The ``error_description`` query parameter, possibly empty.
    """

    def __init__(self, error_code: str, description: str = ""):
        self.error_code = error_code
        self.description = description
        message = f"authorization denied by the provider: {error_code}"
        if description:
            message += f" ({description})"
        super().__init__(message)


class TokenExchangeError(AuthError):
    """Raised when the authorization code could not be exchanged for a token."""


class AuthorizationCancelled(AuthloopError):
    """Raised when the wait was cancelled before any callback result arrived.

    Kept apart from :class:`AuthorizationDenied` so callers can tell a
    user abort or timeout from a provider rejection.
    """

    exit_code = EXIT_CANCELLED

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"authorization was cancelled: {reason}")


class ShutdownWarning(UserWarning):
    """The local server did not shut down cleanly within its grace period."""
