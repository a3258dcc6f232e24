"""Exception hierarchy for izcli.

All exceptions inherit from :class:`IzError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`izcli.exit_codes`.
The top-level error handler in :func:`izcli.app.main` catches ``IzError``
and exits with the appropriate code, while unexpected exceptions produce a
crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    IzError (exit 1)
    +-- InvalidUsageError        (exit 2)
    |   +-- ResolutionError      (exit 2)
    |   +-- ConfigValidationError(exit 2)
    +-- AuthError                (exit 3)
    +-- NotFoundError            (exit 4)
    |   +-- ProfileNotFoundError (exit 4)
    |   +-- SessionNotFoundError (exit 4)
    +-- ConnectionError_         (exit 6)
    +-- ConfigError              (exit 1)
        +-- PersistenceError     (exit 1)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from izcli.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
)

if TYPE_CHECKING:
    from izcli.models import ValidationIssue


class IzError(Exception):
    """Base exception for all izcli errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`izcli.exit_codes`. The entry point catches this
    exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(IzError):
    """Raised for invalid CLI arguments or unrecognised config keys."""

    exit_code = EXIT_INVALID_USAGE


class ResolutionError(InvalidUsageError):
    """Raised when a required field (URL, username, tenant, credentials) has no source.

    The message always names the missing field and the command form or
    environment variable that would supply it.
    """


class ConfigValidationError(InvalidUsageError):
    """Aggregate validation failure listing every violation found.

    Args:
        issues: All :class:`~izcli.models.ValidationIssue` entries, in the
            order they were detected.
    """

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = list(issues)
        lines = [f"configuration has {len(self.issues)} error(s)"]
        lines.extend(f"  {issue.field}: {issue.message}" for issue in self.issues)
        super().__init__("\n".join(lines))


class AuthError(IzError):
    """Raised when authentication fails (bad credentials, empty password, no token)."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(IzError):
    """Raised when a named entity does not exist."""

    exit_code = EXIT_NOT_FOUND


class ProfileNotFoundError(NotFoundError):
    """Raised when a profile name is not present in the config document."""


class SessionNotFoundError(NotFoundError):
    """Raised when a session name is not present in the session document."""


class ConnectionError_(IzError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class ConfigError(IzError):
    """Raised for configuration problems (malformed YAML, existing file on init)."""

    exit_code = EXIT_GENERIC_FAILURE


class PersistenceError(ConfigError):
    """Raised when a config or session document cannot be written to disk."""
