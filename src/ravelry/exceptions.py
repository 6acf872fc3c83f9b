"""Exception hierarchy for ravelry.

All exceptions inherit from :class:`RavelryError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`ravelry.exit_codes`.
The top-level error handler in :func:`ravelry.app.main` catches
``RavelryError`` and exits with the appropriate code.

Subclass hierarchy::

    RavelryError (exit 1)
    +-- InvalidUsageError          (exit 2)
    +-- ConfigError                (exit 1)
    +-- AuthError                  (exit 3)
    |   +-- Unauthenticated
    |   +-- RefreshFailed
    |   +-- AuthorizationAborted
    |   +-- AuthorizationInProgress
    +-- ApiError                   (exit 4)
    |   +-- RateLimited            (exit 5)
    +-- TransportError             (exit 6)
    +-- NotModified                (exit 7)

Every error carries enough structure (status, retry timing, abort reason)
for a presentation layer to render an actionable message without looking
at raw transport objects.
"""

from __future__ import annotations

import enum
import json
from typing import Any, Optional

import httpx

from ravelry.exit_codes import (
    EXIT_API_ERROR,
    EXIT_AUTH_FAILURE,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_MODIFIED,
    EXIT_RATE_LIMITED,
    EXIT_TRANSPORT_ERROR,
)


class RavelryError(Exception):
    """Base exception for all ravelry errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code

    @property
    def is_retryable(self) -> bool:
        """Whether a caller-side retry policy may reasonably try again."""
        return False

    @property
    def retry_after(self) -> Optional[int]:
        """Seconds to wait before retrying, when the server said so."""
        return None


class InvalidUsageError(RavelryError):
    """Raised for invalid CLI arguments or malformed request descriptions."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(RavelryError):
    """Raised for configuration problems (missing profiles, invalid JSON, bad settings)."""

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(RavelryError):
    """Raised when authentication fails."""

    exit_code = EXIT_AUTH_FAILURE


class Unauthenticated(AuthError):
    """No usable credential is available.

    Raised when an OAuth2 token is expired and there is no refresh token,
    or when no token was ever obtained. Callers must not retry
    automatically; the user has to authorize again.
    """


class RefreshFailed(AuthError):
    """The provider rejected the refresh token, or the refresh exchange failed.

    Not retried within a single ``get_valid_token`` call. The caller must
    start a fresh interactive authorization flow.

    Args:
        message: Human-readable description.
        status: HTTP status returned by the token endpoint, if any.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AbortReason(str, enum.Enum):
    """Why an OAuth2 authorization attempt ended without tokens."""

    TIMEOUT = "timeout"
    DENIED = "denied"
    MISSING_CODE = "missing_code"
    STATE_MISMATCH = "state_mismatch"
    EXCHANGE_FAILED = "exchange_failed"
    LISTENER_FAILED = "listener_failed"


class AuthorizationAborted(AuthError):
    """An authorization-code flow attempt terminated early.

    The attempt is dead; the caller may start a new one.

    Args:
        reason: The :class:`AbortReason` for the abort.
        detail: Optional human-readable detail (provider error text, etc.).
    """

    def __init__(self, reason: AbortReason, detail: str | None = None):
        message = f"Authorization aborted ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.reason = reason
        self.detail = detail


class AuthorizationInProgress(AuthError):
    """Raised when a second authorization attempt is started on a busy flow engine."""


class ApiError(RavelryError):
    """The API answered with a non-success status.

    Args:
        status: HTTP status code.
        body: Raw response body bytes.
        error: The body parsed as JSON, or ``None`` if it was not JSON.
    """

    exit_code = EXIT_API_ERROR

    def __init__(self, status: int, body: bytes = b"", error: Any = None):
        self.status = status
        self.body = body
        self.error = error
        super().__init__(f"API error {status}: {_describe_body(body, error)}")


class RateLimited(ApiError):
    """The API answered HTTP 429.

    Args:
        retry_after: Seconds from the ``Retry-After`` header, or ``None``.
        body: Raw response body bytes.
        error: The body parsed as JSON, or ``None``.
    """

    exit_code = EXIT_RATE_LIMITED

    def __init__(
        self,
        retry_after: int | None = None,
        body: bytes = b"",
        error: Any = None,
    ):
        super().__init__(429, body, error)
        self._retry_after = retry_after
        if retry_after is None:
            self.args = ("Rate limited",)
        else:
            self.args = (f"Rate limited, retry after {retry_after}s",)

    @property
    def is_retryable(self) -> bool:
        return True

    @property
    def retry_after(self) -> Optional[int]:
        return self._retry_after


class TransportError(RavelryError):
    """The request never produced a usable response.

    Covers network failures (connection refused, TLS failure, timeout) and
    2xx responses whose body could not be decoded into the expected shape.

    Args:
        cause: The underlying exception.
    """

    exit_code = EXIT_TRANSPORT_ERROR

    def __init__(self, cause: BaseException):
        super().__init__(f"Transport error: {cause}")
        self.cause = cause

    @property
    def is_retryable(self) -> bool:
        return isinstance(self.cause, (httpx.ConnectError, httpx.TimeoutException))


class DecodeError(ValueError):
    """A success response body did not match the expected payload shape."""


class NotModified(RavelryError):
    """A conditional request matched the current ETag (HTTP 304).

    Args:
        etag: The ETag value returned by the server.
    """

    exit_code = EXIT_NOT_MODIFIED

    def __init__(self, etag: str | None):
        super().__init__(f"Not modified (ETag {etag})")
        self.etag = etag


def _describe_body(body: bytes, error: Any) -> str:
    """Short textual form of an error body for exception messages."""
    if isinstance(error, dict):
        msg = error.get("message") or error.get("error") or error.get("errors")
        if msg:
            return str(msg)
        return json.dumps(error)[:200]
    if error is not None:
        return str(error)[:200]
    return body[:200].decode("utf-8", errors="replace")
