"""Abstract base class for authenticators.

This module defines the foundational types of the auth subsystem:

- :class:`AuthResult` -- a plain container for the HTTP headers and query
  parameters that an authenticator produces for one request.
- :class:`RequestDescription` -- the outbound request an authenticator is
  asked to authenticate.
- :class:`Authenticator` -- the abstract base class every credential
  scheme extends.
- :class:`NoAuth` -- the authenticator that adds nothing.

The set of schemes is closed: :class:`NoAuth`,
:class:`~ravelry.plugins.basic.BasicAuth`, and
:class:`~ravelry.plugins.oauth2.OAuth2Auth`. Each reports its
:class:`~ravelry.models.AuthKind` so callers can dispatch on it.

See Also:
    :mod:`ravelry.auth.manager` for per-endpoint resolution and for
    building an authenticator from a stored profile.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ravelry.models import AuthKind


class AuthResult:
    """Container for authentication artifacts to inject into HTTP requests.

    Args:
        headers: HTTP headers to add (e.g. ``{"Authorization": "Bearer ..."}``).
        params: Query-string parameters to add.

    Example::

        result = AuthResult(headers={"Authorization": "Bearer tok123"})
        assert result.headers["Authorization"] == "Bearer tok123"
    """

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ):
        self.headers = headers or {}
        self.params = params or {}

    def __repr__(self) -> str:
        return f"AuthResult(headers={sorted(self.headers)}, params={sorted(self.params)})"


@dataclass(frozen=True)
class RequestDescription:
    """The parts of an outbound request an authenticator may look at."""

    method: str
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    has_body: bool = False


class Authenticator(ABC):
    """Abstract base class for credential schemes.

    Every concrete scheme must provide:

    1. A :attr:`kind` property returning its :class:`~ravelry.models.AuthKind`.
    2. An async :meth:`authenticate` returning the :class:`AuthResult` for
       one outbound request.

    Authenticators are shared by concurrent requests, so
    :meth:`authenticate` must be safe to call from many tasks at once.
    """

    @property
    @abstractmethod
    def kind(self) -> AuthKind:
        """Return the kind of authentication this scheme provides."""
        ...

    @abstractmethod
    async def authenticate(self, request: RequestDescription) -> AuthResult:
        """Produce the credential material for one outbound request.

        Args:
            request: The request about to be sent.

        Returns:
            An :class:`AuthResult` with headers and/or params to inject.

        Raises:
            AuthError: If no usable credential can be produced.
        """
        ...

    def invalidate(self, result: AuthResult) -> None:
        """Tell the scheme that the server rejected *result* with HTTP 401.

        The default implementation does nothing; static credentials cannot
        be repaired by the client. Token-based schemes override this so the
        next request obtains a fresh token.
        """
        return None


class NoAuth(Authenticator):
    """Authenticator that adds no credentials."""

    @property
    def kind(self) -> AuthKind:
        return AuthKind.NONE

    async def authenticate(self, request: RequestDescription) -> AuthResult:
        return AuthResult()

    def __repr__(self) -> str:
        return "NoAuth()"
