"""HTTP Basic authentication with a Ravelry key pair.

This module provides :class:`BasicAuth`, the ``basic`` scheme. The access
key and the personal (or read-only secret) key are joined as
``"access_key:personal_key"``, Base64-encoded, and sent as an
``Authorization: Basic <encoded>`` header per :rfc:`7617`.

Two modes share the same mechanism:

- **Read-only** -- access key + secret key; public endpoints only.
- **Personal** -- access key + personal key; full access to the account.

See Also:
    :class:`ravelry.auth.base.Authenticator` for the base interface.
"""

from __future__ import annotations

import base64

from ravelry.auth.base import AuthResult, Authenticator, RequestDescription
from ravelry.exceptions import InvalidUsageError
from ravelry.models import AuthKind, BasicKeyPair


class BasicAuth(Authenticator):
    """Authenticate via HTTP Basic authentication.

    The header is computed once at construction; every request gets the
    same value.

    Args:
        access_key: Ravelry API access key (the Basic username).
        personal_key: Personal key for full access, or the secret key for
            read-only access (the Basic password).

    Raises:
        InvalidUsageError: If the access key contains a colon, which would
            make the encoded pair ambiguous.
    """

    def __init__(self, access_key: str, personal_key: str) -> None:
        if ":" in access_key:
            raise InvalidUsageError(
                "Basic auth access key must not contain a colon separator"
            )
        self._credential = BasicKeyPair(access_key=access_key, personal_key=personal_key)
        raw = f"{access_key}:{personal_key}"
        encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
        self._header = f"Basic {encoded}"

    @classmethod
    def from_key_pair(cls, credential: BasicKeyPair) -> BasicAuth:
        return cls(credential.access_key, credential.personal_key)

    @property
    def kind(self) -> AuthKind:
        return AuthKind.BASIC

    @property
    def access_key(self) -> str:
        """The access key (Basic username)."""
        return self._credential.access_key

    @property
    def credential(self) -> BasicKeyPair:
        return self._credential

    async def authenticate(self, request: RequestDescription) -> AuthResult:
        """Return the Basic auth header; identical for every request."""
        return AuthResult(headers={"Authorization": self._header})

    def __repr__(self) -> str:
        return f"BasicAuth(access_key={self.access_key!r}, personal_key='[REDACTED]')"
