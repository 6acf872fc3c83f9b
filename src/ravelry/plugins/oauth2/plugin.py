"""OAuth2 bearer-token authentication.

This module provides :class:`OAuth2Auth`, the ``oauth2`` scheme. It sends
``Authorization: Bearer <access_token>`` with a token obtained from a
:class:`~ravelry.auth.tokens.TokenStore`, which refreshes expired tokens
transparently. Obtaining the first token is the job of
:class:`~ravelry.auth.flow.AuthorizationFlow`.

See Also:
    :class:`ravelry.auth.base.Authenticator` for the base interface.
"""

from __future__ import annotations

from typing import Optional

from ravelry.auth.base import AuthResult, Authenticator, RequestDescription
from ravelry.auth.oauth_client import OAuth2Client
from ravelry.auth.tokens import DEFAULT_SAFETY_MARGIN, TokenListener, TokenStore
from ravelry.models import AuthKind, TokenSet


class OAuth2Auth(Authenticator):
    """Authenticate with an OAuth2 access token.

    Args:
        token_store: Store holding the token set and coordinating refresh.
    """

    def __init__(self, token_store: TokenStore) -> None:
        self.token_store = token_store

    @classmethod
    def from_client(
        cls,
        client: OAuth2Client,
        token: Optional[TokenSet],
        on_update: Optional[TokenListener] = None,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
    ) -> OAuth2Auth:
        """Build an authenticator whose store refreshes through *client*."""
        store = TokenStore(
            token,
            refresh=client.refresh,
            on_update=on_update,
            safety_margin=safety_margin,
        )
        return cls(store)

    @property
    def kind(self) -> AuthKind:
        return AuthKind.OAUTH2

    async def authenticate(self, request: RequestDescription) -> AuthResult:
        """Return a bearer header, refreshing the token first if it has expired.

        Raises:
            Unauthenticated: If there is no usable token and no way to refresh.
            RefreshFailed: If the refresh exchange failed.
        """
        access_token = await self.token_store.get_valid_token()
        return AuthResult(headers={"Authorization": f"Bearer {access_token}"})

    def invalidate(self, result: AuthResult) -> None:
        header = result.headers.get("Authorization", "")
        scheme, _, access_token = header.partition(" ")
        if scheme == "Bearer" and access_token:
            self.token_store.invalidate(access_token)

    def __repr__(self) -> str:
        return f"OAuth2Auth(token_store={self.token_store!r})"
