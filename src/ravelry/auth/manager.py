"""Authenticator selection and construction.

Two responsibilities live here:

* :func:`resolve_credential` -- picks the effective authenticator for one
  endpoint (the client's own, or :class:`~ravelry.auth.base.NoAuth` for
  endpoints marked :attr:`~ravelry.models.AuthMode.NONE`) and asks it for
  the request's :class:`~ravelry.auth.base.AuthResult`.
* :func:`create_authenticator` -- turns a stored profile into the matching
  authenticator (:class:`~ravelry.plugins.basic.BasicAuth` or
  :class:`~ravelry.plugins.oauth2.OAuth2Auth`).

See Also:
    :class:`~ravelry.client.async_client.AsyncClient` -- consumes the
    :class:`~ravelry.auth.base.AuthResult` produced here.
"""

from __future__ import annotations

from typing import Optional

from ravelry.auth.base import AuthResult, Authenticator, NoAuth, RequestDescription
from ravelry.auth.oauth_client import OAuth2Client
from ravelry.auth.tokens import TokenListener
from ravelry.exceptions import ConfigError
from ravelry.models import AuthMode, BasicProfile, OAuth2Profile

_NO_AUTH = NoAuth()


def effective_authenticator(
    authenticator: Optional[Authenticator], auth_mode: AuthMode = AuthMode.DEFAULT
) -> Authenticator:
    """Return the authenticator that applies to an endpoint with *auth_mode*."""
    if authenticator is None or auth_mode is AuthMode.NONE:
        return _NO_AUTH
    return authenticator


async def resolve_credential(
    authenticator: Optional[Authenticator],
    request: RequestDescription,
    auth_mode: AuthMode = AuthMode.DEFAULT,
) -> AuthResult:
    """Produce the credential material for *request*.

    An endpoint marked ``AuthMode.NONE`` gets an empty result even when the
    client holds credentials; its own authenticator is not consulted.

    Raises:
        AuthError: Propagated from the authenticator (e.g.
            :class:`~ravelry.exceptions.Unauthenticated`).
    """
    return await effective_authenticator(authenticator, auth_mode).authenticate(request)


def create_authenticator(
    profile: BasicProfile | OAuth2Profile,
    oauth_client: Optional[OAuth2Client] = None,
    on_token_update: Optional[TokenListener] = None,
) -> Authenticator:
    """Build the authenticator a stored profile describes.

    Args:
        profile: The stored profile.
        oauth_client: Token-endpoint client for OAuth2 profiles. Built from
            the profile when omitted.
        on_token_update: Listener receiving every refreshed token set, so
            the caller can persist it back into the profile.

    Raises:
        ConfigError: If the profile type is unknown.
    """
    from ravelry.plugins.basic import BasicAuth
    from ravelry.plugins.oauth2 import OAuth2Auth

    if isinstance(profile, BasicProfile):
        return BasicAuth(profile.access_key, profile.personal_key)
    if isinstance(profile, OAuth2Profile):
        client = oauth_client or OAuth2Client(profile.client_config())
        return OAuth2Auth.from_client(client, profile.token, on_update=on_token_update)
    raise ConfigError(f"Unsupported profile type: {type(profile).__name__}")
