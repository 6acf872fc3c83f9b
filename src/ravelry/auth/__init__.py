"""Authentication for the Ravelry API.

The main entry points are:

- :class:`Authenticator` -- abstract base class for credential schemes
  (``NoAuth``, ``BasicAuth``, ``OAuth2Auth``).
- :class:`TokenStore` -- holds an OAuth2 token set and refreshes it with
  at most one exchange in flight.
- :class:`AuthorizationFlow` -- the interactive authorization-code grant
  over a loopback HTTPS listener.
- :func:`create_authenticator` -- builds an authenticator from a stored
  profile.

Typical usage::

    from ravelry.auth import create_authenticator

    authenticator = create_authenticator(profile, on_token_update=persist)
    async with AsyncClient(authenticator) as client:
        outcome = await client.get("current_user.json")
"""

from ravelry.auth.base import AuthResult, Authenticator, NoAuth, RequestDescription
from ravelry.auth.flow import AuthorizationFlow, FlowState
from ravelry.auth.manager import create_authenticator, resolve_credential
from ravelry.auth.oauth_client import OAuth2Client
from ravelry.auth.tokens import TokenStore

__all__ = [
    "AuthResult",
    "Authenticator",
    "AuthorizationFlow",
    "FlowState",
    "NoAuth",
    "OAuth2Client",
    "RequestDescription",
    "TokenStore",
    "create_authenticator",
    "resolve_credential",
]
