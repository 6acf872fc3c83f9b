"""OAuth2 bearer-token authentication plugin.

Implements the ``oauth2`` auth kind: an ``Authorization: Bearer`` header
backed by a refreshing :class:`~ravelry.auth.tokens.TokenStore`.

See Also:
    :class:`~ravelry.plugins.oauth2.plugin.OAuth2Auth`
    :mod:`ravelry.auth.flow` for obtaining the initial token set.
"""

from ravelry.plugins.oauth2.plugin import OAuth2Auth

__all__ = ["OAuth2Auth"]
