"""HTTP Basic authentication plugin.

Implements the ``basic`` auth kind, which encodes a Ravelry
``access_key:personal_key`` pair using Base64 and sends it as an
``Authorization: Basic`` header per :rfc:`7617`.

See Also:
    :class:`~ravelry.plugins.basic.plugin.BasicAuth`
    :mod:`ravelry.auth.base` for the authenticator contract.
"""

from ravelry.plugins.basic.plugin import BasicAuth

__all__ = ["BasicAuth"]
