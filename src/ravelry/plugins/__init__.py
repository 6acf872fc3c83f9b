"""Built-in credential schemes.

* :class:`~ravelry.plugins.basic.BasicAuth` -- static key pair over HTTP Basic.
* :class:`~ravelry.plugins.oauth2.OAuth2Auth` -- refreshing OAuth2 bearer token.
"""
