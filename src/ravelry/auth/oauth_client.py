"""OAuth2 token-endpoint client for the Ravelry provider.

:class:`OAuth2Client` knows the registered application (client id and
secret) and the provider endpoints. It builds the browser authorization
URL and performs the two token-endpoint exchanges:

- ``authorization_code`` -- trade the code from the redirect for tokens.
- ``refresh_token`` -- trade a refresh token for a new token set.

The client credentials are sent with HTTP Basic authentication and the
grant parameters as a form-encoded body. When a refresh response omits a
new refresh token, the previous one is kept.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from ravelry.exceptions import AuthError, RefreshFailed
from ravelry.models import OAuth2ClientConfig, TokenSet

logger = logging.getLogger(__name__)

TOKEN_REQUEST_TIMEOUT = 30.0


class OAuth2Client:
    """Talks to the provider's OAuth2 authorization and token endpoints.

    Args:
        config: Client id, secret, redirect URI and provider endpoints.
        http_client: Optional shared :class:`httpx.AsyncClient`. When
            omitted, a short-lived client is created per exchange.
    """

    def __init__(
        self,
        config: OAuth2ClientConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._http_client = http_client

    def authorization_url(
        self,
        scopes: list[str],
        state: str,
        redirect_uri: Optional[str] = None,
    ) -> str:
        """Build the URL the user opens to grant access."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": redirect_uri or self.config.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if scopes:
            params["scope"] = " ".join(scopes)
        return f"{self.config.authorization_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: Optional[str] = None) -> TokenSet:
        """Exchange an authorization code for a token set.

        Raises:
            AuthError: On transport failure, a non-2xx answer, or a
                response without ``access_token``.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or self.config.redirect_uri,
        }
        try:
            response = await self._post_token_request(data)
        except httpx.HTTPError as exc:
            raise AuthError(f"Token exchange failed: {exc}") from exc

        if not response.is_success:
            raise AuthError(
                f"Token exchange failed with status {response.status_code}: {response.text}"
            )
        try:
            token = TokenSet.from_token_response(_json_object(response))
        except (KeyError, ValueError) as exc:
            raise AuthError(f"Invalid token exchange response: {exc}") from exc

        logger.info("Authorization code exchanged for tokens")
        return token

    async def refresh(self, token: TokenSet) -> TokenSet:
        """Exchange *token*'s refresh token for a new token set.

        Raises:
            RefreshFailed: If there is no refresh token, the request fails,
                the provider rejects it, or the response is malformed.
        """
        if not token.refresh_token:
            raise RefreshFailed("No refresh token available")

        data = {"grant_type": "refresh_token", "refresh_token": token.refresh_token}
        try:
            response = await self._post_token_request(data)
        except httpx.HTTPError as exc:
            raise RefreshFailed(f"Token refresh failed: {exc}") from exc

        if not response.is_success:
            raise RefreshFailed(
                f"Token refresh rejected with status {response.status_code}: {response.text}",
                status=response.status_code,
            )
        try:
            return TokenSet.from_token_response(_json_object(response), previous=token)
        except (KeyError, ValueError) as exc:
            raise RefreshFailed(
                f"Invalid token refresh response: {exc}", status=response.status_code
            ) from exc

    async def _post_token_request(self, data: dict[str, str]) -> httpx.Response:
        auth = httpx.BasicAuth(self.config.client_id, self.config.client_secret)
        headers = {"Accept": "application/json"}
        logger.debug("POST %s grant_type=%s", self.config.token_url, data["grant_type"])
        if self._http_client is not None:
            return await self._http_client.post(
                self.config.token_url, data=data, auth=auth, headers=headers
            )
        async with httpx.AsyncClient(timeout=TOKEN_REQUEST_TIMEOUT) as client:
            return await client.post(
                self.config.token_url, data=data, auth=auth, headers=headers
            )

    def __repr__(self) -> str:
        return f"OAuth2Client(client_id={self.config.client_id!r})"


def _json_object(response: httpx.Response) -> dict[str, Any]:
    payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError("token response is not a JSON object")
    return payload
