"""Asynchronous request executor for the Ravelry API.

:class:`AsyncClient` wraps :class:`httpx.AsyncClient` and turns one
:class:`~ravelry.models.Endpoint` into one
:data:`~ravelry.client.response.ClassifiedResponse`:

1. Resolve the credential (the client's authenticator, or none for
   endpoints marked :attr:`~ravelry.models.AuthMode.NONE`).
2. Merge auth headers/params with the endpoint's, plus request options
   (``debug=1``, ``If-None-Match``).
3. Send the request. Network, redirect and content-decoding failures become
   :class:`~ravelry.client.response.TransportErrorResponse`.
4. Classify the response.

Nothing is retried here. A 401 on an authenticated request is reported to
the authenticator so an OAuth2 token store refreshes on the next call.

See Also:
    :mod:`ravelry.client.response` -- the classification rules.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ravelry import __version__
from ravelry.auth.base import Authenticator, RequestDescription
from ravelry.auth.manager import effective_authenticator, resolve_credential
from ravelry.client.response import (
    ClassifiedResponse,
    TransportErrorResponse,
    classify_response,
)
from ravelry.models import DEFAULT_BASE_URL, AuthKind, Endpoint, RequestOptions

logger = logging.getLogger(__name__)

USER_AGENT = f"ravelry-client/{__version__}"


class AsyncClient:
    """Asynchronous Ravelry API client.

    Args:
        authenticator: Credential scheme applied to every request unless
            the endpoint opts out. ``None`` sends no credentials.
        base_url: API root; endpoint paths are relative to it.
        timeout: Default request timeout in seconds.
        options: Default :class:`~ravelry.models.RequestOptions`.
        transport: Optional :class:`httpx.AsyncBaseTransport` (tests pass
            an :class:`httpx.MockTransport`).
        http_client: Optional pre-built :class:`httpx.AsyncClient`. The
            caller keeps ownership and closes it.

    Example::

        async with AsyncClient(BasicAuth(access_key, personal_key)) as client:
            outcome = await client.get("current_user.json")
            user = outcome.unwrap()["user"]
    """

    def __init__(
        self,
        authenticator: Optional[Authenticator] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        options: Optional[RequestOptions] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.authenticator = authenticator
        self.options = options or RequestOptions()
        self._base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self._timeout = timeout
        self._transport = transport
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def auth_kind(self) -> AuthKind:
        if self.authenticator is None:
            return AuthKind.NONE
        return self.authenticator.kind

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> AsyncClient:
        self._ensure_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
            self._owns_client = True
        return self._client

    # ------------------------------------------------------------------ #
    # Request execution
    # ------------------------------------------------------------------ #

    async def execute(self, endpoint: Endpoint) -> ClassifiedResponse:
        """Perform one API call and classify its outcome.

        Returns:
            Exactly one :data:`~ravelry.client.response.ClassifiedResponse`
            variant. Network and decode failures are returned, not raised.

        Raises:
            AuthError: If no credential could be produced (e.g.
                :class:`~ravelry.exceptions.Unauthenticated` or
                :class:`~ravelry.exceptions.RefreshFailed`). No request is
                sent in that case.
        """
        client = self._ensure_client()
        path = endpoint.path.lstrip("/")
        authenticator = effective_authenticator(self.authenticator, endpoint.auth_mode)
        description = RequestDescription(
            method=endpoint.method.upper(),
            path=path,
            params=dict(endpoint.params),
            has_body=any(
                part is not None for part in (endpoint.json_body, endpoint.data, endpoint.files)
            ),
        )
        auth_result = await resolve_credential(self.authenticator, description, endpoint.auth_mode)

        options = self.options.merged(endpoint.options)
        headers: dict[str, str] = {**auth_result.headers, **endpoint.headers}
        params: dict[str, Any] = {**auth_result.params, **endpoint.params}
        if options.debug:
            params["debug"] = 1
        if options.if_none_match:
            headers["If-None-Match"] = options.if_none_match

        kwargs: dict[str, Any] = {"headers": headers, "params": params}
        if endpoint.files is not None:
            kwargs["files"] = endpoint.files
            if endpoint.data is not None:
                kwargs["data"] = endpoint.data
        elif endpoint.data is not None:
            kwargs["data"] = endpoint.data
        elif endpoint.json_body is not None:
            kwargs["json"] = endpoint.json_body
        if endpoint.timeout is not None:
            kwargs["timeout"] = endpoint.timeout

        logger.debug("%s %s (auth=%s)", description.method, path, authenticator.kind.value)
        try:
            response = await client.request(description.method, path, **kwargs)
        except httpx.RequestError as exc:
            logger.debug("%s %s failed: %s", description.method, path, exc)
            return TransportErrorResponse(cause=exc)

        if response.status_code == 401 and authenticator.kind is not AuthKind.NONE:
            authenticator.invalidate(auth_result)

        outcome = classify_response(
            response.status_code,
            response.headers,
            response.content,
            endpoint.response_model,
        )
        logger.debug(
            "%s %s -> %d %s",
            description.method,
            path,
            response.status_code,
            type(outcome).__name__,
        )
        return outcome

    async def request(self, method: str, path: str, **kwargs: Any) -> ClassifiedResponse:
        """Build an :class:`~ravelry.models.Endpoint` from keyword arguments and execute it."""
        return await self.execute(Endpoint(method=method, path=path, **kwargs))

    async def get(self, path: str, **kwargs: Any) -> ClassifiedResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> ClassifiedResponse:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> ClassifiedResponse:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> ClassifiedResponse:
        return await self.request("DELETE", path, **kwargs)

    async def post_data(self, path: str, payload: Any, **kwargs: Any) -> ClassifiedResponse:
        """POST *payload* wrapped as ``{"data": payload}``, the shape write endpoints expect."""
        return await self.request("POST", path, json_body={"data": payload}, **kwargs)

    def __repr__(self) -> str:
        return f"AsyncClient(base_url={self._base_url!r}, authenticator={self.authenticator!r})"

