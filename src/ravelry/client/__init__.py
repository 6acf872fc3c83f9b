"""Request execution and response classification.

This package exposes :class:`AsyncClient` -- the single ``execute`` entry
point for API calls -- and the :data:`ClassifiedResponse` variants it
returns.

Example::

    from ravelry.client import AsyncClient, NotModifiedResponse

    async with AsyncClient(authenticator) as client:
        outcome = await client.get("current_user.json")
        if isinstance(outcome, NotModifiedResponse):
            ...
"""

from ravelry.client.async_client import AsyncClient
from ravelry.client.response import (
    ApiErrorResponse,
    ClassifiedResponse,
    NotModifiedResponse,
    OkResponse,
    RateLimitedResponse,
    TransportErrorResponse,
    classify_response,
)

__all__ = [
    "ApiErrorResponse",
    "AsyncClient",
    "ClassifiedResponse",
    "NotModifiedResponse",
    "OkResponse",
    "RateLimitedResponse",
    "TransportErrorResponse",
    "classify_response",
]
