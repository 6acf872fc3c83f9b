"""Response classification -- maps raw HTTP results to a closed set of outcomes.

Every API call ends in exactly one :data:`ClassifiedResponse` variant:

* :class:`OkResponse` -- 2xx with a decodable payload.
* :class:`NotModifiedResponse` -- 304 carrying an ``ETag``.
* :class:`RateLimitedResponse` -- 429, with ``Retry-After`` seconds if given.
* :class:`ApiErrorResponse` -- any other status.
* :class:`TransportErrorResponse` -- no usable response (network failure or
  an undecodable success body).

:func:`classify_response` applies the rules in a fixed order: 304 before
anything else, then 429, then success, then everything else. Callers
either match on the variant type or call ``unwrap()``, which returns the
payload for :class:`OkResponse` and raises the matching
:mod:`ravelry.exceptions` error for every other variant.

See Also:
    :mod:`ravelry.client.async_client` -- produces these values.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, NoReturn, Optional, Union

from pydantic import BaseModel, ValidationError

from ravelry.exceptions import (
    ApiError,
    DecodeError,
    NotModified,
    RateLimited,
    TransportError,
)


@dataclass(frozen=True)
class OkResponse:
    """A 2xx response.

    ``data`` is the decoded JSON (or a validated model instance when the
    endpoint declared a response model). It is ``None`` for an empty body.
    """

    status: int
    content: bytes
    data: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def etag(self) -> Optional[str]:
        return _header(self.headers, "etag")

    def unwrap(self) -> Any:
        return self.data


@dataclass(frozen=True)
class NotModifiedResponse:
    """HTTP 304: the resource still matches ``etag``."""

    etag: str

    def unwrap(self) -> NoReturn:
        raise NotModified(self.etag)


@dataclass(frozen=True)
class RateLimitedResponse:
    """HTTP 429. ``retry_after`` is in seconds, or ``None`` when not given."""

    retry_after: Optional[int] = None
    body: bytes = b""
    error: Any = None

    def unwrap(self) -> NoReturn:
        raise RateLimited(self.retry_after, self.body, self.error)


@dataclass(frozen=True)
class ApiErrorResponse:
    """A non-success status other than 304-with-ETag and 429.

    ``error`` holds the body parsed as JSON when it was decodable.
    """

    status: int
    body: bytes = b""
    error: Any = None

    def unwrap(self) -> NoReturn:
        raise ApiError(self.status, self.body, self.error)


@dataclass(frozen=True)
class TransportErrorResponse:
    """The call produced no usable response. ``cause`` is the underlying exception."""

    cause: BaseException

    def unwrap(self) -> NoReturn:
        raise TransportError(self.cause) from self.cause


ClassifiedResponse = Union[
    OkResponse,
    NotModifiedResponse,
    RateLimitedResponse,
    ApiErrorResponse,
    TransportErrorResponse,
]


def classify_response(
    status: int,
    headers: Mapping[str, str],
    body: bytes,
    response_model: Optional[type[BaseModel]] = None,
) -> ClassifiedResponse:
    """Classify one HTTP response.

    Args:
        status: HTTP status code.
        headers: Response headers. Lookups are case-insensitive.
        body: Raw response body.
        response_model: Optional Pydantic model a success payload must
            validate against.

    Returns:
        Exactly one :data:`ClassifiedResponse` variant.
    """
    if status == 304:
        etag = _header(headers, "etag")
        if etag is not None:
            return NotModifiedResponse(etag=etag)

    if status == 429:
        return RateLimitedResponse(
            retry_after=parse_retry_after(_header(headers, "retry-after")),
            body=body,
            error=_try_json(body),
        )

    if 200 <= status < 300:
        try:
            data = decode_payload(body, response_model)
        except DecodeError as exc:
            return TransportErrorResponse(cause=exc)
        return OkResponse(status=status, content=body, data=data, headers=dict(headers))

    return ApiErrorResponse(status=status, body=body, error=_try_json(body))


def decode_payload(body: bytes, response_model: Optional[type[BaseModel]] = None) -> Any:
    """Decode a success body as JSON, optionally validating it into *response_model*.

    An empty body decodes to ``None`` unless a model is required.

    Raises:
        DecodeError: If the body is not JSON or does not match the model.
    """
    if not body.strip():
        if response_model is not None:
            raise DecodeError(f"Empty body, expected {response_model.__name__}")
        return None
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"Response body is not valid JSON: {exc}") from exc
    if response_model is None:
        return data
    try:
        return response_model.model_validate(data)
    except ValidationError as exc:
        raise DecodeError(
            f"Response does not match {response_model.__name__}: {exc}"
        ) from exc


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Parse a ``Retry-After`` header given in whole seconds.

    Returns ``None`` for a missing header, an HTTP-date, or garbage.
    """
    if value is None:
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


def _try_json(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    for key, val in headers.items():
        if key.lower() == name:
            return val
    return None
