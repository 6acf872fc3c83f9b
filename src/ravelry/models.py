"""Canonical Pydantic models shared across all ravelry modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Credential models** -- the material an authenticator turns into request
headers:
    :class:`BasicKeyPair` and :class:`TokenSet`, plus the :data:`Credential`
    union and the :class:`AuthKind` / :class:`AuthMode` enums.

**Request models** -- what the request executor consumes:
    :class:`RequestOptions` and :class:`Endpoint`.

**Configuration models** -- serialised as JSON by :mod:`ravelry.config`:
    :class:`OAuth2ClientConfig`, :class:`BasicProfile`, :class:`OAuth2Profile`,
    :class:`ProfileConfig`, and :class:`Settings`.

Secrets are declared with ``repr=False`` so they never show up in logs,
tracebacks, or ``repr()`` output.
"""

from __future__ import annotations

import enum
import math
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BASE_URL = "https://api.ravelry.com/"
AUTHORIZATION_URL = "https://www.ravelry.com/oauth2/auth"
TOKEN_URL = "https://www.ravelry.com/oauth2/token"
DEFAULT_REDIRECT_URI = "https://localhost:8080/callback"
DEFAULT_SCOPES = ["offline"]


# --- Auth enums ---


class AuthKind(str, enum.Enum):
    """The kind of authentication an authenticator provides."""

    NONE = "none"
    BASIC = "basic"
    OAUTH2 = "oauth2"


class AuthMode(str, enum.Enum):
    """Per-endpoint override of the client's authenticator.

    ``DEFAULT`` applies whatever authenticator the client was built with.
    ``NONE`` sends the request without credentials, for endpoints the
    provider documents as unauthenticated (e.g. image upload, which is
    authorized by an upload token instead).
    """

    DEFAULT = "default"
    NONE = "none"


# --- Credentials ---


class BasicKeyPair(BaseModel):
    """Static key pair for HTTP Basic authentication.

    The access key is the Basic username. The password is either the
    account's personal key (full access) or the read-only secret key.
    """

    model_config = ConfigDict(frozen=True)

    access_key: str
    personal_key: str = Field(repr=False)


def _expiry(issued_at: datetime, expires_in: Any) -> datetime:
    """Return the instant a token issued at *issued_at* expires."""
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float, str)):
        raise ValueError(f"expires_in must be a number, got {type(expires_in).__name__}")
    seconds = float(expires_in)
    if not math.isfinite(seconds):
        raise ValueError(f"expires_in must be finite, got {expires_in!r}")
    try:
        return issued_at + timedelta(seconds=seconds)
    except OverflowError as exc:
        raise ValueError(f"expires_in out of range: {expires_in!r}") from exc


class TokenSet(BaseModel):
    """An OAuth2 access/refresh token pair with its expiry.

    Instances are immutable; a refresh produces a new ``TokenSet`` that
    replaces the old one in a single assignment, so no reader can observe
    an access token from one issuance paired with a refresh token from
    another.

    ``expires_at`` is ``None`` when the provider did not return a lifetime.
    Such a token is never refreshed proactively.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        issued_at: Optional[datetime] = None,
        previous: Optional[TokenSet] = None,
    ) -> TokenSet:
        """Build a token set from a token-endpoint JSON response.

        Args:
            data: The decoded JSON body. Must contain ``access_token``.
            issued_at: Issuance time used to derive ``expires_at`` from
                ``expires_in``. Defaults to now (UTC).
            previous: The token set being refreshed. Its refresh token and
                scope are carried over when the response omits them.

        Raises:
            KeyError: If ``access_token`` is missing.
            ValueError: If ``expires_in`` is not a finite number of seconds.
        """
        issued_at = issued_at or datetime.now(timezone.utc)
        expires_at: Optional[datetime] = None
        expires_in = data.get("expires_in")
        if expires_in is not None:
            expires_at = _expiry(issued_at, expires_in)

        refresh_token = data.get("refresh_token")
        scope = data.get("scope")
        if previous is not None:
            refresh_token = refresh_token or previous.refresh_token
            scope = scope or previous.scope

        return cls(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            token_type=data.get("token_type") or "Bearer",
            expires_at=expires_at,
            scope=scope,
        )

    def is_expired(self, margin: float = 0.0, now: Optional[datetime] = None) -> bool:
        """Return ``True`` if the token is expired or expires within *margin* seconds.

        A token without ``expires_at`` never expires.
        """
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=margin) >= self.expires_at

    def seconds_remaining(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds until expiry (negative once expired), or ``None`` if it never expires."""
        if self.expires_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds()


Credential = Union[BasicKeyPair, TokenSet, None]
"""Tagged union of the credential shapes an authenticator can own."""


# --- Requests ---


class RequestOptions(BaseModel):
    """Options applied to outgoing requests.

    Set once on the client as defaults, and optionally per endpoint. Values
    set on the endpoint take precedence.
    """

    debug: bool = Field(
        default=False, description="Ask the API to include debug info (debug=1)"
    )
    if_none_match: Optional[str] = Field(
        default=None, description="ETag for a conditional request (If-None-Match)"
    )

    def merged(self, override: Optional[RequestOptions]) -> RequestOptions:
        """Return a copy with *override*'s explicitly set fields layered on top."""
        if override is None:
            return self
        return self.model_copy(update=override.model_dump(exclude_unset=True))


class Endpoint(BaseModel):
    """Description of a single API call handed to the request executor.

    Example::

        Endpoint(method="GET", path="patterns/search.json", params={"query": "hat"})
        Endpoint(method="POST", path="upload/image.json", auth_mode=AuthMode.NONE)
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    method: str = "GET"
    path: str
    params: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    json_body: Any = None
    data: Optional[dict[str, Any]] = None
    files: Any = None
    auth_mode: AuthMode = AuthMode.DEFAULT
    response_model: Optional[type[BaseModel]] = Field(
        default=None, description="Pydantic model the success payload must decode into"
    )
    options: Optional[RequestOptions] = None
    timeout: Optional[float] = Field(
        default=None, description="Per-call timeout in seconds (client default if unset)"
    )


# --- Configuration ---


class OAuth2ClientConfig(BaseModel):
    """Registered OAuth2 application details plus provider endpoints."""

    client_id: str
    client_secret: str = Field(repr=False)
    redirect_uri: str = DEFAULT_REDIRECT_URI
    authorization_url: str = AUTHORIZATION_URL
    token_url: str = TOKEN_URL


class BasicProfile(BaseModel):
    """Stored profile using HTTP Basic auth with access key + personal key."""

    type: Literal["basic"] = "basic"
    access_key: str
    personal_key: str = Field(repr=False)

    def credential(self) -> BasicKeyPair:
        return BasicKeyPair(access_key=self.access_key, personal_key=self.personal_key)


class OAuth2Profile(BaseModel):
    """Stored profile using OAuth2, with the last persisted token set."""

    type: Literal["oauth2"] = "oauth2"
    client_id: str
    client_secret: str = Field(repr=False)
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    token: Optional[TokenSet] = None

    def client_config(self, redirect_uri: str = DEFAULT_REDIRECT_URI) -> OAuth2ClientConfig:
        return OAuth2ClientConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=redirect_uri,
        )


Profile = Annotated[Union[BasicProfile, OAuth2Profile], Field(discriminator="type")]


class ProfileConfig(BaseModel):
    """Contents of the profile store file (``config.json``)."""

    current_profile: Optional[str] = None
    profiles: dict[str, Profile] = Field(default_factory=dict)


class Settings(BaseModel):
    """Runtime settings resolved from the environment by :func:`ravelry.config.load_settings`."""

    base_url: str = DEFAULT_BASE_URL
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    redirect_uri: str = DEFAULT_REDIRECT_URI
    callback_timeout: float = Field(
        default=300.0, description="Seconds to wait for the OAuth2 browser redirect"
    )
    profile: Optional[str] = None
    access_key: Optional[str] = None
    personal_key: Optional[str] = Field(default=None, repr=False)
