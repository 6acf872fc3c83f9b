"""OAuth2 token store and refresh coordinator.

:class:`TokenStore` holds the current :class:`~ravelry.models.TokenSet`
and hands out valid access tokens via :meth:`TokenStore.get_valid_token`.

- A token that is still valid (outside the safety margin) is returned
  immediately, without locking and without network I/O.
- An expired token with a refresh token triggers exactly one refresh
  exchange. Callers that arrive while that refresh is in flight await the
  same task instead of starting their own.
- A successful refresh replaces the token set in a single assignment and
  is reported to the ``on_update`` listener so an external profile store
  can persist it.
- A failed refresh is reported to every waiter as
  :class:`~ravelry.exceptions.RefreshFailed`. The stale token set stays
  readable through :attr:`TokenStore.token` for diagnostics, but
  :meth:`~TokenStore.get_valid_token` keeps raising until a new token set
  is installed with :meth:`~TokenStore.replace`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from ravelry.exceptions import RefreshFailed, Unauthenticated
from ravelry.models import TokenSet

logger = logging.getLogger(__name__)

RefreshFunction = Callable[[TokenSet], Awaitable[TokenSet]]
TokenListener = Callable[[TokenSet], Union[None, Awaitable[None]]]

DEFAULT_SAFETY_MARGIN = 30.0


class TokenStore:
    """Holds one OAuth2 token set and coordinates its refresh.

    Args:
        token: The initial token set, typically loaded from a profile.
            ``None`` means no authorization has happened yet.
        refresh: Coroutine function performing the refresh exchange for a
            stale token set. It should raise
            :class:`~ravelry.exceptions.RefreshFailed` on rejection.
        on_update: Optional listener called with every new token set
            (after a refresh or :meth:`replace`). May be sync or async.
        safety_margin: Seconds before ``expires_at`` at which a token is
            already treated as expired.

    Example::

        store = TokenStore(profile.token, refresh=oauth_client.refresh, on_update=save)
        token = await store.get_valid_token()
    """

    def __init__(
        self,
        token: Optional[TokenSet] = None,
        refresh: Optional[RefreshFunction] = None,
        on_update: Optional[TokenListener] = None,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
    ) -> None:
        self._token = token
        self._refresh = refresh
        self._on_update = on_update
        self._safety_margin = safety_margin
        self._pending: Optional[asyncio.Task[TokenSet]] = None
        self._failure: Optional[RefreshFailed] = None
        self._rejected_access_token: Optional[str] = None

    @property
    def token(self) -> Optional[TokenSet]:
        """The current token set, including a stale one kept after a failed refresh."""
        return self._token

    @property
    def refresh_failed(self) -> bool:
        """Whether the last refresh failed and no new token set has been installed since."""
        return self._failure is not None

    @property
    def is_refreshing(self) -> bool:
        return self._pending is not None

    def _is_usable(self, token: TokenSet) -> bool:
        if token.access_token == self._rejected_access_token:
            return False
        return not token.is_expired(self._safety_margin)

    async def get_valid_token(self) -> str:
        """Return an access token that is currently valid.

        Refreshes transparently when the held token is expired. At most one
        refresh runs at a time; concurrent callers share its result.

        Returns:
            The access token string.

        Raises:
            Unauthenticated: If no token set is held, or it is expired and
                has no refresh token.
            RefreshFailed: If the refresh exchange failed (now or on an
                earlier call since the last :meth:`replace`).
        """
        if self._pending is None:
            token = self._token
            if token is None:
                raise Unauthenticated(
                    "No OAuth2 token available. Run the authorization flow first."
                )
            if self._failure is not None:
                raise RefreshFailed(str(self._failure), status=self._failure.status)
            if self._is_usable(token):
                return token.access_token
            if not token.refresh_token or self._refresh is None:
                raise Unauthenticated(
                    "OAuth2 access token expired and no refresh token is available. "
                    "Please authorize again."
                )
            self._pending = asyncio.ensure_future(self._run_refresh(token))
            self._pending.add_done_callback(_retrieve_exception)

        fresh = await asyncio.shield(self._pending)
        return fresh.access_token

    async def replace(self, token: TokenSet) -> None:
        """Install a new token set (e.g. after an authorization flow) and notify the listener.

        Clears any earlier refresh failure and 401 rejection.
        """
        self._token = token
        self._failure = None
        self._rejected_access_token = None
        await self._notify(token)

    def invalidate(self, access_token: str) -> None:
        """Mark *access_token* as rejected by the server.

        Only takes effect if it is still the current access token, so a
        late 401 for an old token never discards a newer one. The next
        :meth:`get_valid_token` call refreshes (or raises
        :class:`~ravelry.exceptions.Unauthenticated`).
        """
        current = self._token
        if current is not None and current.access_token == access_token:
            logger.info("Access token rejected by server; next request will refresh")
            self._rejected_access_token = access_token

    async def _run_refresh(self, stale: TokenSet) -> TokenSet:
        assert self._refresh is not None
        logger.info("Refreshing OAuth2 access token")
        try:
            try:
                fresh = await self._refresh(stale)
            except RefreshFailed as exc:
                self._failure = exc
                logger.warning("OAuth2 token refresh failed: %s", exc)
                raise
            except Exception as exc:
                failure = RefreshFailed(f"Token refresh failed: {exc}")
                self._failure = failure
                logger.warning("OAuth2 token refresh failed: %s", exc)
                raise failure from exc

            self._token = fresh
            self._rejected_access_token = None
            logger.info("OAuth2 access token refreshed")
        finally:
            self._pending = None

        await self._notify(fresh)
        return fresh

    async def _notify(self, token: TokenSet) -> None:
        if self._on_update is None:
            return
        result = self._on_update(token)
        if inspect.isawaitable(result):
            await result

    def __repr__(self) -> str:
        return (
            f"TokenStore(token={self._token!r}, refreshing={self.is_refreshing}, "
            f"refresh_failed={self.refresh_failed})"
        )


def _retrieve_exception(task: asyncio.Task[TokenSet]) -> None:
    # Waiters may all have been cancelled; mark the outcome as observed.
    if not task.cancelled():
        task.exception()
