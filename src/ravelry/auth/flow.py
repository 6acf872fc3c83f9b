"""Interactive OAuth2 authorization-code flow.

:class:`AuthorizationFlow` drives one authorization attempt from start to
finish and tracks where it is in :attr:`AuthorizationFlow.state`::

    IDLE -> AWAITING_AUTHORIZATION_URL -> LISTENER_STARTED -> AWAITING_CALLBACK
         -> CODE_RECEIVED -> EXCHANGING -> COMPLETED

An attempt that ends without tokens, for any reason including cancellation,
leaves the flow in ``ABORTED``. Aborts with a known cause record the
:class:`~ravelry.exceptions.AbortReason` in
:attr:`AuthorizationFlow.abort_reason`. The callback listener is bound
inside an ``async with`` block, so it is closed before :meth:`run` returns
or raises, including when the calling task is cancelled.
"""

from __future__ import annotations

import enum
import inspect
import logging
import secrets
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import urlsplit

from ravelry.auth.callback_server import CallbackListener
from ravelry.auth.oauth_client import OAuth2Client
from ravelry.exceptions import (
    AbortReason,
    AuthError,
    AuthorizationAborted,
    AuthorizationInProgress,
)
from ravelry.models import DEFAULT_SCOPES, TokenSet

logger = logging.getLogger(__name__)

UrlHandler = Callable[[str], Union[None, Awaitable[None]]]

DEFAULT_CALLBACK_TIMEOUT = 300.0


class FlowState(str, enum.Enum):
    """Where an :class:`AuthorizationFlow` attempt currently is."""

    IDLE = "idle"
    AWAITING_AUTHORIZATION_URL = "awaiting_authorization_url"
    LISTENER_STARTED = "listener_started"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    EXCHANGING = "exchanging"
    COMPLETED = "completed"
    ABORTED = "aborted"


def generate_state() -> str:
    """Return a fresh opaque state value (256 bits of randomness)."""
    return secrets.token_urlsafe(32)


class AuthorizationFlow:
    """Runs the browser-based authorization-code grant.

    Args:
        client: Token-endpoint client for the registered application.
        on_authorization_url: Called with the URL the user must open,
            once the listener is ready. May be sync or async. Typically
            prints the URL and launches a browser.
        redirect_uri: Overrides the client's configured redirect URI. Its
            port and path decide where the listener binds; port ``0``
            binds an ephemeral port and the URL reflects the real one.
        bind_host: Loopback address the listener binds to.

    Example::

        flow = AuthorizationFlow(OAuth2Client(config), on_authorization_url=print)
        token = await flow.run(["offline"], timeout=300)
    """

    def __init__(
        self,
        client: OAuth2Client,
        on_authorization_url: Optional[UrlHandler] = None,
        redirect_uri: Optional[str] = None,
        bind_host: str = "127.0.0.1",
    ) -> None:
        self.client = client
        self.on_authorization_url = on_authorization_url
        self.redirect_uri = redirect_uri or client.config.redirect_uri
        self.bind_host = bind_host
        self.state = FlowState.IDLE
        self.abort_reason: Optional[AbortReason] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(
        self,
        scopes: Optional[list[str]] = None,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
    ) -> TokenSet:
        """Run one authorization attempt and return the issued token set.

        Raises:
            AuthorizationInProgress: If an attempt is already running on
                this flow.
            AuthorizationAborted: If the attempt ended without tokens; see
                :attr:`abort_reason`.
        """
        if self._running:
            raise AuthorizationInProgress("An authorization attempt is already in progress")
        self._running = True
        self.abort_reason = None
        try:
            return await self._run(list(DEFAULT_SCOPES if scopes is None else scopes), timeout)
        except AuthorizationAborted as exc:
            self.state = FlowState.ABORTED
            self.abort_reason = exc.reason
            logger.warning("Authorization aborted: %s", exc)
            raise
        finally:
            if self.state is not FlowState.COMPLETED:
                self.state = FlowState.ABORTED
            self._running = False

    async def _run(self, scopes: list[str], timeout: float) -> TokenSet:
        self.state = FlowState.AWAITING_AUTHORIZATION_URL
        expected_state = generate_state()
        redirect = urlsplit(self.redirect_uri)
        if redirect.scheme != "https" or not redirect.hostname:
            raise AuthError(f"Redirect URI must be an https:// URL: {self.redirect_uri}")

        listener = CallbackListener(
            expected_state,
            host=self.bind_host,
            port=redirect.port if redirect.port is not None else 443,
            path=redirect.path or "/",
            server_name=redirect.hostname,
        )
        async with listener:
            self.state = FlowState.LISTENER_STARTED
            redirect_uri = listener.redirect_uri
            url = self.client.authorization_url(scopes, expected_state, redirect_uri)
            logger.info("Waiting for authorization callback on %s", redirect_uri)
            await self._announce(url)

            self.state = FlowState.AWAITING_CALLBACK
            code = await listener.wait_for_code(timeout)
            self.state = FlowState.CODE_RECEIVED

        self.state = FlowState.EXCHANGING
        try:
            token = await self.client.exchange_code(code, redirect_uri)
        except AuthError as exc:
            raise AuthorizationAborted(AbortReason.EXCHANGE_FAILED, str(exc)) from exc

        self.state = FlowState.COMPLETED
        logger.info("Authorization completed")
        return token

    async def _announce(self, url: str) -> None:
        if self.on_authorization_url is None:
            return
        result = self.on_authorization_url(url)
        if inspect.isawaitable(result):
            await result
