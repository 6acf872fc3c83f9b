"""Loopback HTTPS listener that captures one OAuth2 redirect.

The provider only accepts HTTPS redirect URIs, so the listener serves TLS
with a certificate generated on the fly by
:func:`generate_self_signed_certificate`. The browser will warn about it;
the user accepts the warning once for this single local exchange.

:class:`CallbackListener` is an async context manager. Entering binds the
socket; leaving always closes it, whether the callback arrived, the wait
timed out, validation failed, or the surrounding task was cancelled::

    async with CallbackListener(expected_state=state, port=8080) as listener:
        code = await listener.wait_for_code(timeout=300)

Only the first request on the callback path is evaluated. Requests for
any other path get a 404 and the listener keeps waiting. The browser
receives its HTML acknowledgment before the outcome is handed back to the
caller, so the token exchange never delays the browser response.
"""

from __future__ import annotations

import asyncio
import html
import ipaddress
import logging
import os
import ssl
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from urllib.parse import parse_qs, urlsplit

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ravelry.exceptions import AbortReason, AuthorizationAborted

logger = logging.getLogger(__name__)

DEFAULT_HOSTS = ("localhost", "127.0.0.1")
REQUEST_READ_TIMEOUT = 10.0
MAX_HEADER_LINES = 100

_SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><title>Authorization Successful</title></head>
<body>
<h1>Authorization successful</h1>
<p>You can close this window and return to the terminal.</p>
</body>
</html>
"""

_FAILURE_PAGE = """<!DOCTYPE html>
<html>
<head><title>Authorization Failed</title></head>
<body>
<h1>Authorization failed</h1>
<p>{message}</p>
<p>Return to the terminal and try again.</p>
</body>
</html>
"""

_NOT_FOUND_PAGE = "<html><body><h1>Not Found</h1></body></html>\n"
_ALREADY_HANDLED_PAGE = (
    "<html><body><h1>Authorization already handled</h1>"
    "<p>You can close this window.</p></body></html>\n"
)

_REASONS = {200: "OK", 400: "Bad Request", 404: "Not Found", 405: "Method Not Allowed", 409: "Conflict"}


def generate_self_signed_certificate(
    hosts: tuple[str, ...] = DEFAULT_HOSTS,
    valid_for: timedelta = timedelta(days=1),
) -> tuple[bytes, bytes]:
    """Generate a throwaway self-signed certificate for *hosts*.

    Host names that parse as IP addresses are added as IP subject
    alternative names, everything else as DNS names.

    Returns:
        A ``(certificate_pem, private_key_pem)`` tuple.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hosts[0])])

    alt_names: list[x509.GeneralName] = []
    for host in hosts:
        try:
            alt_names.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            alt_names.append(x509.DNSName(host))

    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + valid_for)
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def create_server_ssl_context(hosts: tuple[str, ...] = DEFAULT_HOSTS) -> ssl.SSLContext:
    """Build a server-side TLS context around a fresh self-signed certificate."""
    cert_pem, key_pem = generate_self_signed_certificate(hosts)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    # load_cert_chain only reads from files; they live just long enough to load.
    with tempfile.TemporaryDirectory(prefix="ravelry-tls-") as tmp_dir:
        cert_path = os.path.join(tmp_dir, "cert.pem")
        key_path = os.path.join(tmp_dir, "key.pem")
        with open(cert_path, "wb") as fh:
            fh.write(cert_pem)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(key_pem)
        context.load_cert_chain(cert_path, key_path)
    return context


def _evaluate_callback(
    params: dict[str, list[str]], expected_state: str
) -> Union[str, AuthorizationAborted]:
    """Return the authorization code, or the abort the query string implies."""
    state = params.get("state", [None])[0]
    if state != expected_state:
        return AuthorizationAborted(
            AbortReason.STATE_MISMATCH, "callback state does not match this attempt"
        )
    if "error" in params:
        error = params["error"][0]
        description = params.get("error_description", [""])[0]
        detail = f"{error}: {description}" if description else error
        return AuthorizationAborted(AbortReason.DENIED, detail)
    code = params.get("code", [""])[0]
    if not code:
        return AuthorizationAborted(
            AbortReason.MISSING_CODE, "callback carried no authorization code"
        )
    return code


class CallbackListener:
    """Single-use HTTPS listener for the OAuth2 redirect.

    Args:
        expected_state: The opaque state value sent in the authorization
            URL. A callback carrying anything else is rejected.
        host: Loopback address to bind.
        port: Port to bind; ``0`` picks a free ephemeral port.
        path: Callback path the provider redirects to.
        server_name: Host name used in :attr:`redirect_uri` and in the
            certificate.
        ssl_context: Optional pre-built server TLS context.
    """

    def __init__(
        self,
        expected_state: str,
        host: str = "127.0.0.1",
        port: int = 8080,
        path: str = "/callback",
        server_name: str = "localhost",
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.expected_state = expected_state
        self.host = host
        self.path = path or "/"
        self.server_name = server_name
        self._port = port
        self._ssl_context = ssl_context
        self._server: Optional[asyncio.base_events.Server] = None
        self._outcome: Optional[asyncio.Future[str]] = None
        self._handled = False
        self._connections: set[asyncio.Task] = set()

    @property
    def port(self) -> int:
        return self._port

    @property
    def redirect_uri(self) -> str:
        return f"https://{self.server_name}:{self._port}{self.path}"

    @property
    def is_serving(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        """Bind the TLS socket and start accepting connections.

        Raises:
            AuthorizationAborted: With ``LISTENER_FAILED`` if the address
                cannot be bound (e.g. the port is in use).
        """
        if self._server is not None:
            return
        context = self._ssl_context or create_server_ssl_context(
            tuple(dict.fromkeys((self.server_name, self.host)))
        )
        self._outcome = asyncio.get_running_loop().create_future()
        try:
            self._server = await asyncio.start_server(
                self._handle_connection, self.host, self._port, ssl=context
            )
        except OSError as exc:
            raise AuthorizationAborted(
                AbortReason.LISTENER_FAILED,
                f"cannot listen on {self.host}:{self._port}: {exc}",
            ) from exc
        self._port = self._server.sockets[0].getsockname()[1]
        logger.debug("Callback listener bound on %s:%d", self.host, self._port)

    async def close(self) -> None:
        """Stop accepting connections and release the port. Safe to call twice."""
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        for task in list(self._connections):
            task.cancel()
        if self._connections:
            await asyncio.gather(*self._connections, return_exceptions=True)
        await server.wait_closed()
        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()
        logger.debug("Callback listener on port %d closed", self._port)

    async def __aenter__(self) -> CallbackListener:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def wait_for_code(self, timeout: Optional[float] = None) -> str:
        """Wait for the callback and return its authorization code.

        Raises:
            AuthorizationAborted: ``TIMEOUT`` if nothing arrives in time,
                or ``STATE_MISMATCH`` / ``DENIED`` / ``MISSING_CODE`` for a
                callback that fails validation.
        """
        if self._outcome is None:
            raise RuntimeError("CallbackListener.start() has not been called")
        try:
            return await asyncio.wait_for(asyncio.shield(self._outcome), timeout)
        except asyncio.TimeoutError as exc:
            raise AuthorizationAborted(
                AbortReason.TIMEOUT, f"no callback received within {timeout:g}s"
            ) from exc

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            await self._serve(reader, writer)
        except (ConnectionError, ssl.SSLError, asyncio.IncompleteReadError) as exc:
            logger.debug("Callback connection dropped: %s", exc)
        finally:
            if task is not None:
                self._connections.discard(task)
            writer.close()

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request = await asyncio.wait_for(_read_request(reader), REQUEST_READ_TIMEOUT)
        except (asyncio.TimeoutError, ValueError) as exc:
            logger.debug("Discarding unreadable callback request: %s", exc)
            return
        if request is None:
            return

        method, target = request
        parsed = urlsplit(target)
        if parsed.path != self.path:
            await _respond(writer, 404, _NOT_FOUND_PAGE)
            return
        if method != "GET":
            await _respond(writer, 405, _NOT_FOUND_PAGE)
            return
        if self._handled or self._outcome is None or self._outcome.done():
            await _respond(writer, 409, _ALREADY_HANDLED_PAGE)
            return
        self._handled = True

        outcome = _evaluate_callback(parse_qs(parsed.query), self.expected_state)
        if isinstance(outcome, AuthorizationAborted):
            logger.info("Authorization callback rejected: %s", outcome.reason.value)
            page = _FAILURE_PAGE.format(message=html.escape(str(outcome)))
            status = 400
        else:
            logger.info("Authorization callback received")
            page = _SUCCESS_PAGE
            status = 200

        try:
            await _respond(writer, status, page)
        finally:
            if not self._outcome.done():
                if isinstance(outcome, AuthorizationAborted):
                    self._outcome.set_exception(outcome)
                else:
                    self._outcome.set_result(outcome)


async def _read_request(reader: asyncio.StreamReader) -> Optional[tuple[str, str]]:
    """Read the request line and skip the headers. ``None`` on an empty connection."""
    line = await reader.readline()
    if not line:
        return None
    parts = line.decode("latin-1").split()
    if len(parts) < 2:
        raise ValueError(f"malformed request line {line[:80]!r}")
    for _ in range(MAX_HEADER_LINES):
        header = await reader.readline()
        if header in (b"\r\n", b"\n", b""):
            break
    else:
        raise ValueError("too many request headers")
    return parts[0].upper(), parts[1]


async def _respond(writer: asyncio.StreamWriter, status: int, body: str) -> None:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status} {_REASONS.get(status, '')}\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Cache-Control: no-store\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    writer.write(head.encode("latin-1") + payload)
    await writer.drain()
