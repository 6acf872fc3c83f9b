"""Tests for the loopback HTTPS callback listener.

A real listener is bound on 127.0.0.1 with an ephemeral port, and an
``httpx.AsyncClient`` with certificate verification disabled plays the
browser.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket

import httpx
import pytest
from cryptography import x509

from ravelry.auth.callback_server import (
    CallbackListener,
    _evaluate_callback,
    generate_self_signed_certificate,
)
from ravelry.exceptions import AbortReason, AuthorizationAborted


async def _browser_get(listener: CallbackListener, query: str, path: str = "/callback") -> httpx.Response:
    async with httpx.AsyncClient(verify=False) as browser:
        return await browser.get(f"https://127.0.0.1:{listener.port}{path}?{query}")


def _port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        # Server-closed connections linger in TIME_WAIT; asyncio rebinds the same way.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


# ---------------------------------------------------------------------------
# Certificate generation
# ---------------------------------------------------------------------------


class TestSelfSignedCertificate:
    def test_subject_alternative_names(self) -> None:
        cert_pem, key_pem = generate_self_signed_certificate(("localhost", "127.0.0.1"))
        cert = x509.load_pem_x509_certificate(cert_pem)

        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["localhost"]
        assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("127.0.0.1")]
        assert b"PRIVATE KEY" in key_pem

    def test_self_issued(self) -> None:
        cert_pem, _ = generate_self_signed_certificate()
        cert = x509.load_pem_x509_certificate(cert_pem)
        assert cert.issuer == cert.subject


# ---------------------------------------------------------------------------
# Query evaluation
# ---------------------------------------------------------------------------


class TestEvaluateCallback:
    def test_valid(self) -> None:
        assert _evaluate_callback({"state": ["s"], "code": ["c"]}, "s") == "c"

    def test_state_checked_before_error(self) -> None:
        outcome = _evaluate_callback({"state": ["other"], "error": ["access_denied"]}, "s")
        assert isinstance(outcome, AuthorizationAborted)
        assert outcome.reason is AbortReason.STATE_MISMATCH

    def test_missing_state(self) -> None:
        outcome = _evaluate_callback({"code": ["c"]}, "s")
        assert outcome.reason is AbortReason.STATE_MISMATCH

    def test_denied_with_description(self) -> None:
        outcome = _evaluate_callback(
            {"state": ["s"], "error": ["access_denied"], "error_description": ["User said no"]},
            "s",
        )
        assert outcome.reason is AbortReason.DENIED
        assert outcome.detail == "access_denied: User said no"

    def test_missing_code(self) -> None:
        outcome = _evaluate_callback({"state": ["s"]}, "s")
        assert outcome.reason is AbortReason.MISSING_CODE


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------


class TestCallbackListener:
    async def test_receives_code_and_acknowledges_browser(self) -> None:
        async with CallbackListener("expected", port=0) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_code(timeout=10))
            response = await _browser_get(listener, "code=abc&state=expected")
            code = await waiter

        assert code == "abc"
        assert response.status_code == 200
        assert "Authorization successful" in response.text
        assert response.headers["content-type"].startswith("text/html")

    async def test_redirect_uri_uses_bound_port(self) -> None:
        async with CallbackListener("s", port=0, path="/cb") as listener:
            assert listener.port != 0
            assert listener.redirect_uri == f"https://localhost:{listener.port}/cb"

    async def test_state_mismatch_rejected_and_port_released(self) -> None:
        async with CallbackListener("expected", port=0) as listener:
            port = listener.port
            waiter = asyncio.ensure_future(listener.wait_for_code(timeout=10))
            response = await _browser_get(listener, "code=abc&state=forged")
            with pytest.raises(AuthorizationAborted) as exc_info:
                await waiter

        assert exc_info.value.reason is AbortReason.STATE_MISMATCH
        assert response.status_code == 400
        assert "Authorization failed" in response.text
        assert _port_is_free(port)

    async def test_denied(self) -> None:
        async with CallbackListener("s", port=0) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_code(timeout=10))
            await _browser_get(listener, "error=access_denied&state=s")
            with pytest.raises(AuthorizationAborted) as exc_info:
                await waiter
        assert exc_info.value.reason is AbortReason.DENIED

    async def test_missing_code(self) -> None:
        async with CallbackListener("s", port=0) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_code(timeout=10))
            await _browser_get(listener, "state=s")
            with pytest.raises(AuthorizationAborted) as exc_info:
                await waiter
        assert exc_info.value.reason is AbortReason.MISSING_CODE

    async def test_other_paths_do_not_consume_callback(self) -> None:
        async with CallbackListener("s", port=0) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_code(timeout=10))
            favicon = await _browser_get(listener, "", path="/favicon.ico")
            assert favicon.status_code == 404
            assert not waiter.done()

            await _browser_get(listener, "code=c&state=s")
            assert await waiter == "c"

    async def test_only_first_callback_is_evaluated(self) -> None:
        async with CallbackListener("s", port=0) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_code(timeout=10))
            first = await _browser_get(listener, "code=first&state=s")
            second = await _browser_get(listener, "code=second&state=s")
            assert await waiter == "first"

        assert first.status_code == 200
        assert second.status_code == 409

    async def test_timeout_releases_port(self) -> None:
        async with CallbackListener("s", port=0) as listener:
            port = listener.port
            with pytest.raises(AuthorizationAborted) as exc_info:
                await listener.wait_for_code(timeout=0.05)

        assert exc_info.value.reason is AbortReason.TIMEOUT
        assert not listener.is_serving
        assert _port_is_free(port)

    async def test_bind_failure(self) -> None:
        async with CallbackListener("s", port=0) as first:
            second = CallbackListener("s", port=first.port)
            with pytest.raises(AuthorizationAborted) as exc_info:
                await second.start()
        assert exc_info.value.reason is AbortReason.LISTENER_FAILED

    async def test_close_is_idempotent(self) -> None:
        listener = CallbackListener("s", port=0)
        await listener.start()
        await listener.close()
        await listener.close()
        assert not listener.is_serving

    async def test_wait_before_start(self) -> None:
        with pytest.raises(RuntimeError):
            await CallbackListener("s", port=0).wait_for_code(timeout=1)
