"""Tests for the shared httpx client factory."""

from __future__ import annotations

import logging
from unittest.mock import Mock, patch

import httpx
import pytest

from mcp_stdio_proxy.httpx_client import custom_httpx_client, mask_headers, normalize_verify_ssl


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 404, 500, 503])
async def test_error_status_is_not_raised(status: int) -> None:
    """The client hands every status back to the caller."""

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, request=request, json={"error": "boom"})

    client = custom_httpx_client(transport=httpx.MockTransport(handler))

    resp = await client.get("http://localhost/mcp")
    assert resp.status_code == status
    await client.aclose()


@pytest.mark.asyncio
async def test_debug_logging_masks_credentials(caplog: pytest.LogCaptureFixture) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, request=request, headers={"Mcp-Session-Id": "abc"}, json={})

    client = custom_httpx_client(
        headers={"Authorization": "Bearer secret-token"},
        transport=httpx.MockTransport(handler),
    )

    with caplog.at_level(logging.DEBUG, logger="mcp_stdio_proxy.httpx_client"):
        await client.get("http://localhost/mcp")
    await client.aclose()

    assert "secret-token" not in caplog.text
    assert "***MASKED***" in caplog.text
    assert "session id abc" in caplog.text


def test_mask_headers() -> None:
    headers = httpx.Headers({"X-API-Key": "k", "Cookie": "c=1", "Accept": "application/json"})
    assert mask_headers(headers) == {
        "x-api-key": "***MASKED***",
        "cookie": "***MASKED***",
        "accept": "application/json",
    }


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("true", True),
        ("YES", True),
        ("0", False),
        ("off", False),
        (False, False),
        ("/etc/ssl/ca.pem", "/etc/ssl/ca.pem"),
    ],
)
def test_normalize_verify_ssl(value: bool | str, expected: bool | str) -> None:
    assert normalize_verify_ssl(value) == expected


@patch("mcp_stdio_proxy.httpx_client.httpx.AsyncClient")
def test_custom_httpx_client_disable_ssl(mock_async_client: Mock) -> None:
    """custom_httpx_client passes verify=False to httpx when disabled."""
    custom_httpx_client(verify_ssl=False)
    kwargs = mock_async_client.call_args.kwargs
    assert kwargs["verify"] is False
    assert kwargs["follow_redirects"] is True


@patch("mcp_stdio_proxy.httpx_client.httpx.AsyncClient")
def test_custom_httpx_client_cert_path(mock_async_client: Mock) -> None:
    """custom_httpx_client forwards certificate bundle paths."""
    custom_httpx_client(verify_ssl="/tmp/cert.pem")  # noqa: S108
    kwargs = mock_async_client.call_args.kwargs
    assert kwargs["verify"] == "/tmp/cert.pem"  # noqa: S108


@patch("mcp_stdio_proxy.httpx_client.httpx.AsyncClient")
def test_custom_httpx_client_default_verify(mock_async_client: Mock) -> None:
    """Without a setting, verification is left to httpx."""
    custom_httpx_client()
    kwargs = mock_async_client.call_args.kwargs
    assert "verify" not in kwargs
    assert kwargs["timeout"] == httpx.Timeout(30.0)
