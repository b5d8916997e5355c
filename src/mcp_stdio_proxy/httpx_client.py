"""HTTP client factory shared by the message forwarder and the health monitor.

Adds request and response logging hooks to a plain httpx AsyncClient. Status codes
are not acted on here; callers decide what counts as a failure.
"""

import logging
from typing import Any

import httpx

from .session import MCP_SESSION_ID

logger = logging.getLogger(__name__)

_SENSITIVE_HEADERS = frozenset({"authorization", "x-api-key", "cookie"})


def normalize_verify_ssl(verify_ssl: bool | str) -> bool | str:
    """Map textual booleans to bool and keep anything else as a CA bundle path."""
    if isinstance(verify_ssl, str):
        lowered = verify_ssl.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return verify_ssl


def custom_httpx_client(
    headers: dict[str, str] | None = None,
    timeout: httpx.Timeout | None = None,
    verify_ssl: bool | str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an httpx AsyncClient with the proxy defaults and logging.

    Args:
        headers: Optional headers to include with all requests.
        timeout: Request timeout as httpx.Timeout object. Defaults to 30 seconds.
        verify_ssl: Control SSL verification. Use False to disable
            or a path to a certificate bundle.
        transport: Optional transport, mainly for tests.

    Returns:
        Configured httpx.AsyncClient instance.
    """
    kwargs: dict[str, Any] = {
        "follow_redirects": True,
        "timeout": timeout if timeout is not None else httpx.Timeout(30.0),
    }

    if headers is not None:
        kwargs["headers"] = headers

    if transport is not None:
        kwargs["transport"] = transport

    if verify_ssl is not None:
        normalized_verify = normalize_verify_ssl(verify_ssl)
        kwargs["verify"] = normalized_verify

        if isinstance(normalized_verify, bool):
            logger.debug(
                "Configured httpx.AsyncClient verify=%s (SSL verification %s).",
                normalized_verify,
                "enabled" if normalized_verify else "disabled",
            )
        else:
            logger.debug(
                "Configured httpx.AsyncClient using certificate bundle at %s.",
                normalized_verify,
            )

    async def log_request(request: httpx.Request) -> None:
        """Log HTTP request details."""
        logger.debug("HTTP Request: %s %s", request.method, request.url)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Request Headers: %s", mask_headers(request.headers))

    async def log_response(response: httpx.Response) -> None:
        """Log HTTP response details."""
        logger.debug(
            "HTTP Response: %s %s - %d %s",
            response.request.method,
            response.request.url,
            response.status_code,
            response.reason_phrase,
        )

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Response Headers: %s", mask_headers(response.headers))
            session_id = response.headers.get(MCP_SESSION_ID)
            if session_id:
                logger.debug("Response carries session id %s", session_id)

    kwargs["event_hooks"] = {
        "request": [log_request],
        "response": [log_response],
    }

    return httpx.AsyncClient(**kwargs)


def mask_headers(headers: httpx.Headers) -> dict[str, str]:
    """Return headers as a dict with credentials replaced by a placeholder."""
    safe_headers = {}
    for key, value in headers.items():
        if key.lower() in _SENSITIVE_HEADERS:
            safe_headers[key] = "***MASKED***"
        else:
            safe_headers[key] = value
    return safe_headers
