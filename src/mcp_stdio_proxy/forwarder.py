"""Forward protocol messages to the upstream streamable HTTP endpoint."""

import asyncio
import logging
import typing as t
from collections.abc import Sequence

import httpx

from .decoder import JSON, SSE, LineSink, decode_response
from .errors import ForwardingError, error_reply
from .messages import MessageDecodeError, ProtocolMessage
from .session import MCP_SESSION_ID, SessionState

logger = logging.getLogger(__name__)

DEFAULT_RETRY_ATTEMPTS: t.Final[int] = 3
DEFAULT_RETRY_BACKOFF: t.Final[tuple[float, ...]] = (0.1, 0.2, 0.4)


class TransportForwarder:
    """POSTs each message upstream and relays whatever comes back.

    One message is handled at a time. The forwarder owns the session state: the first
    ``Mcp-Session-Id`` returned by the server is attached to every later request.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        sink: LineSink,
        *,
        session: SessionState | None = None,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_backoff: Sequence[float] = DEFAULT_RETRY_BACKOFF,
        timeout: float | None = None,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if retry_attempts > 1 and not retry_backoff:
            raise ValueError("retry_backoff must not be empty when retrying")
        self._client = client
        self._url = url
        self._sink = sink
        self.session = session if session is not None else SessionState()
        self._max_attempts = retry_attempts
        self._backoff = tuple(retry_backoff)
        self._timeout = timeout

    async def dispatch(self, raw_line: str, message: ProtocolMessage) -> None:
        """Forward a message, answering with an error reply if delivery fails.

        Notifications that cannot be delivered are only logged.
        """
        try:
            await self.forward(raw_line, message)
        except ForwardingError as e:
            logger.error("Failed to forward message: %s", e)
            if message.has_id:
                await self._sink.write_line(error_reply(message, e))
            else:
                logger.debug("Dropping failed notification %s", message.method)

    async def forward(self, raw_line: str, message: ProtocolMessage) -> None:
        """Deliver ``raw_line`` upstream, retrying on any failure.

        Connection errors, upstream error statuses, malformed bodies and attempts
        running past ``timeout`` seconds all count against the same attempt limit.

        Raises:
            ForwardingError: When every attempt failed.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_attempts):
            if attempt > 0:
                delay = self._backoff[min(attempt - 1, len(self._backoff) - 1)]
                logger.debug(
                    "Retrying %s: attempt %d/%d after %.0fms",
                    message.method or "message",
                    attempt + 1,
                    self._max_attempts,
                    delay * 1000,
                )
                await asyncio.sleep(delay)

            try:
                await self._send(raw_line)
                return
            except (httpx.HTTPError, MessageDecodeError) as e:
                last_error = e
                logger.debug("Attempt %d/%d failed: %s", attempt + 1, self._max_attempts, e)

        raise ForwardingError(
            f"failed after {self._max_attempts} attempts: {last_error}",
            attempts=self._max_attempts,
        ) from last_error

    async def _send(self, raw_line: str) -> None:
        # Bounds the whole exchange, including a streamed body that keeps sending keep-alives.
        try:
            async with asyncio.timeout(self._timeout):
                await self._exchange(raw_line)
        except TimeoutError as e:
            raise httpx.TimeoutException(f"request timed out after {self._timeout:g}s") from e

    async def _exchange(self, raw_line: str) -> None:
        headers = {
            "Content-Type": JSON,
            "Accept": f"{JSON}, {SSE}",
        }
        self.session.apply(headers)

        async with self._client.stream(
            "POST",
            self._url,
            content=raw_line.encode("utf-8"),
            headers=headers,
        ) as response:
            self.session.adopt(response.headers.get(MCP_SESSION_ID))

            if response.status_code >= 400:
                body = await response.aread()
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}: {body.decode('utf-8', errors='replace')}",
                    request=response.request,
                    response=response,
                )

            await decode_response(response, self._sink)
