"""Write an upstream HTTP response to stdout according to its content type."""

import logging
import typing as t

import httpx

from .messages import MessageDecodeError, output_line, parse_message
from .sse import iter_sse_messages

logger = logging.getLogger(__name__)

JSON: t.Final[str] = "application/json"
SSE: t.Final[str] = "text/event-stream"

# Upstream acknowledges notifications with an empty 202/204.
_EMPTY_OK_STATUSES = frozenset({202, 204})


class LineSink(t.Protocol):
    async def write_line(self, text: str) -> None: ...


def is_event_stream(response: httpx.Response) -> bool:
    return SSE in response.headers.get("content-type", "").lower()


async def decode_response(response: httpx.Response, sink: LineSink) -> int:
    """Decode ``response`` and write every message it carries to ``sink``.

    Event streams are parsed frame by frame as they arrive; anything else must be a
    single JSON message.

    Returns:
        The number of messages written.

    Raises:
        MessageDecodeError: If a non-streamed body is not a valid protocol message.
    """
    if is_event_stream(response):
        written = 0
        async for document in iter_sse_messages(response.aiter_lines()):
            await sink.write_line(output_line(document))
            written += 1
        logger.debug("Relayed %d message(s) from event stream", written)
        return written

    body = await response.aread()
    if not body.strip() and response.status_code in _EMPTY_OK_STATUSES:
        logger.debug("Upstream accepted message without a reply (HTTP %d)", response.status_code)
        return 0

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MessageDecodeError(f"response body is not UTF-8: {e}") from e
    text = text.rstrip("\r\n")

    parse_message(text)
    await sink.write_line(output_line(text))
    return 1
