"""Reassemble JSON documents from a ``text/event-stream`` response body."""

import logging
from collections.abc import AsyncIterable, AsyncIterator

from .messages import MessageDecodeError, parse_message

logger = logging.getLogger(__name__)


class SseFrameParser:
    """Line-oriented parser for Server-Sent Events framing.

    ``data`` lines are buffered until a blank line ends the event; the buffered lines
    are then joined with ``\\n`` into one frame. Event types are not used for
    routing: every event is treated as carrying data.
    """

    def __init__(self) -> None:
        self._data_lines: list[str] = []

    def feed(self, line: str) -> str | None:
        """Consume one line (without terminator). Returns a frame when an event ends."""
        if not line:
            return self.flush()

        if line.startswith(":"):
            logger.debug("SSE comment: %s", line)
            return None

        field, sep, value = line.partition(":")
        if not sep:
            logger.debug("Ignoring SSE line without field separator: %s", line)
            return None
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            logger.debug("SSE event type: %s", value)
        else:
            logger.debug("Ignoring SSE field %s: %s", field, value)
        return None

    def flush(self) -> str | None:
        """Return the buffered frame, if any, and reset the buffer."""
        if not self._data_lines:
            return None
        frame = "\n".join(self._data_lines)
        self._data_lines = []
        return frame


async def iter_sse_messages(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield each well-formed protocol message carried by an SSE body.

    Frames that do not decode are dropped and logged; the rest of the stream is
    still processed.
    """
    parser = SseFrameParser()

    def _check(frame: str) -> bool:
        try:
            parse_message(frame)
        except MessageDecodeError as e:
            logger.error("Dropping malformed SSE frame: %s", e)
            return False
        return True

    async for line in lines:
        frame = parser.feed(line)
        if frame is not None and _check(frame):
            yield frame

    frame = parser.flush()
    if frame is not None and _check(frame):
        yield frame
