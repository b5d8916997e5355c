"""Newline-delimited message channel over the process's stdin and stdout."""

import asyncio
import logging
import os
import stat
import sys
from collections.abc import AsyncIterable, AsyncIterator
from io import TextIOWrapper

import anyio

from .messages import MessageDecodeError, ProtocolMessage, parse_message

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


async def stdin_lines() -> AsyncIterator[bytes]:
    """Yield raw lines from stdin until end of input.

    Pipes, sockets and terminals are read on the event loop, so a pending read is
    cancelled as soon as the relay is. Other inputs (regular files, ``/dev/null``)
    cannot be watched by the loop and are read in a worker thread; they always
    reach end of file.
    """
    stdin = sys.stdin.buffer
    if not _is_watchable(stdin.fileno()):
        logger.debug("Reading stdin in a worker thread")
        async for line in anyio.wrap_file(stdin):
            yield line
        return

    reader = asyncio.StreamReader()
    transport, _ = await asyncio.get_running_loop().connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader),
        stdin,
    )
    try:
        async for line in split_lines(reader):
            yield line
    finally:
        transport.close()


def _is_watchable(fd: int) -> bool:
    if sys.platform == "win32":
        return False
    mode = os.fstat(fd).st_mode
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode) or os.isatty(fd)


async def split_lines(reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """Yield the lines of ``reader`` with their terminators. Lines have no length limit."""
    buffer = bytearray()
    while True:
        chunk = await reader.read(_READ_CHUNK)
        if not chunk:
            break
        buffer.extend(chunk)
        start = 0
        end = buffer.find(b"\n")
        while end >= 0:
            yield bytes(buffer[start : end + 1])
            start = end + 1
            end = buffer.find(b"\n", start)
        del buffer[:start]

    if buffer:
        yield bytes(buffer)


def open_stdout() -> anyio.AsyncFile[str]:
    return anyio.wrap_file(TextIOWrapper(sys.stdout.buffer, encoding="utf-8", newline="\n"))


class LineWriter:
    """Writes one message per line and flushes immediately."""

    def __init__(self, stream: anyio.AsyncFile[str]) -> None:
        self._stream = stream

    async def write_line(self, text: str) -> None:
        await self._stream.write(text + "\n")
        await self._stream.flush()
        logger.debug("Sent: %s", text)


async def read_messages(
    lines: AsyncIterable[str | bytes],
) -> AsyncIterator[tuple[str, ProtocolMessage]]:
    """Yield ``(raw_line, message)`` for every decodable input line.

    Raw byte lines must be UTF-8. Blank lines are skipped. Lines that are not valid
    messages are logged and skipped; they never end the stream.
    """
    async for raw in lines:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.error("Skipping input line: not valid UTF-8: %s", e)
                continue

        line = raw.rstrip("\r\n")
        if not line.strip():
            continue

        logger.debug("Received: %s", line)
        try:
            message = parse_message(line)
        except MessageDecodeError as e:
            logger.error("Skipping input line: %s", e)
            continue

        yield line, message
