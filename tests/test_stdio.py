"""Tests for reading input lines and writing output lines."""

import asyncio
import io
import logging
from collections.abc import AsyncIterator

import anyio
import pytest

from mcp_stdio_proxy.stdio import LineWriter, read_messages, split_lines


async def aiter_lines(lines: list[str | bytes]) -> AsyncIterator[str | bytes]:
    for line in lines:
        yield line


@pytest.mark.asyncio
async def test_blank_and_invalid_lines_are_skipped(caplog: pytest.LogCaptureFixture) -> None:
    lines = [
        "\n",
        "   \n",
        "this is not json\n",
        '{"jsonrpc":"2.0","id":1,"method":"ping"}\r\n',
        '{"jsonrpc":"2.0","method":"notifications/initialized"}',
    ]

    with caplog.at_level(logging.ERROR, logger="mcp_stdio_proxy.stdio"):
        received = [item async for item in read_messages(aiter_lines(lines))]

    assert [raw for raw, _ in received] == [
        '{"jsonrpc":"2.0","id":1,"method":"ping"}',
        '{"jsonrpc":"2.0","method":"notifications/initialized"}',
    ]
    assert received[0][1].method == "ping"
    assert received[1][1].is_notification
    assert "Skipping input line" in caplog.text


@pytest.mark.asyncio
async def test_large_line_is_read_whole() -> None:
    payload = "x" * (3 * 1024 * 1024)
    line = '{"jsonrpc":"2.0","id":1,"result":{"blob":"' + payload + '"}}\n'

    received = [item async for item in read_messages(aiter_lines([line]))]

    assert len(received) == 1
    assert received[0][1].result["blob"] == payload


@pytest.mark.asyncio
async def test_line_writer_appends_newline() -> None:
    buffer = io.StringIO()
    writer = LineWriter(anyio.wrap_file(buffer))

    await writer.write_line('{"id":1,"result":{}}')
    await writer.write_line('{"id":2,"result":{}}')

    assert buffer.getvalue() == '{"id":1,"result":{}}\n{"id":2,"result":{}}\n'


@pytest.mark.asyncio
async def test_invalid_utf8_line_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    lines = [
        b'{"jsonrpc":"2.0","id":1,"method":"\xff\xfe"}\n',
        '{"jsonrpc":"2.0","id":2,"method":"café"}\n'.encode(),
    ]

    with caplog.at_level(logging.ERROR, logger="mcp_stdio_proxy.stdio"):
        received = [item async for item in read_messages(aiter_lines(lines))]

    assert [message.id for _, message in received] == [2]
    assert received[0][1].method == "café"
    assert "not valid UTF-8" in caplog.text


@pytest.mark.asyncio
async def test_split_lines_across_chunks() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b'{"id":1}\n{"id"')
    reader.feed_data(b':2}\r\n\n{"id":3}')
    reader.feed_eof()

    lines = [line async for line in split_lines(reader)]

    assert lines == [b'{"id":1}\n', b'{"id":2}\r\n', b"\n", b'{"id":3}']


@pytest.mark.asyncio
async def test_split_lines_has_no_line_length_limit() -> None:
    payload = b"x" * (5 * 1024 * 1024)
    reader = asyncio.StreamReader()
    reader.feed_data(payload + b"\n")
    reader.feed_eof()

    lines = [line async for line in split_lines(reader)]

    assert lines == [payload + b"\n"]


@pytest.mark.asyncio
async def test_pending_read_is_cancellable() -> None:
    """A read waiting on idle input ends as soon as its task is cancelled."""
    reader = asyncio.StreamReader()

    async def first_line() -> bytes:
        async for line in split_lines(reader):
            return line
        return b""

    task = asyncio.create_task(first_line())
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=1.0)
