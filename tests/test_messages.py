"""Tests for protocol message validation and error replies."""

import json

import pytest

from mcp_stdio_proxy.errors import ForwardingError, error_reply
from mcp_stdio_proxy.messages import MessageDecodeError, output_line, parse_message


def test_parse_request() -> None:
    message = parse_message('{"jsonrpc":"2.0","id":1,"method":"tools/list","params":{}}')
    assert message.method == "tools/list"
    assert message.id == 1
    assert message.has_id
    assert not message.is_notification
    assert not message.is_response


def test_parse_notification_has_no_id() -> None:
    message = parse_message('{"jsonrpc":"2.0","method":"notifications/initialized"}')
    assert not message.has_id
    assert message.is_notification


def test_null_id_still_counts_as_id() -> None:
    """A present but null id is a request that expects a reply."""
    message = parse_message('{"jsonrpc":"2.0","id":null,"method":"ping"}')
    assert message.has_id
    assert message.id is None


def test_response_without_version_tag_is_accepted() -> None:
    message = parse_message('{"id":1,"result":{}}')
    assert message.is_response
    assert message.result == {}


def test_unknown_fields_are_accepted() -> None:
    message = parse_message('{"a":1}')
    assert message.model_extra == {"a": 1}


def test_error_member_is_validated() -> None:
    message = parse_message('{"jsonrpc":"2.0","id":"x","error":{"code":-32601,"message":"nope"}}')
    assert message.error is not None
    assert message.error.code == -32601
    assert message.is_response


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "{",
        "[1, 2]",
        '"string"',
        '{"method": 5}',
        '{"error": {"message": "missing code"}}',
    ],
)
def test_invalid_messages_raise(text: str) -> None:
    with pytest.raises(MessageDecodeError):
        parse_message(text)


def test_output_line_keeps_single_line_documents_verbatim() -> None:
    text = '{"id": 1,  "result": {}}'
    assert output_line(text) == text


def test_output_line_compacts_multi_line_documents() -> None:
    assert output_line('{"a":\n1}') == '{"a":1}'


def test_error_reply_uses_same_id_and_internal_error_code() -> None:
    message = parse_message('{"jsonrpc":"2.0","id":5,"method":"tools/call"}')
    reply = json.loads(error_reply(message, ForwardingError("failed after 3 attempts: boom", attempts=3)))

    assert reply == {
        "jsonrpc": "2.0",
        "id": 5,
        "error": {"code": -32603, "message": "Internal error: failed after 3 attempts: boom"},
    }


def test_error_reply_keeps_string_id() -> None:
    message = parse_message('{"jsonrpc":"2.0","id":"req-7","method":"ping"}')
    reply = json.loads(error_reply(message, RuntimeError("down")))
    assert reply["id"] == "req-7"
