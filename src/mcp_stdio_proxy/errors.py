"""Turn forwarding failures into JSON-RPC error replies."""

import json

from mcp import types

from .messages import ProtocolMessage


class ForwardingError(RuntimeError):
    """A message could not be delivered upstream within the allowed attempts."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


def error_reply(
    message: ProtocolMessage,
    error: BaseException,
    *,
    code: int = types.INTERNAL_ERROR,
) -> str:
    """Build the single-line error reply answering ``message``.

    Only meaningful for messages that carry an ``id``; notifications never get a reply.
    """
    payload = types.ErrorData(code=code, message=f"Internal error: {error}")
    reply = {
        "jsonrpc": "2.0",
        "id": message.id,
        "error": payload.model_dump(exclude_none=True),
    }
    return json.dumps(reply, separators=(",", ":"), ensure_ascii=False)
