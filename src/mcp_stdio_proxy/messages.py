"""JSON-RPC message model used to validate traffic in both directions.

Validation is lenient: any JSON object whose well-known fields have
compatible types is accepted, and unknown fields are kept. The proxy forwards the
original text, so the model is only ever used to check and to read ``id``.
"""

import json
import typing as t

from pydantic import BaseModel, ConfigDict, ValidationError


class MessageDecodeError(ValueError):
    """Raised when a text is not a well-formed protocol message."""


class ProtocolError(BaseModel):
    """The ``error`` member of a JSON-RPC response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str = ""
    data: t.Any = None


class ProtocolMessage(BaseModel):
    """A JSON-RPC request, notification or response."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: str | None = None
    id: t.Any = None
    method: str | None = None
    params: t.Any = None
    result: t.Any = None
    error: ProtocolError | None = None

    @property
    def has_id(self) -> bool:
        """True when the ``id`` key was present, even if its value is null."""
        return "id" in self.model_fields_set

    @property
    def is_notification(self) -> bool:
        return self.method is not None and not self.has_id

    @property
    def is_response(self) -> bool:
        fields = self.model_fields_set
        return "result" in fields or "error" in fields


def parse_message(text: str | bytes) -> ProtocolMessage:
    """Decode and validate a single protocol message.

    Raises:
        MessageDecodeError: If the text is not JSON or not a message-shaped object.
    """
    try:
        return ProtocolMessage.model_validate_json(text)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        detail = errors[0]["msg"] if errors else str(e)
        raise MessageDecodeError(f"invalid protocol message: {detail}") from e


def output_line(text: str) -> str:
    """Return the form of an already validated document that is written to stdout.

    The document is kept verbatim unless it spans several lines, in which case it is
    compacted so that stdout stays one message per line.
    """
    if "\n" not in text and "\r" not in text:
        return text
    return json.dumps(json.loads(text), separators=(",", ":"), ensure_ascii=False)
