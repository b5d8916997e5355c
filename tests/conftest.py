"""Shared fixtures for the proxy tests."""

from __future__ import annotations

import json
from typing import Any

import pytest


class CollectingSink:
    """Output channel that keeps every written line in memory."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    async def write_line(self, text: str) -> None:
        self.lines.append(text)

    @property
    def messages(self) -> list[Any]:
        return [json.loads(line) for line in self.lines]


@pytest.fixture
def sink() -> CollectingSink:
    """Return an empty in-memory output channel."""
    return CollectingSink()
