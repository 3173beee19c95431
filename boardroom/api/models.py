"""Shared data models for the LLM client and the agentic loop.

Kept apart from llm.py so the loop and tests can build responses
without importing httpx machinery.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from boardroom.api.schemas import ToolCall


@dataclass
class Message:
    """A single caller-supplied conversation message."""

    role: str  # "user" or "assistant"
    content: str | list[dict[str, Any]]

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


def trim_history(history: list[Message], limit: int) -> list[Message]:
    """The most recent limit messages."""
    return list(history[-limit:]) if history and limit > 0 else []


@dataclass
class ApiResponse:
    """Parsed response from Anthropic Messages API."""

    content: list[dict[str, Any]]  # Raw content blocks from API
    stop_reason: str  # end_turn, max_tokens, tool_use, stop_sequence
    usage: dict[str, int] | None = None

    @property
    def text_content(self) -> str:
        return "".join(b.get("text", "") for b in self.content if b.get("type") == "text")

    @property
    def tool_uses(self) -> list[ToolCall]:
        return [
            ToolCall(id=b["id"], name=b["name"], input=b.get("input") or {})
            for b in self.content
            if b.get("type") == "tool_use"
        ]

    def assistant_content(self) -> list[dict[str, Any]]:
        """Text plus tool_use blocks, for echoing back as the assistant turn."""
        blocks: list[dict[str, Any]] = []
        if self.text_content:
            blocks.append({"type": "text", "text": self.text_content})
        for call in self.tool_uses:
            blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.input})
        return blocks


@dataclass
class StreamEvent:
    """A single event from the streaming API response."""

    type: str  # text_delta, usage, done, error
    text: str = ""
    stop_reason: str = ""
    usage: dict[str, int] | None = None
