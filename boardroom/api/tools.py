"""Tool dispatcher for direct Anthropic API integration.

Provides:
- ToolError: raised by handlers for expected, user-visible failures
- ToolDispatcher: registers tools, executes call batches, formats results

Handlers are async callables taking a ToolContext plus the model's
arguments as **kwargs, returning a typed payload. Any exception becomes a
failed ToolResult so one bad call cannot abort the batch.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from boardroom.api.schemas import ToolCall, ToolContext, ToolPayload, ToolResult

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[ToolPayload]]


class ToolError(Exception):
    """Expected tool failure; the message is reported back to the model."""


class ToolDispatcher:
    """Registers tool handlers and executes tool calls from the API."""

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._schemas: dict[str, dict[str, Any]] = {}

    def register(self, name: str, handler: ToolHandler, schema: dict[str, Any]) -> None:
        """Register a tool handler with its JSON schema."""
        self._handlers[name] = handler
        self._schemas[name] = schema

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        """Execute a single tool call, never raising."""
        start_time = time.monotonic()
        logger.info("Executing tool %s (id=%s, session=%s)", call.name, call.id, context.session_id)

        handler = self._handlers.get(call.name)
        data: ToolPayload | None = None
        error: str | None = None
        if handler is None:
            error = f"Unknown tool: {call.name}"
        else:
            try:
                data = await handler(context, **call.input)
            except ToolError as e:
                error = str(e)
            except Exception as e:
                logger.exception("Tool execution error for %s", call.name)
                error = f"Tool execution failed: {e}"

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "Tool %s complete: success=%s in %dms%s",
            call.name,
            error is None,
            duration_ms,
            f" ({error})" if error else "",
        )
        return ToolResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=error is None,
            data=data,
            error=error,
            execution_time_ms=duration_ms,
        )

    async def execute_all(self, calls: list[ToolCall], context: ToolContext) -> list[ToolResult]:
        """Execute calls in order, one result per call."""
        results: list[ToolResult] = []
        for call in calls:
            results.append(await self.execute(call, context))
        return results

    @staticmethod
    def format_results_for_model(results: list[ToolResult]) -> list[dict[str, Any]]:
        """Build tool_result content blocks keyed by the original tool_use id."""
        blocks: list[dict[str, Any]] = []
        for result in results:
            body: dict[str, Any] = {"success": result.success}
            if result.data is not None:
                body["data"] = result.data.model_dump(mode="json")
            if result.error is not None:
                body["error"] = result.error
            blocks.append({
                "type": "tool_result",
                "tool_use_id": result.tool_call_id,
                "content": json.dumps(body),
                "is_error": not result.success,
            })
        return blocks

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in Anthropic API format."""
        return [
            {
                "name": name,
                "description": schema.get("description", ""),
                "input_schema": {k: v for k, v in schema.items() if k != "description"},
            }
            for name, schema in self._schemas.items()
        ]
