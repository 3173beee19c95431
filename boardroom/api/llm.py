"""Anthropic Messages API client over httpx.

Three calls cover a board turn:
- send_message_with_tools: first call of a turn, tools attached
- continue_with_tool_results: follow-up after a tool round
- stream_message: tool-less path, yields text deltas from SSE

No retries here. A failed call raises ModelCallError and the caller
decides what the user sees.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from boardroom.api.models import ApiResponse, Message, StreamEvent, trim_history
from boardroom.config import Settings

logger = logging.getLogger(__name__)

_API_VERSION = "2023-06-01"


class ModelCallError(RuntimeError):
    """The LLM service call failed; status_code is set for HTTP errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


def _parse_sse_event(data: dict[str, Any]) -> StreamEvent | None:
    """Parse an Anthropic SSE event dict into a StreamEvent.

    Only text deltas, token usage, the stop reason and errors are kept.
    Input usage arrives in message_start, output usage and stop_reason
    in message_delta. An error event can appear mid-stream on an HTTP
    200 response.
    """
    event_type = data.get("type")

    if event_type == "error":
        error = data.get("error", {})
        return StreamEvent(
            type="error",
            text=f"{error.get('type', 'unknown')}: {error.get('message', '')}",
        )

    if event_type == "message_start":
        usage = data.get("message", {}).get("usage")
        return StreamEvent(type="usage", usage=usage) if usage else None

    if event_type == "content_block_delta":
        delta = data.get("delta", {})
        if delta.get("type") == "text_delta":
            return StreamEvent(type="text_delta", text=delta.get("text", ""))
        return None

    if event_type == "message_delta":
        return StreamEvent(
            type="done",
            stop_reason=data.get("delta", {}).get("stop_reason", ""),
            usage=data.get("usage"),
        )

    return None


def add_usage(total: dict[str, int], usage: dict[str, int] | None) -> None:
    """Accumulate integer token counters from one API response into total."""
    if not usage:
        return
    for key, value in usage.items():
        if isinstance(value, int):
            total[key] = total.get(key, 0) + value


class AnthropicClient:
    """Thin async client for the Messages API."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings

        headers: dict[str, str] = {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }

        # Bearer auth_token takes precedence over x-api-key
        api_key = settings.anthropic_api_key or ""
        auth_token = settings.anthropic_auth_token or ""
        if auth_token:
            headers["authorization"] = f"Bearer {auth_token}"
        elif api_key:
            headers["x-api-key"] = api_key
        else:
            logger.warning("Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set -- API calls will fail")

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)

        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=limits,
            transport=self._transport,
        )
        logger.info("httpx client initialized (auth: %s)", "Bearer token" if auth_token else "API key")

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # Public calls
    # ------------------------------------------------------------------

    async def send_message_with_tools(
        self,
        message: str,
        history: list[Message],
        system_prompt: str,
        tools: list[dict[str, Any]] | None = None,
    ) -> ApiResponse:
        """First model call of a turn: history plus the new user message."""
        messages = self._history_to_api(history)
        messages.append({"role": "user", "content": message})
        return await self._call_api(system_prompt, messages, tools)

    async def continue_with_tool_results(
        self,
        conversation: list[dict[str, Any]],
        tool_results: list[dict[str, Any]],
        system_prompt: str,
        tools: list[dict[str, Any]] | None = None,
    ) -> ApiResponse:
        """Follow-up call after a tool round.

        conversation must already end with the assistant turn holding the
        tool_use blocks; the results go out as the next user turn. The
        caller's list is left untouched.
        """
        messages = [*conversation, {"role": "user", "content": tool_results}]
        return await self._call_api(system_prompt, messages, tools)

    async def stream_message(
        self,
        message: str,
        history: list[Message],
        system_prompt: str,
        usage: dict[str, int] | None = None,
    ) -> AsyncIterator[str]:
        """Yield text deltas for a tool-less reply.

        Token counts are accumulated into usage when a dict is passed.
        """
        messages = self._history_to_api(history)
        messages.append({"role": "user", "content": message})
        async for event in self._call_api_stream(system_prompt, messages):
            if event.type == "error":
                raise ModelCallError(f"Anthropic stream error: {event.text}")
            if event.usage is not None and usage is not None:
                add_usage(usage, event.usage)
            if event.type == "text_delta" and event.text:
                yield event.text

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _history_to_api(self, history: list[Message]) -> list[dict[str, Any]]:
        return [m.to_api() for m in trim_history(history, self._settings.max_history_messages)]

    def _build_api_payload(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Shared by _call_api and _call_api_stream."""
        payload: dict[str, Any] = {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "system": [
                {
                    "type": "text",
                    "text": system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ],
            "messages": messages,
        }
        if tools:
            payload["tools"] = tools
        if stream:
            payload["stream"] = True
        return payload

    async def _call_api(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ApiResponse:
        if not self._http:
            raise ModelCallError("httpx client not initialized -- call start() first")

        payload = self._build_api_payload(system_prompt, messages, tools)
        try:
            response = await self._http.post("/v1/messages", json=payload)
        except httpx.TimeoutException as e:
            raise ModelCallError(f"API request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ModelCallError(f"HTTP error: {e}") from e

        if response.status_code != 200:
            raise self._error_from_response(response.status_code, response.text)

        data = response.json()
        return ApiResponse(
            content=data.get("content", []),
            stop_reason=data.get("stop_reason", ""),
            usage=data.get("usage"),
        )

    async def _call_api_stream(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
    ) -> AsyncIterator[StreamEvent]:
        """Yield parsed SSE events; only data: lines are read."""
        if not self._http:
            raise ModelCallError("httpx client not initialized -- call start() first")

        payload = self._build_api_payload(system_prompt, messages, stream=True)
        try:
            async with self._http.stream("POST", "/v1/messages", json=payload) as response:
                if response.status_code != 200:
                    error_body = await response.aread()
                    raise self._error_from_response(
                        response.status_code, error_body.decode(errors="replace")
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        data = json.loads(line[6:])
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed SSE line: %s", line[:200])
                        continue
                    event = _parse_sse_event(data)
                    if event is None:
                        continue
                    yield event
                    if event.type == "error":
                        return
        except httpx.TimeoutException as e:
            raise ModelCallError(f"API request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ModelCallError(f"HTTP error: {e}") from e

    @staticmethod
    def _error_from_response(status_code: int, body: str) -> ModelCallError:
        try:
            error = json.loads(body).get("error", {})
            error_type = error.get("type", "unknown")
            error_msg = error.get("message", "unknown error")
        except (ValueError, AttributeError):
            error_type = "http_error"
            error_msg = body[:500]
        logger.error("Anthropic API error %d (%s): %s", status_code, error_type, error_msg)
        return ModelCallError(
            f"Anthropic API error ({status_code}): {error_type} - {error_msg}",
            status_code=status_code,
        )
