"""Consumer for the chat stream endpoint.

Posts a chat request, decodes frames as bytes arrive, and retries the
connection with exponential backoff. Authorization failures and caller
cancellation are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from boardroom.api.streaming import StreamChunk, StreamDecoder

logger = logging.getLogger(__name__)


class StreamRequestError(RuntimeError):
    """The stream endpoint answered with a non-200 status."""

    def __init__(self, status_code: int, body: dict[str, Any] | str) -> None:
        super().__init__(f"Stream request failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after a failed 1-based attempt."""
        return min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, StreamRequestError):
        if error.is_auth_error:
            return False
        # Quota and validation answers will not change on retry
        return error.status_code >= 500
    message = str(error).lower()
    return "unauthorized" not in message and "forbidden" not in message


class ChatStreamClient:
    """Reads a chat stream as StreamChunks."""

    def __init__(
        self,
        base_url: str,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._retry = retry or RetryConfig()
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ChatStreamClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def stream_chat(
        self,
        payload: dict[str, Any],
        on_retry: Callable[[int, Exception], Awaitable[None] | None] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield chunks from one chat request, ending after the done frame.

        Retries only happen before the first chunk is delivered; once
        frames have been yielded a failure propagates to the caller.
        """
        attempts = max(1, self._retry.max_retries)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            delivered = False
            try:
                async for chunk in self._stream_once(payload):
                    delivered = True
                    yield chunk
                return
            except (httpx.HTTPError, StreamRequestError) as e:
                last_error = e
                if delivered or not _is_retryable(e):
                    raise
                if attempt < attempts:
                    delay = self._retry.delay_for(attempt)
                    logger.warning("Chat stream attempt %d failed, retrying in %.1fs: %s", attempt, delay, e)
                    if on_retry is not None:
                        maybe = on_retry(attempt, e)
                        if maybe is not None:
                            await maybe
                    await asyncio.sleep(delay)

        if last_error is None:
            raise RuntimeError("chat stream made no attempts")
        raise last_error

    async def _stream_once(self, payload: dict[str, Any]) -> AsyncIterator[StreamChunk]:
        decoder = StreamDecoder()
        async with self._http.stream("POST", "/chat/stream", json=payload) as response:
            if response.status_code != 200:
                raw = await response.aread()
                try:
                    body: dict[str, Any] | str = response.json()
                except ValueError:
                    body = raw.decode(errors="replace")[:500]
                raise StreamRequestError(response.status_code, body)

            async for data in response.aiter_bytes():
                for chunk in decoder.decode(data):
                    yield chunk
                    if chunk.type == "done":
                        return
