"""Wire format for the chat stream.

Each frame is one line `data: <json>` followed by a blank line; the
stream ends with `data: [DONE]`. Speaker and handoff reason travel inside
`metadata`; top-level keys are camelCase where the browser client
expects them (limitStatus, errorDetails, additionalData).
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from collections.abc import AsyncIterator, Iterator
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_DATA_PREFIX = "data: "

ERROR_SUGGESTION = "Please try again. If the issue persists, refresh the page."

ChunkType = Literal["metadata", "content", "speaker_change", "typing", "complete", "error", "done"]


class ErrorDetails(BaseModel):
    retryable: bool = True
    suggestion: str | None = None


class StreamChunk(BaseModel):
    """One decoded or to-be-encoded frame."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: ChunkType
    content: str | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None
    error_details: ErrorDetails | None = Field(default=None, alias="errorDetails")
    usage: dict[str, Any] | None = None
    limit_status: dict[str, Any] | None = Field(default=None, alias="limitStatus")
    additional_data: dict[str, Any] | None = Field(default=None, alias="additionalData")

    @property
    def speaker(self) -> str | None:
        return (self.metadata or {}).get("speaker")

    @property
    def handoff_reason(self) -> str | None:
        return (self.metadata or {}).get("handoffReason")


class StreamEncoder:
    """Serializes chunks into UTF-8 `data:` frames."""

    def encode_chunk(self, chunk: StreamChunk) -> bytes:
        body = chunk.model_dump(mode="json", by_alias=True, exclude_none=True)
        return f"{_DATA_PREFIX}{json.dumps(body, ensure_ascii=False)}\n\n".encode()

    def encode_metadata(self, metadata: dict[str, Any]) -> bytes:
        return self.encode_chunk(StreamChunk(type="metadata", metadata=metadata))

    def encode_content(self, content: str, speaker: str | None = None) -> bytes:
        metadata = {"speaker": str(speaker)} if speaker else None
        return self.encode_chunk(StreamChunk(type="content", content=content, metadata=metadata))

    def encode_speaker_change(self, speaker: str, handoff_reason: str) -> bytes:
        return self.encode_chunk(
            StreamChunk(type="speaker_change", metadata={"speaker": str(speaker), "handoffReason": handoff_reason})
        )

    def encode_complete(
        self,
        usage: dict[str, Any] | None = None,
        limit_status: dict[str, Any] | None = None,
        additional_data: dict[str, Any] | None = None,
    ) -> bytes:
        return self.encode_chunk(
            StreamChunk(type="complete", usage=usage, limit_status=limit_status, additional_data=additional_data)
        )

    def encode_error(self, error: str, details: ErrorDetails | None = None) -> bytes:
        return self.encode_chunk(StreamChunk(type="error", error=error, error_details=details))

    def encode_done(self) -> bytes:
        return f"{_DATA_PREFIX}{DONE_SENTINEL}\n\n".encode()


class StreamDecoder:
    """Incremental frame decoder.

    Input may be split anywhere, including inside a multi-byte UTF-8
    sequence; incomplete lines are held until the rest arrives.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def decode(self, data: bytes | str) -> list[StreamChunk]:
        if isinstance(data, bytes):
            self._buffer += self._utf8.decode(data)
        else:
            self._buffer += data

        *lines, self._buffer = self._buffer.split("\n")

        chunks: list[StreamChunk] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(_DATA_PREFIX):
                continue
            payload = line[len(_DATA_PREFIX):]
            if payload == DONE_SENTINEL:
                chunks.append(StreamChunk(type="done"))
                continue
            try:
                chunks.append(StreamChunk.model_validate(json.loads(payload)))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Skipping malformed stream frame: %s (%s)", payload[:200], e)
        return chunks

    def reset(self) -> None:
        self._utf8.reset()
        self._buffer = ""


def create_stream_headers() -> dict[str, str]:
    return {
        "Content-Type": "text/event-stream",
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


def word_delay(word: str) -> float:
    """Seconds to pause after a word: 5ms per char, clamped to 10-50ms."""
    return max(10, min(50, len(word) * 5)) / 1000


def split_words(text: str) -> Iterator[str]:
    """Split on single spaces, keeping the separator on every word but the last."""
    if not text:
        return
    words = text.split(" ")
    for i, word in enumerate(words):
        yield word + (" " if i < len(words) - 1 else "")


async def iter_paced_words(text: str, pacing: bool = True) -> AsyncIterator[str]:
    """Yield text word by word, sleeping between words when pacing is on."""
    for word in split_words(text):
        yield word
        if pacing:
            await asyncio.sleep(word_delay(word.rstrip(" ")))


def error_details(message: str, status_code: int | None = None) -> ErrorDetails:
    """Retry guidance for an error frame; auth failures are not retryable."""
    lowered = message.lower()
    auth_failure = status_code in (401, 403) or "auth" in lowered or "forbidden" in lowered
    return ErrorDetails(retryable=not auth_failure, suggestion=ERROR_SUGGESTION)
