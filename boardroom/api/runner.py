"""Agentic loop and chat stream producer.

AgenticLoop drives one board turn through explicit phases:

    CALLING_MODEL -> EXECUTING_TOOLS* -> DONE

Each tool round executes the model's calls, folds switch_speaker
outcomes into the active speaker, and continues the conversation with
the results. Text from each model response becomes a speaker-tagged
segment. The loop stops after max_tool_rounds tool rounds with a fixed
notice appended.

ChatStreamer turns a loop run (or a plain streamed reply) into wire
frames. A producer task writes into a bounded queue; the response body
reads from it. Closing the body cancels the producer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from boardroom.api.llm import AnthropicClient, add_usage
from boardroom.api.models import ApiResponse, Message, trim_history
from boardroom.api.schemas import ToolContext, ToolSummary
from boardroom.api.streaming import StreamEncoder, error_details, iter_paced_words
from boardroom.api.tools import ToolDispatcher
from boardroom.board.attribution import apply_results
from boardroom.board.members import build_system_prompt
from boardroom.board.schemas import DEFAULT_SPEAKER, BoardState, SpeakerId, SpeakerSegment
from boardroom.config import Settings

logger = logging.getLogger(__name__)

MAX_ROUNDS_SUFFIX = (
    "\n\n(I reached my processing limit for this turn. Let me know if you need me to continue.)"
)

SegmentCallback = Callable[[SpeakerSegment], Awaitable[None]]


class LoopPhase(StrEnum):
    CALLING_MODEL = "calling_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class LoopCancelled(Exception):
    """The caller went away; no further model or tool calls are made."""


@dataclass
class LoopState:
    """Mutable per-run state, owned by the loop's step functions."""

    message: str
    history: list[Message]
    context: ToolContext
    system_prompt: str
    phase: LoopPhase = LoopPhase.CALLING_MODEL
    round: int = 0
    current_speaker: SpeakerId = DEFAULT_SPEAKER
    accumulated_text: str = ""
    tools_executed: list[ToolSummary] = field(default_factory=list)
    segments: list[SpeakerSegment] = field(default_factory=list)
    stop_reason: str = ""
    conversation: list[dict[str, Any]] = field(default_factory=list)
    response: ApiResponse | None = None
    usage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class LoopResult:
    """Snapshot handed back to callers once the loop is DONE."""

    final_text: str
    tools_executed: tuple[ToolSummary, ...]
    rounds: int
    segments: tuple[SpeakerSegment, ...]
    current_speaker: SpeakerId
    stop_reason: str
    usage: dict[str, int]

    @classmethod
    def from_state(cls, state: LoopState) -> LoopResult:
        return cls(
            final_text=state.accumulated_text,
            tools_executed=tuple(state.tools_executed),
            rounds=state.round,
            segments=tuple(state.segments),
            current_speaker=state.current_speaker,
            stop_reason=state.stop_reason,
            usage=dict(state.usage),
        )


class AgenticLoop:
    """Bounded tool-calling loop over the LLM client."""

    def __init__(self, llm: AnthropicClient, dispatcher: ToolDispatcher, settings: Settings) -> None:
        self._llm = llm
        self._dispatcher = dispatcher
        self._max_rounds = settings.max_tool_rounds
        self._max_history = settings.max_history_messages

    async def run(
        self,
        message: str,
        history: list[Message],
        context: ToolContext,
        emit: SegmentCallback | None = None,
        cancel: asyncio.Event | None = None,
        system_prompt: str | None = None,
    ) -> LoopResult:
        """Run one turn to completion.

        Model call failures propagate. Tool failures are reported to the
        model and never stop the loop. Raises LoopCancelled when cancel is
        set at a round boundary.
        """
        state = LoopState(
            message=message,
            history=trim_history(history, self._max_history),
            context=context,
            system_prompt=system_prompt or build_system_prompt(BoardState()),
        )

        while state.phase != LoopPhase.DONE:
            if cancel is not None and cancel.is_set():
                logger.info("Agentic loop cancelled at round %d (session=%s)", state.round, context.session_id)
                raise LoopCancelled(f"cancelled at round {state.round}")
            if state.phase == LoopPhase.CALLING_MODEL:
                await self._call_model(state, emit)
            else:
                await self._execute_tools(state, emit)

        logger.info(
            "Agentic loop done: rounds=%d tools=%d segments=%d speaker=%s stop=%s",
            state.round,
            len(state.tools_executed),
            len(state.segments),
            state.current_speaker.value,
            state.stop_reason,
        )
        return LoopResult.from_state(state)

    # ------------------------------------------------------------------
    # Step functions
    # ------------------------------------------------------------------

    async def _call_model(self, state: LoopState, emit: SegmentCallback | None) -> None:
        tools = self._dispatcher.tool_definitions()
        response = await self._llm.send_message_with_tools(
            state.message, state.history, state.system_prompt, tools or None
        )
        state.conversation = [m.to_api() for m in state.history]
        state.conversation.append({"role": "user", "content": state.message})

        text = response.text_content
        if text:
            await self._add_segment(state, SpeakerSegment(speaker=DEFAULT_SPEAKER, content=text), emit)
        self._accept_response(state, response, text)

    async def _execute_tools(self, state: LoopState, emit: SegmentCallback | None) -> None:
        if state.round >= self._max_rounds:
            logger.warning("Agentic loop hit max rounds (%d), stopping", self._max_rounds)
            await self._add_segment(
                state, SpeakerSegment(speaker=state.current_speaker, content=MAX_ROUNDS_SUFFIX), emit
            )
            state.accumulated_text += MAX_ROUNDS_SUFFIX
            state.stop_reason = "max_rounds"
            state.phase = LoopPhase.DONE
            return

        if state.response is None:
            raise RuntimeError("tool round started without a model response")
        state.round += 1
        calls = state.response.tool_uses
        logger.info("Agentic loop round %d: %d tool calls", state.round, len(calls))

        results = await self._dispatcher.execute_all(calls, state.context)
        state.tools_executed.extend(ToolSummary(name=r.tool_name, success=r.success) for r in results)

        handoff = apply_results(results, state.current_speaker)
        state.current_speaker = handoff.speaker

        state.conversation.append({"role": "assistant", "content": state.response.assistant_content()})
        result_blocks = self._dispatcher.format_results_for_model(results)
        response = await self._llm.continue_with_tool_results(
            state.conversation,
            result_blocks,
            state.system_prompt,
            self._dispatcher.tool_definitions() or None,
        )
        state.conversation.append({"role": "user", "content": result_blocks})

        text = response.text_content
        # An empty segment still marks the handoff so the last segment matches the speaker.
        if text or handoff.reason is not None:
            segment = SpeakerSegment(speaker=state.current_speaker, content=text, handoff_reason=handoff.reason)
            await self._add_segment(state, segment, emit)
        self._accept_response(state, response, text)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _accept_response(state: LoopState, response: ApiResponse, text: str) -> None:
        state.response = response
        state.accumulated_text += text
        state.stop_reason = response.stop_reason
        add_usage(state.usage, response.usage)
        if response.stop_reason == "tool_use" and response.tool_uses:
            state.phase = LoopPhase.EXECUTING_TOOLS
        else:
            state.phase = LoopPhase.DONE

    @staticmethod
    async def _add_segment(state: LoopState, segment: SpeakerSegment, emit: SegmentCallback | None) -> None:
        state.segments.append(segment)
        if emit is not None:
            await emit(segment)


# ---------------------------------------------------------------------------
# Stream production
# ---------------------------------------------------------------------------


@dataclass
class ChatTurn:
    """Everything the streamer needs for one request."""

    message: str
    history: list[Message]
    context: ToolContext
    use_tools: bool = True
    system_prompt: str | None = None
    limit_status: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _usage_summary(usage: dict[str, int]) -> dict[str, int] | None:
    if not usage:
        return None
    input_tokens = usage.get("input_tokens", 0)
    output_tokens = usage.get("output_tokens", 0)
    return {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
    }


class ChatStreamer:
    """Produces the frame sequence for a chat request.

    metadata, then content (with speaker_change before handed-off
    segments), then complete and done. A failure yields a single error
    frame instead of complete/done.
    """

    def __init__(self, loop: AgenticLoop, llm: AnthropicClient, settings: Settings) -> None:
        self._loop = loop
        self._llm = llm
        self._settings = settings

    async def stream(self, turn: ChatTurn) -> AsyncIterator[bytes]:
        queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=self._settings.stream_queue_size)
        cancel = asyncio.Event()
        producer = asyncio.create_task(self._produce(turn, queue, cancel))
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            cancel.set()
            if not producer.done():
                logger.info("Stream closed early, cancelling producer (session=%s)", turn.context.session_id)
                producer.cancel()

    async def _produce(self, turn: ChatTurn, queue: asyncio.Queue[bytes | None], cancel: asyncio.Event) -> None:
        encoder = StreamEncoder()
        pacing = self._settings.stream_pacing
        metadata = {
            "messageId": f"msg-{uuid4().hex[:12]}",
            "timestamp": datetime.now(UTC).isoformat(),
            **turn.metadata,
        }

        try:
            await queue.put(encoder.encode_metadata(metadata))

            usage: dict[str, int] = {}
            additional_data: dict[str, Any] | None = None
            if turn.use_tools:

                async def emit(segment: SpeakerSegment) -> None:
                    if segment.handoff_reason is not None:
                        await queue.put(encoder.encode_speaker_change(segment.speaker, segment.handoff_reason))
                    async for word in iter_paced_words(segment.content, pacing):
                        await queue.put(encoder.encode_content(word, segment.speaker))

                result = await self._loop.run(
                    turn.message,
                    turn.history,
                    turn.context,
                    emit=emit,
                    cancel=cancel,
                    system_prompt=turn.system_prompt,
                )
                usage = result.usage
                if result.tools_executed:
                    additional_data = {
                        "toolsExecuted": [t.model_dump() for t in result.tools_executed],
                        "agenticRounds": result.rounds,
                        "currentSpeaker": result.current_speaker.value,
                    }
            else:
                system_prompt = turn.system_prompt or build_system_prompt(BoardState())
                async for delta in self._llm.stream_message(turn.message, turn.history, system_prompt, usage=usage):
                    if cancel.is_set():
                        raise LoopCancelled("cancelled during text stream")
                    await queue.put(encoder.encode_content(delta))

            await queue.put(encoder.encode_complete(_usage_summary(usage), turn.limit_status, additional_data))
            await queue.put(encoder.encode_done())
        except LoopCancelled:
            logger.info("Chat stream cancelled (session=%s)", turn.context.session_id)
            return
        except Exception as e:
            logger.error("Chat stream failed (session=%s): %s", turn.context.session_id, e)
            message = str(e) or "Unknown error occurred"
            details = error_details(message, getattr(e, "status_code", None))
            await queue.put(encoder.encode_error(message, details))

        await queue.put(None)
