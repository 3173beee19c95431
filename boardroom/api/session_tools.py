"""Session tools the model can call during a board conversation.

Six tools, each a closure over the SessionStore:
- read_session_state: phase, progress, coaching mode, recent insights
- complete_phase: advance to the next phase
- switch_persona_mode: change the facilitator's coaching mode
- switch_speaker: hand the floor to another board member
- recommend_action: viability verdict from concerns vs strengths
- update_session_context: record an insight
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, get_args

from boardroom.api.schemas import (
    InsightRecorded,
    PhaseCompletion,
    RecommendationOutcome,
    SessionStateSnapshot,
    SwitchModeOutcome,
    SwitchSpeakerOutcome,
    ToolContext,
)
from boardroom.api.tools import ToolDispatcher, ToolError
from boardroom.board.attribution import SWITCH_SPEAKER_TOOL
from boardroom.board.members import resolve_speaker_key
from boardroom.board.schemas import PersonaMode, SpeakerId
from boardroom.board.viability import assess_viability
from boardroom.storage.sessions import SessionNotFoundError, SessionStore

logger = logging.getLogger(__name__)

RECENT_INSIGHTS = 5

_MODES: tuple[str, ...] = get_args(PersonaMode)
_INSIGHT_CATEGORIES = ("market", "product", "competition", "risk", "opportunity", "general")


def create_session_tools(store: SessionStore) -> dict[str, Any]:
    """Create session tool closures with the store captured in closure context.

    Returns a dict of async callables suitable for ToolDispatcher registration.
    """

    async def read_session_state(context: ToolContext) -> SessionStateSnapshot:
        record = await store.get(context.session_id)
        if record is None:
            raise ToolError("Session not found")
        insights = await store.list_insights(context.session_id, limit=RECENT_INSIGHTS)
        return SessionStateSnapshot(
            session_id=record.id,
            pathway=record.pathway,
            current_phase=record.current_phase,
            progress=record.progress,
            current_mode=record.persona_mode,
            exchange_count=record.exchange_count,
            insights=insights,
        )

    async def complete_phase(
        context: ToolContext,
        reason: str,
        key_outcomes: list[str] | None = None,
    ) -> PhaseCompletion:
        try:
            transition = await store.complete_phase(context.session_id, reason, key_outcomes)
        except (SessionNotFoundError, ValueError) as e:
            raise ToolError(f"Error completing phase: {e}") from e
        logger.info(
            "Session %s phase %s -> %s (%s)",
            context.session_id,
            transition.previous_phase,
            transition.next_phase,
            reason,
        )
        return PhaseCompletion(
            previous_phase=transition.previous_phase,
            next_phase=transition.next_phase,
            completion_reason=reason,
            session_progress=transition.progress,
        )

    async def switch_persona_mode(context: ToolContext, new_mode: str, reason: str) -> SwitchModeOutcome:
        if new_mode not in _MODES:
            raise ToolError(f"Unknown mode '{new_mode}'. Expected one of: {', '.join(_MODES)}")
        try:
            previous = await store.set_persona_mode(context.session_id, new_mode, f"tool_switch: {reason}")
        except SessionNotFoundError as e:
            raise ToolError(f"Failed to fetch session: {e}") from e
        return SwitchModeOutcome(previous_mode=previous, new_mode=new_mode, reason=reason)

    async def switch_speaker(context: ToolContext, speaker_key: str, handoff_reason: str) -> SwitchSpeakerOutcome:
        member = resolve_speaker_key(speaker_key)
        try:
            previous = await store.set_active_speaker(context.session_id, member.id)
        except SessionNotFoundError as e:
            raise ToolError(f"Failed to fetch session: {e}") from e
        return SwitchSpeakerOutcome(
            previous_speaker=previous,
            new_speaker=member.id,
            handoff_reason=handoff_reason,
        )

    async def recommend_action(
        context: ToolContext,
        concerns: list[str],
        strengths: list[str],
        additional_context: str | None = None,
    ) -> RecommendationOutcome:
        record = await store.get(context.session_id)
        if record is None:
            raise ToolError("Failed to fetch session: Session not found")

        assessment = assess_viability(
            exchange_count=record.exchange_count,
            concerns=concerns,
            strengths=strengths,
            exploration_complete=bool(record.sub_persona_state.get("exploration_complete")),
        )
        # A recommendation counts as a probe for later verdicts.
        await store.mark_exploration(context.session_id, concerns)
        await store.record_phase_output(
            context.session_id,
            phase_id="viability_assessment",
            output_name="Strategic Recommendation",
            output_type="analysis",
            output_data={
                "recommendation": assessment.recommendation,
                "viability_score": assessment.score,
                "concerns": concerns,
                "strengths": strengths,
                "reasoning": assessment.reasoning,
                "additional_context": additional_context,
                "assessed_at": datetime.now().isoformat(),
            },
        )
        return RecommendationOutcome(
            recommendation=assessment.recommendation,
            viability_score=assessment.score,
            concerns=concerns,
            strengths=strengths,
            reasoning=assessment.reasoning,
        )

    async def update_session_context(
        context: ToolContext,
        insight: str,
        category: str = "general",
    ) -> InsightRecorded:
        if category not in _INSIGHT_CATEGORIES:
            category = "general"
        try:
            total = await store.record_insight(context.session_id, insight, category)
        except SessionNotFoundError as e:
            raise ToolError(f"Error updating context: {e}") from e
        return InsightRecorded(insight_added=insight, total_insights=total)

    return {
        "read_session_state": read_session_state,
        "complete_phase": complete_phase,
        "switch_persona_mode": switch_persona_mode,
        SWITCH_SPEAKER_TOOL: switch_speaker,
        "recommend_action": recommend_action,
        "update_session_context": update_session_context,
    }


# ---------------------------------------------------------------------------
# Tool schemas (Anthropic API format)
# ---------------------------------------------------------------------------

_READ_SESSION_STATE_SCHEMA: dict[str, Any] = {
    "description": (
        "Read the current session state including phase, progress, mode, and recent insights. "
        "Use this to understand where the user is in their journey before making decisions."
    ),
    "type": "object",
    "properties": {},
    "required": [],
}

_COMPLETE_PHASE_SCHEMA: dict[str, Any] = {
    "description": (
        "Signal that the current phase is complete and the session should advance. Only call "
        "this when the user has adequately addressed the phase objectives. Provide a clear "
        "reason for completion."
    ),
    "type": "object",
    "properties": {
        "reason": {
            "type": "string",
            "description": "Why this phase is complete (what was accomplished)",
        },
        "key_outcomes": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Key outcomes or decisions from this phase",
        },
    },
    "required": ["reason"],
}

_SWITCH_PERSONA_MODE_SCHEMA: dict[str, Any] = {
    "description": (
        "Change your coaching mode to better serve the user. Use when you detect the user "
        "would benefit from a different approach (e.g., shift to encouraging if they seem "
        "defensive, or devil_advocate if overconfident)."
    ),
    "type": "object",
    "properties": {
        "new_mode": {
            "type": "string",
            "enum": list(_MODES),
            "description": "The coaching mode to switch to",
        },
        "reason": {
            "type": "string",
            "description": "Why this mode shift is appropriate",
        },
    },
    "required": ["new_mode", "reason"],
}

_SWITCH_SPEAKER_SCHEMA: dict[str, Any] = {
    "description": (
        "Switch the active speaker to a different board member. Use this when you want a "
        "board member to weigh in on the conversation. Provide a handoff reason explaining "
        "why this perspective is relevant. The speaker_key must be one of: "
        + ", ".join(s.value for s in SpeakerId)
        + "."
    ),
    "type": "object",
    "properties": {
        "speaker_key": {
            "type": "string",
            "enum": [s.value for s in SpeakerId],
            "description": "The board member to switch to",
        },
        "handoff_reason": {
            "type": "string",
            "description": "Why this board member should speak now (shown to the user as a handoff annotation)",
        },
    },
    "required": ["speaker_key", "handoff_reason"],
}

_RECOMMEND_ACTION_SCHEMA: dict[str, Any] = {
    "description": (
        "Provide a strategic recommendation about whether to proceed, pivot, validate further, "
        "or kill the idea. Only use after thorough exploration (at least 5 exchanges and "
        "genuine probing)."
    ),
    "type": "object",
    "properties": {
        "concerns": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Specific concerns identified during exploration",
        },
        "strengths": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Strengths and positive indicators identified",
        },
        "additional_context": {
            "type": "string",
            "description": "Any additional context for the recommendation",
        },
    },
    "required": ["concerns", "strengths"],
}

_UPDATE_SESSION_CONTEXT_SCHEMA: dict[str, Any] = {
    "description": (
        "Record an important insight or decision from the conversation. Use this to build up "
        "context that will inform future interactions."
    ),
    "type": "object",
    "properties": {
        "insight": {
            "type": "string",
            "description": "The insight or decision to record",
        },
        "category": {
            "type": "string",
            "enum": list(_INSIGHT_CATEGORIES),
            "description": "Category of the insight",
        },
    },
    "required": ["insight"],
}


def register_session_tools(dispatcher: ToolDispatcher, store: SessionStore) -> None:
    """Create the session tools and register them with the dispatcher."""
    closures = create_session_tools(store)

    dispatcher.register("read_session_state", closures["read_session_state"], _READ_SESSION_STATE_SCHEMA)
    dispatcher.register("complete_phase", closures["complete_phase"], _COMPLETE_PHASE_SCHEMA)
    dispatcher.register("switch_persona_mode", closures["switch_persona_mode"], _SWITCH_PERSONA_MODE_SCHEMA)
    dispatcher.register(SWITCH_SPEAKER_TOOL, closures[SWITCH_SPEAKER_TOOL], _SWITCH_SPEAKER_SCHEMA)
    dispatcher.register("recommend_action", closures["recommend_action"], _RECOMMEND_ACTION_SCHEMA)
    dispatcher.register(
        "update_session_context", closures["update_session_context"], _UPDATE_SESSION_CONTEXT_SCHEMA
    )
