"""Pydantic DTOs for tool calls, their results and per-tool payloads.

Each tool returns one statically-known payload type; the union below is
the full set the engine can carry back to the model.
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, Field

from boardroom.board.schemas import PersonaMode, Recommendation, SpeakerId


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolContext(BaseModel):
    """Per-request identity handed to every tool handler."""

    session_id: str
    user_id: str


# --- Tool payloads ---


class SwitchSpeakerOutcome(BaseModel):
    previous_speaker: SpeakerId
    new_speaker: SpeakerId
    handoff_reason: str


class SwitchModeOutcome(BaseModel):
    previous_mode: str
    new_mode: PersonaMode
    reason: str


class RecommendationOutcome(BaseModel):
    recommendation: Recommendation
    viability_score: float
    concerns: list[str]
    strengths: list[str]
    reasoning: str


class SessionStateSnapshot(BaseModel):
    session_id: str
    pathway: str
    current_phase: str
    progress: float
    current_mode: str
    exchange_count: int
    insights: list[str] = Field(default_factory=list)


class PhaseCompletion(BaseModel):
    previous_phase: str
    next_phase: str | None
    completion_reason: str
    session_progress: float


class InsightRecorded(BaseModel):
    insight_added: str
    total_insights: int


ToolPayload = Union[
    SwitchSpeakerOutcome,
    SwitchModeOutcome,
    RecommendationOutcome,
    SessionStateSnapshot,
    PhaseCompletion,
    InsightRecorded,
]


class ToolResult(BaseModel):
    """Outcome of one tool call; exactly one per ToolCall."""

    tool_call_id: str
    tool_name: str
    success: bool
    data: ToolPayload | None = None
    error: str | None = None
    execution_time_ms: int = 0


class ToolSummary(BaseModel):
    """What the loop reports per executed tool: no payloads."""

    name: str
    success: bool
