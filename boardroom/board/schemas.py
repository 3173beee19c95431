"""Pydantic DTOs for the board of directors.

Speaker identities, board state and the speaker-tagged segments the
agentic loop produces.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class SpeakerId(StrEnum):
    MARY = "mary"
    VICTORIA = "victoria"
    CASEY = "casey"
    ELAINE = "elaine"
    OMAR = "omar"
    TAYLOR = "taylor"


DEFAULT_SPEAKER = SpeakerId.MARY

PersonaMode = Literal["inquisitive", "devil_advocate", "encouraging", "realistic"]
Recommendation = Literal["proceed", "pivot", "validate_further", "kill"]


class BoardMember(BaseModel):
    """A single advisor persona the model can speak as."""

    id: SpeakerId
    name: str
    role: str
    worldview: str
    bias: str
    voice_description: str
    color: str
    is_opt_in: bool = False


class BoardState(BaseModel):
    """Persisted per-session board state."""

    active_speaker: SpeakerId = DEFAULT_SPEAKER
    taylor_opted_in: bool = False


class SpeakerSegment(BaseModel):
    """Assistant text attributed to the speaker active when it was produced."""

    speaker: SpeakerId
    content: str
    handoff_reason: str | None = None


class Handoff(BaseModel):
    """Speaker in effect after a tool round, plus the reason if it changed."""

    speaker: SpeakerId
    reason: str | None = None


class ViabilityAssessment(BaseModel):
    """Outcome of weighing concerns against strengths."""

    score: float = Field(ge=1.0, le=10.0)
    level: Literal["none", "diplomatic", "probe", "explicit"]
    recommendation: Recommendation
    reasoning: str
    concerns: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
