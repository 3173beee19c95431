"""Board module: the advisor personas and speaker attribution.

Public API: member registry, prompt builders, coaching-mode dynamics,
viability scoring and the schema types from schemas.py.
"""

from boardroom.board.schemas import (
    DEFAULT_SPEAKER,
    BoardMember,
    BoardState,
    Handoff,
    PersonaMode,
    Recommendation,
    SpeakerId,
    SpeakerSegment,
    ViabilityAssessment,
)
from boardroom.board.members import (
    BOARD_MEMBERS,
    build_system_prompt,
    get_active_board_members,
    get_board_member,
    resolve_speaker_key,
)
from boardroom.board.persona import detect_user_state, next_mode
from boardroom.board.viability import assess_viability

__all__ = [
    "BOARD_MEMBERS",
    "DEFAULT_SPEAKER",
    "BoardMember",
    "BoardState",
    "Handoff",
    "PersonaMode",
    "Recommendation",
    "SpeakerId",
    "SpeakerSegment",
    "ViabilityAssessment",
    "assess_viability",
    "detect_user_state",
    "build_system_prompt",
    "get_active_board_members",
    "get_board_member",
    "next_mode",
    "resolve_speaker_key",
]
