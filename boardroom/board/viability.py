"""Viability scoring behind the recommend_action tool.

Base score of 5, each strength adds 1.2, each concern subtracts 1.5,
clamped to [1, 10]. No verdict is given before five exchanges.
"""

from __future__ import annotations

from boardroom.board.schemas import ViabilityAssessment

MIN_EXCHANGES = 5


def assess_viability(
    exchange_count: int,
    concerns: list[str],
    strengths: list[str],
    exploration_complete: bool = False,
) -> ViabilityAssessment:
    if exchange_count < MIN_EXCHANGES:
        return ViabilityAssessment(
            score=5,
            level="none",
            recommendation="validate_further",
            reasoning="More exploration is needed before a viability assessment can be made.",
            concerns=concerns,
            strengths=strengths,
        )

    score = 5 + (len(strengths) * 1.2 - len(concerns) * 1.5)
    score = max(1.0, min(10.0, score))

    if score >= 7:
        recommendation, level = "proceed", "none"
        reasoning = (
            f"The idea shows strong fundamentals with {len(strengths)} notable strengths. "
            f"While there are {len(concerns)} areas of concern, they appear manageable."
        )
    elif score >= 5:
        recommendation, level = "validate_further", "diplomatic"
        reasoning = (
            f"The idea has potential but needs more validation. The {len(concerns)} "
            "concerns identified require addressing before moving forward."
        )
    elif score >= 3:
        recommendation, level = "pivot", "probe"
        reasoning = (
            "The core concept has issues that may require a significant pivot. "
            f"Consider addressing: {', '.join(concerns[:3])}."
        )
    else:
        recommendation = "kill"
        level = "explicit" if exploration_complete else "probe"
        reasoning = (
            "Based on our exploration, the idea faces fundamental challenges: "
            f"{', '.join(concerns[:3])}. The path to viability is unclear."
        )

    return ViabilityAssessment(
        score=round(score, 1),
        level=level,
        recommendation=recommendation,
        reasoning=reasoning,
        concerns=concerns,
        strengths=strengths,
    )
