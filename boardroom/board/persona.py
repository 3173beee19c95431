"""Coaching-mode dynamics for the facilitator.

Each user message updates the sub-persona state: the exchange counter
moves, the user's state is read off their recent messages, and the
coaching mode may shift. Defensive users get encouragement, overconfident
ones get a devil's advocate, spinning ones get grounded. Engaged or
neutral users get a mode drawn from the pathway weights.
"""

from __future__ import annotations

import random
import re
from datetime import datetime
from typing import Any, Literal

UserState = Literal["neutral", "defensive", "overconfident", "spinning", "engaged", "uncertain"]

USER_CONTROL_EXCHANGES = 10
# Signals needed before a state other than neutral is reported
MIN_SIGNALS = 2

PATHWAY_WEIGHTS: dict[str, dict[str, int]] = {
    "new-idea": {"inquisitive": 40, "devil_advocate": 20, "encouraging": 25, "realistic": 15},
    "business-model": {"inquisitive": 20, "devil_advocate": 35, "encouraging": 15, "realistic": 30},
    "business-model-problem": {"inquisitive": 20, "devil_advocate": 35, "encouraging": 15, "realistic": 30},
    "feature-refinement": {"inquisitive": 25, "devil_advocate": 30, "encouraging": 15, "realistic": 30},
    "strategic-optimization": {"inquisitive": 20, "devil_advocate": 30, "encouraging": 20, "realistic": 30},
}


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# Checked in this order; ties go to the earlier state.
_STATE_PATTERNS: tuple[tuple[UserState, tuple[re.Pattern[str], ...]], ...] = (
    ("defensive", _compile(
        r"but you don't understand",
        r"that's not how it works",
        r"i've already thought about that",
        r"you're wrong",
        r"that won't work because",
        r"i disagree",
        r"no,?\s+(that|i|we)",
        r"i know better",
        r"trust me",
        r"i've done this before",
    )),
    ("overconfident", _compile(
        r"this will definitely",
        r"everyone wants this",
        r"can't fail",
        r"no competition",
        r"we'll be huge",
        r"easy to",
        r"obviously",
        r"guaranteed",
        r"no risk",
        r"million dollar",
        r"billion dollar",
    )),
    ("spinning", _compile(
        r"what should i do",
        r"i'm not sure",
        r"maybe we could",
        r"or maybe",
        r"on the other hand",
        r"i keep coming back to",
        r"but then again",
        r"i can't decide",
        r"too many options",
    )),
    ("uncertain", _compile(
        r"i don't know",
        r"what do you think",
        r"help me understand",
        r"i'm confused",
        r"not sure if",
        r"should i",
    )),
    ("engaged", _compile(
        r"that's a great point",
        r"i hadn't thought of",
        r"tell me more",
        r"interesting",
        r"good question",
        r"let me think",
        r"you're right",
    )),
)

STATE_GUIDANCE: dict[str, str] = {
    "defensive": (
        "- Lead with validation before introducing new perspectives\n"
        "- Use softer language when challenging assumptions\n"
        "- Build rapport before pushing back"
    ),
    "overconfident": (
        "- Ask probing questions that surface unconsidered risks\n"
        "- Request evidence for strong claims\n"
        "- Introduce competitive or market realities"
    ),
    "spinning": (
        "- Help focus on one decision at a time\n"
        "- Summarize what's been discussed\n"
        "- Provide clear frameworks for decision-making"
    ),
    "uncertain": (
        "- Provide more structure and guidance\n"
        "- Break down complex decisions into smaller steps\n"
        "- Offer concrete examples and frameworks"
    ),
    "engaged": (
        "- Maintain the productive momentum\n"
        "- Challenge at a higher level\n"
        "- Push for deeper insights"
    ),
}


def detect_user_state(user_messages: list[str]) -> UserState:
    """Classify the user from their last five messages.

    Each pattern that matches anywhere in the combined text counts one
    signal. Heavily repeated openings count two more towards spinning.
    """
    recent = [m.lower() for m in user_messages if m][-5:]
    if not recent:
        return "neutral"

    text = " ".join(recent)
    scores: dict[UserState, int] = {
        state: sum(1 for p in patterns if p.search(text)) for state, patterns in _STATE_PATTERNS
    }

    if len(recent) >= 3:
        openings = {m[:50] for m in recent}
        if len(openings) < len(recent) * 0.6:
            scores["spinning"] += 2

    best = max(scores.values())
    if best < MIN_SIGNALS:
        return "neutral"
    for state, _ in _STATE_PATTERNS:
        if scores[state] == best:
            return state
    return "neutral"


def select_mode_by_weight(weights: dict[str, int], rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    total = sum(weights.values())
    pick = rng.random() * total
    cumulative = 0
    for mode in ("inquisitive", "devil_advocate", "encouraging"):
        cumulative += weights.get(mode, 0)
        if pick < cumulative:
            return mode
    return "realistic"


def next_mode(
    current_mode: str,
    user_state: UserState,
    weights: dict[str, int],
    rng: random.Random | None = None,
) -> tuple[str, str]:
    """Pick the next coaching mode and the trigger that explains it."""
    if user_state == "defensive":
        if current_mode == "devil_advocate":
            return "encouraging", "user_defensive_shift"
        if current_mode == "encouraging":
            return "encouraging", "maintaining_support"
        return "encouraging", "user_defensive"
    if user_state == "overconfident":
        return "devil_advocate", "user_overconfident"
    if user_state == "spinning":
        return "realistic", "user_spinning"
    if user_state == "uncertain":
        if current_mode != "encouraging":
            return "encouraging", "user_uncertain"
        return "inquisitive", "explore_uncertainty"
    return select_mode_by_weight(weights, rng), "pathway_weight"


def advance_sub_persona(
    state: dict[str, Any],
    user_messages: list[str],
    pathway: str,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Return the state after one more user exchange; the input is not modified."""
    updated = dict(state)
    updated["exchange_count"] = int(state.get("exchange_count", 0)) + 1
    if updated["exchange_count"] >= USER_CONTROL_EXCHANGES:
        updated["user_control_enabled"] = True

    user_state = detect_user_state(user_messages)
    updated["detected_user_state"] = user_state

    weights = {**PATHWAY_WEIGHTS.get(pathway, PATHWAY_WEIGHTS["new-idea"]), **state.get("mode_weight_overrides", {})}
    current = state.get("current_mode", "inquisitive")
    mode, trigger = next_mode(current, user_state, weights, rng)
    if mode != current:
        updated["current_mode"] = mode
        updated["mode_history"] = [
            *state.get("mode_history", []),
            {"mode": mode, "trigger": trigger, "timestamp": datetime.now().isoformat()},
        ]
    return updated


def user_state_guidance(user_state: str | None) -> str:
    """Prompt section telling the facilitator how to adapt; empty for neutral."""
    guidance = STATE_GUIDANCE.get(user_state or "")
    if not guidance:
        return ""
    return (
        "USER STATE AWARENESS:\n"
        f"The user appears to be in a {user_state} state. Adapt your approach accordingly:\n"
        f"{guidance}"
    )
