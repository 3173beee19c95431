"""Speaker attribution across tool rounds.

Folds switch_speaker outcomes from a round's results into the speaker
that owns the next segment of assistant text.
"""

from __future__ import annotations

import logging

from boardroom.api.schemas import SwitchSpeakerOutcome, ToolResult
from boardroom.board.schemas import Handoff, SpeakerId

logger = logging.getLogger(__name__)

SWITCH_SPEAKER_TOOL = "switch_speaker"


def apply_results(results: list[ToolResult], current_speaker: SpeakerId) -> Handoff:
    """Return the speaker after this round and the handoff reason, if any.

    The last successful switch in call order wins. Failed switches are
    ignored, leaving the current speaker in place.
    """
    handoff = Handoff(speaker=current_speaker)
    for result in results:
        if result.tool_name != SWITCH_SPEAKER_TOOL or not result.success:
            continue
        if not isinstance(result.data, SwitchSpeakerOutcome):
            logger.warning("switch_speaker result %s carried no outcome", result.tool_call_id)
            continue
        handoff = Handoff(speaker=result.data.new_speaker, reason=result.data.handoff_reason)

    if handoff.reason is not None:
        logger.info("Speaker handoff %s -> %s: %s", current_speaker.value, handoff.speaker.value, handoff.reason)
    return handoff
