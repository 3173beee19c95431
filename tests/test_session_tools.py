"""Integration tests for the session tools, dispatched through ToolDispatcher
against a real SessionStore on SQLite."""

import json

import pytest

from boardroom.api.schemas import (
    PhaseCompletion,
    RecommendationOutcome,
    SessionStateSnapshot,
    SwitchModeOutcome,
    SwitchSpeakerOutcome,
    ToolCall,
    ToolContext,
)
from boardroom.api.session_tools import create_session_tools, register_session_tools
from boardroom.api.tools import ToolDispatcher
from boardroom.board.schemas import SpeakerId


@pytest.fixture
def dispatcher(store) -> ToolDispatcher:
    d = ToolDispatcher()
    register_session_tools(d, store)
    return d


@pytest.fixture
def context(board_session) -> ToolContext:
    return ToolContext(session_id=board_session.id, user_id="user-1")


async def _call(dispatcher, context, name, **kwargs):
    return await dispatcher.execute(ToolCall(id=f"toolu_{name}", name=name, input=kwargs), context)


class TestRegistration:
    def test_six_tools(self, store):
        assert set(create_session_tools(store)) == {
            "read_session_state",
            "complete_phase",
            "switch_persona_mode",
            "switch_speaker",
            "recommend_action",
            "update_session_context",
        }

    def test_schemas_exposed(self, dispatcher):
        defs = {d["name"]: d for d in dispatcher.tool_definitions()}
        assert defs["switch_speaker"]["input_schema"]["required"] == ["speaker_key", "handoff_reason"]
        assert "taylor" in defs["switch_speaker"]["input_schema"]["properties"]["speaker_key"]["enum"]
        assert defs["recommend_action"]["description"]


class TestReadSessionState:
    @pytest.mark.asyncio
    async def test_snapshot(self, dispatcher, context, store):
        await store.record_insight(context.session_id, "Target is SMB accountants", "market")
        result = await _call(dispatcher, context, "read_session_state")
        assert result.success
        assert isinstance(result.data, SessionStateSnapshot)
        assert result.data.current_phase == "discovery"
        assert result.data.current_mode == "inquisitive"
        assert result.data.insights == ["Target is SMB accountants"]

    @pytest.mark.asyncio
    async def test_unknown_session(self, dispatcher):
        result = await _call(dispatcher, ToolContext(session_id="missing", user_id="u"), "read_session_state")
        assert result.success is False
        assert result.error == "Session not found"


class TestSwitchSpeaker:
    @pytest.mark.asyncio
    async def test_switch_persists(self, dispatcher, context, store):
        result = await _call(
            dispatcher, context, "switch_speaker", speaker_key="casey", handoff_reason="unit economics"
        )
        assert result.success
        assert isinstance(result.data, SwitchSpeakerOutcome)
        assert result.data.previous_speaker == SpeakerId.MARY
        assert result.data.new_speaker == SpeakerId.CASEY

        record = await store.get(context.session_id)
        assert record.board_state.active_speaker == SpeakerId.CASEY

    @pytest.mark.asyncio
    async def test_unknown_key_resolves_to_mary(self, dispatcher, context):
        result = await _call(dispatcher, context, "switch_speaker", speaker_key="gordon", handoff_reason="?")
        assert result.success
        assert result.data.new_speaker == SpeakerId.MARY

    @pytest.mark.asyncio
    async def test_missing_argument_fails(self, dispatcher, context):
        result = await _call(dispatcher, context, "switch_speaker", speaker_key="casey")
        assert result.success is False
        assert result.error.startswith("Tool execution failed:")


class TestSwitchPersonaMode:
    @pytest.mark.asyncio
    async def test_switch(self, dispatcher, context):
        result = await _call(dispatcher, context, "switch_persona_mode", new_mode="encouraging", reason="defensive")
        assert result.success
        assert isinstance(result.data, SwitchModeOutcome)
        assert result.data.previous_mode == "inquisitive"
        assert result.data.new_mode == "encouraging"

    @pytest.mark.asyncio
    async def test_invalid_mode(self, dispatcher, context):
        result = await _call(dispatcher, context, "switch_persona_mode", new_mode="sarcastic", reason="x")
        assert result.success is False
        assert "Unknown mode" in result.error


class TestCompletePhase:
    @pytest.mark.asyncio
    async def test_advances(self, dispatcher, context):
        result = await _call(dispatcher, context, "complete_phase", reason="problem framed", key_outcomes=["ICP"])
        assert result.success
        assert isinstance(result.data, PhaseCompletion)
        assert result.data.previous_phase == "discovery"
        assert result.data.next_phase == "ideation"
        assert result.data.completion_reason == "problem framed"


class TestRecommendAction:
    @pytest.mark.asyncio
    async def test_early_recommendation_defers(self, dispatcher, context):
        result = await _call(dispatcher, context, "recommend_action", concerns=["crowded"], strengths=[])
        assert result.success
        assert isinstance(result.data, RecommendationOutcome)
        assert result.data.recommendation == "validate_further"
        assert result.data.viability_score == 5

    @pytest.mark.asyncio
    async def test_after_exploration(self, dispatcher, context, store):
        for _ in range(6):
            await store.advance_sub_persona(context.session_id, ["here is more detail"])
        result = await _call(
            dispatcher, context, "recommend_action", concerns=[], strengths=["paying users", "low cac"]
        )
        assert result.data.recommendation == "proceed"

        record = await store.get(context.session_id)
        assert record.sub_persona_state["exploration_complete"] is True


class TestUpdateSessionContext:
    @pytest.mark.asyncio
    async def test_counts_insights(self, dispatcher, context):
        first = await _call(dispatcher, context, "update_session_context", insight="one", category="risk")
        second = await _call(dispatcher, context, "update_session_context", insight="two")
        assert first.data.total_insights == 1
        assert second.data.total_insights == 2
        assert second.data.insight_added == "two"

    @pytest.mark.asyncio
    async def test_result_formatting(self, dispatcher, context):
        result = await _call(dispatcher, context, "update_session_context", insight="x")
        block = ToolDispatcher.format_results_for_model([result])[0]
        assert json.loads(block["content"])["data"] == {"insight_added": "x", "total_insights": 1}
