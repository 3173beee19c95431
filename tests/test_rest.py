"""Tests for the REST API via httpx ASGITransport.

Real QuotaGate, SessionStore (SQLite) and session tools; the LLM client
is mocked.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from boardroom.api.llm import ModelCallError
from boardroom.api.models import ApiResponse
from boardroom.api.quota import QuotaGate
from boardroom.api.rest import create_app
from boardroom.api.runner import AgenticLoop, ChatStreamer
from boardroom.api.session_tools import register_session_tools
from boardroom.api.streaming import StreamDecoder
from boardroom.api.tools import ToolDispatcher
from boardroom.board.schemas import SpeakerId


def _text_response(text: str) -> ApiResponse:
    return ApiResponse(content=[{"type": "text", "text": text}], stop_reason="end_turn")


@pytest.fixture
def llm() -> MagicMock:
    mock = MagicMock()
    mock.send_message_with_tools = AsyncMock(return_value=_text_response("What problem are you solving?"))
    mock.continue_with_tool_results = AsyncMock(return_value=_text_response(""))
    return mock


@pytest.fixture
def quota(store, settings) -> QuotaGate:
    return QuotaGate(store, settings)


@pytest_asyncio.fixture
async def client(llm, store, quota, db, settings):
    dispatcher = ToolDispatcher()
    register_session_tools(dispatcher, store)
    streamer = ChatStreamer(AgenticLoop(llm, dispatcher, settings), llm, settings)
    app = create_app(streamer=streamer, quota=quota, store=store, database=db, settings=settings)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _body(**overrides) -> dict:
    body = {"message": "I want to build a CRM for dentists", "workspace_id": "ws-1", "user_id": "user-1"}
    body.update(overrides)
    return {k: v for k, v in body.items() if v is not None}


def _chunks(response: httpx.Response):
    return StreamDecoder().decode(response.content)


class TestValidation:
    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        r = await client.post("/chat/stream", content=b"{nope", headers={"content-type": "application/json"})
        assert r.status_code == 400
        assert r.json() == {"error": "Missing required fields"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["message", "workspace_id"])
    async def test_missing_fields(self, client, missing):
        r = await client.post("/chat/stream", json=_body(**{missing: None}))
        assert r.status_code == 400
        assert r.json() == {"error": "Missing required fields"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [42, {"text": "hi"}, ["hi"], "   "])
    async def test_message_must_be_text(self, client, message):
        r = await client.post("/chat/stream", json=_body(message=message))
        assert r.status_code == 400
        assert r.json() == {"error": "Missing required fields"}

    @pytest.mark.asyncio
    async def test_use_tools_must_be_boolean(self, client, llm):
        r = await client.post("/chat/stream", json=_body(use_tools="false"))
        assert r.status_code == 400
        llm.send_message_with_tools.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_user(self, client):
        r = await client.post("/chat/stream", json=_body(user_id=None))
        assert r.status_code == 401
        assert r.json() == {"error": "Unauthorized"}


class TestChatStream:
    @pytest.mark.asyncio
    async def test_stream_headers_and_order(self, client):
        r = await client.post("/chat/stream", json=_body())
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")
        assert r.headers["cache-control"] == "no-cache"

        chunks = _chunks(r)
        assert chunks[0].type == "metadata"
        assert [c.type for c in chunks[-2:]] == ["complete", "done"]
        text = "".join(c.content for c in chunks if c.type == "content")
        assert text == "What problem are you solving?"

    @pytest.mark.asyncio
    async def test_complete_frame_has_limit_status(self, client):
        r = await client.post("/chat/stream", json=_body())
        complete = next(c for c in _chunks(r) if c.type == "complete")
        assert complete.limit_status == {
            "currentCount": 1,
            "messageLimit": 10,
            "remaining": 9,
            "limitReached": False,
            "warningThreshold": False,
        }

    @pytest.mark.asyncio
    async def test_metadata_describes_session(self, client):
        r = await client.post("/chat/stream", json=_body())
        metadata = _chunks(r)[0].metadata
        assert metadata["sessionId"]
        assert metadata["boardState"] == {"activeSpeaker": "mary", "taylorOptedIn": False}
        assert metadata["subPersona"]["exchangeCount"] == 1
        assert metadata["subPersona"]["detectedUserState"] == "neutral"

    @pytest.mark.asyncio
    async def test_user_state_shifts_coaching_mode(self, client, llm, store):
        message = "This will definitely work. Obviously there is no competition."
        r = await client.post("/chat/stream", json=_body(message=message))
        sub_persona = _chunks(r)[0].metadata["subPersona"]
        assert sub_persona["detectedUserState"] == "overconfident"
        assert sub_persona["currentMode"] == "devil_advocate"

        _, _, system_prompt, _ = llm.send_message_with_tools.call_args.args
        assert "CURRENT MODE (devil_advocate)" in system_prompt
        assert "overconfident state" in system_prompt

        record = await store.get(_chunks(r)[0].metadata["sessionId"])
        assert record.persona_mode == "devil_advocate"
        assert record.detected_user_state == "overconfident"

    @pytest.mark.asyncio
    async def test_history_passed_to_model(self, client, llm):
        history = [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "hi"},
            {"role": "system", "content": "dropped"},
            "garbage",
        ]
        await client.post("/chat/stream", json=_body(history=history))
        _, sent_history, _, _ = llm.send_message_with_tools.call_args.args
        assert [(m.role, m.content) for m in sent_history] == [("user", "hello"), ("assistant", "hi")]

    @pytest.mark.asyncio
    async def test_speaker_switch_persists_and_streams(self, client, llm, store):
        llm.send_message_with_tools.return_value = ApiResponse(
            content=[{
                "type": "tool_use",
                "id": "toolu_1",
                "name": "switch_speaker",
                "input": {"speaker_key": "casey", "handoff_reason": "unit economics"},
            }],
            stop_reason="tool_use",
        )
        llm.continue_with_tool_results.return_value = _text_response("Show me the CAC.")

        r = await client.post("/chat/stream", json=_body())
        chunks = _chunks(r)
        change = next(c for c in chunks if c.type == "speaker_change")
        assert change.speaker == "casey"
        assert change.handoff_reason == "unit economics"
        assert {c.speaker for c in chunks if c.type == "content"} == {"casey"}

        session_id = chunks[0].metadata["sessionId"]
        record = await store.get(session_id)
        assert record.board_state.active_speaker == SpeakerId.CASEY

    @pytest.mark.asyncio
    async def test_model_error_frame(self, client, llm):
        llm.send_message_with_tools.side_effect = ModelCallError("Anthropic API error (401): authentication_error", 401)
        r = await client.post("/chat/stream", json=_body())
        assert r.status_code == 200
        chunks = _chunks(r)
        assert chunks[-1].type == "error"
        assert chunks[-1].error_details.retryable is False
        assert all(c.type != "done" for c in chunks)


class TestQuota:
    @pytest.mark.asyncio
    async def test_limit_reached_returns_429(self, client, settings):
        for _ in range(settings.message_limit):
            r = await client.post("/chat/stream", json=_body())
            assert r.status_code == 200

        r = await client.post("/chat/stream", json=_body())
        assert r.status_code == 429
        body = r.json()
        assert body["error"] == "MESSAGE_LIMIT_REACHED"
        assert body["message"]
        assert body["limitStatus"]["limitReached"] is True
        assert body["limitStatus"]["remaining"] == 0

    @pytest.mark.asyncio
    async def test_rejected_request_makes_no_model_call(self, client, llm, settings):
        for _ in range(settings.message_limit):
            await client.post("/chat/stream", json=_body())
        calls_before = llm.send_message_with_tools.await_count
        await client.post("/chat/stream", json=_body())
        assert llm.send_message_with_tools.await_count == calls_before

    @pytest.mark.asyncio
    async def test_unlimited_principal(self, client, settings):
        for _ in range(settings.message_limit + 2):
            r = await client.post("/chat/stream", json=_body(user_email="Admin@Example.com"))
            assert r.status_code == 200
        complete = next(c for c in _chunks(r) if c.type == "complete")
        assert complete.limit_status["messageLimit"] == -1
        assert complete.limit_status["remaining"] == 9999

    @pytest.mark.asyncio
    async def test_tracking_failure_fails_closed(self, client, store, llm):
        store.increment_message_count = AsyncMock(side_effect=RuntimeError("db down"))
        r = await client.post("/chat/stream", json=_body())
        assert r.status_code == 500
        assert r.json()["error"] == "MESSAGE_TRACKING_ERROR"
        llm.send_message_with_tools.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_lookup_failure(self, client, store):
        store.get_or_create_active = AsyncMock(side_effect=RuntimeError("db down"))
        r = await client.post("/chat/stream", json=_body())
        assert r.status_code == 500
        assert r.json()["error"] == "MESSAGE_TRACKING_ERROR"


class TestOtherRoutes:
    @pytest.mark.asyncio
    async def test_stream_ready(self, client):
        r = await client.get("/chat/stream")
        assert r.status_code == 200
        assert "ready" in r.json()["message"]

    @pytest.mark.asyncio
    async def test_session_limit(self, client):
        r = await client.post("/chat/stream", json=_body())
        session_id = _chunks(r)[0].metadata["sessionId"]

        r = await client.get(f"/sessions/{session_id}/limit")
        assert r.status_code == 200
        assert r.json()["currentCount"] == 1

    @pytest.mark.asyncio
    async def test_session_limit_unknown(self, client):
        r = await client.get("/sessions/missing/limit")
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_health(self, client):
        r = await client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "healthy"}
