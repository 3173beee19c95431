"""REST API for the boardroom service.

Endpoints:
  POST /chat/stream            - Quota-gated board conversation, streamed
  GET  /chat/stream            - Readiness probe for the stream endpoint
  GET  /sessions/{id}/limit    - Message quota status for a session
  GET  /health                 - Health check (DB connectivity)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import text
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from boardroom.api.models import Message
from boardroom.api.quota import QuotaGate, get_limit_reached_message
from boardroom.api.runner import ChatStreamer, ChatTurn
from boardroom.api.schemas import ToolContext
from boardroom.api.streaming import create_stream_headers
from boardroom.board.members import build_system_prompt
from boardroom.config import Settings
from boardroom.storage.database import Database
from boardroom.storage.sessions import SessionNotFoundError, SessionStore

logger = logging.getLogger(__name__)

_ROLES = frozenset({"user", "assistant"})


def _parse_history(raw: Any) -> list[Message]:
    """Keep well-formed user/assistant turns; drop anything else."""
    if not isinstance(raw, list):
        return []
    history: list[Message] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in _ROLES and isinstance(content, (str, list)) and content:
            history.append(Message(role=role, content=content))
    return history


def _recent_user_messages(history: list[Message], message: str) -> list[str]:
    """User turns from the last ten history messages, then the new message."""
    texts = [m.content for m in history[-10:] if m.role == "user" and isinstance(m.content, str)]
    return [*texts, message]


def create_app(
    streamer: ChatStreamer,
    quota: QuotaGate,
    store: SessionStore,
    database: Database,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def chat_stream(request: Request) -> Response:
        """POST /chat/stream - Board conversation as a frame stream."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Missing required fields"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Missing required fields"}, status_code=400)

        message = body.get("message")
        workspace_id = body.get("workspace_id")
        if not isinstance(message, str) or not message.strip() or not workspace_id:
            logger.error("Chat stream validation failed (message=%s, workspace=%s)", bool(message), bool(workspace_id))
            return JSONResponse({"error": "Missing required fields"}, status_code=400)

        user_id = body.get("user_id")
        if not user_id:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        user_email = body.get("user_email")
        use_tools = body.get("use_tools", True)
        if not isinstance(use_tools, bool):
            return JSONResponse({"error": "use_tools must be a boolean"}, status_code=400)

        try:
            session = await store.get_or_create_active(
                workspace_id=workspace_id,
                user_id=user_id,
                pathway=settings.default_pathway,
                message_limit=settings.message_limit,
            )
        except Exception as e:
            logger.error("Session lookup failed for workspace %s: %s", workspace_id, e)
            return JSONResponse(
                {"error": "MESSAGE_TRACKING_ERROR", "message": "Unable to track message count. Please try again."},
                status_code=500,
            )

        decision = await quota.try_consume(session.id, user_email)
        if decision.reason == "tracking_error" or (not decision.ok and decision.status is None):
            return JSONResponse(
                {"error": "MESSAGE_TRACKING_ERROR", "message": "Unable to track message count. Please try again."},
                status_code=500,
            )
        if not decision.ok:
            return JSONResponse(
                {
                    "error": "MESSAGE_LIMIT_REACHED",
                    "message": get_limit_reached_message(),
                    "limitStatus": decision.status.to_wire(),
                },
                status_code=429,
            )

        history = _parse_history(body.get("history"))
        try:
            sub_persona = await store.advance_sub_persona(session.id, _recent_user_messages(history, message))
        except Exception as e:
            logger.warning("Failed to update coaching state for session %s: %s", session.id, e)
            sub_persona = session.sub_persona_state
        persona_mode = sub_persona.get("current_mode", session.persona_mode)
        user_state = sub_persona.get("detected_user_state", "neutral")

        turn = ChatTurn(
            message=message,
            history=history,
            context=ToolContext(session_id=session.id, user_id=user_id),
            use_tools=use_tools,
            system_prompt=build_system_prompt(session.board_state, persona_mode, user_state),
            limit_status=decision.status.to_wire() if decision.status else None,
            metadata={
                "sessionId": session.id,
                "boardState": {
                    "activeSpeaker": session.board_state.active_speaker.value,
                    "taylorOptedIn": session.board_state.taylor_opted_in,
                },
                "subPersona": {
                    "currentMode": persona_mode,
                    "exchangeCount": sub_persona.get("exchange_count", session.exchange_count),
                    "detectedUserState": user_state,
                },
            },
        )
        logger.info(
            "Chat stream start: session=%s history=%d tools=%s",
            session.id,
            len(turn.history),
            turn.use_tools,
        )

        headers = create_stream_headers()
        media_type = headers.pop("Content-Type")
        return StreamingResponse(streamer.stream(turn), media_type=media_type, headers=headers)

    async def chat_stream_ready(request: Request) -> JSONResponse:
        """GET /chat/stream - Readiness probe."""
        return JSONResponse({
            "message": "Board streaming endpoint ready",
            "timestamp": datetime.now(UTC).isoformat(),
        })

    async def session_limit(request: Request) -> JSONResponse:
        """GET /sessions/{id}/limit - Current quota status."""
        session_id = request.path_params["id"]
        try:
            status = await quota.check(session_id)
            return JSONResponse(status.to_wire())
        except SessionNotFoundError:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        except Exception as e:
            logger.error("Limit check failed for session %s: %s", session_id, e)
            return JSONResponse({"error": str(e)}, status_code=500)

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
            return JSONResponse({"status": "healthy"})
        except Exception as e:
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)

    routes = [
        Route("/chat/stream", chat_stream, methods=["POST"]),
        Route("/chat/stream", chat_stream_ready, methods=["GET"]),
        Route("/sessions/{id}/limit", session_limit),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
