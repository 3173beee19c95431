"""Board session storage: message counters, board state, insights, outputs.

The message counter is only ever mutated through a single
UPDATE ... RETURNING statement so concurrent requests serialize on the
row, never on a read-then-write pair. JSON state columns use
SELECT FOR UPDATE read-modify-write.

All methods follow the session injection pattern: pass an AsyncSession
to join a caller's transaction, or omit it to auto-commit.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boardroom.board import persona
from boardroom.board.schemas import DEFAULT_SPEAKER, BoardState, SpeakerId
from boardroom.storage.database import Database
from boardroom.storage.models import BoardSession, PhaseOutput, SessionInsight

logger = logging.getLogger(__name__)

PHASE_ORDER: tuple[str, ...] = ("discovery", "ideation", "validation", "planning", "documentation")

DEFAULT_PERSONA_MODE = "inquisitive"


class SessionNotFoundError(LookupError):
    """No board session with the given id."""


class MessageCount(BaseModel):
    """Counter values read back from storage."""

    count: int
    limit: int


class SessionRecord(BaseModel):
    """Read-only view of a board session row."""

    id: str
    user_id: str
    workspace_id: str
    pathway: str
    current_phase: str
    progress: float
    status: str
    message_count: int
    message_limit: int
    board_state: BoardState = Field(default_factory=BoardState)
    sub_persona_state: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def persona_mode(self) -> str:
        return self.sub_persona_state.get("current_mode", DEFAULT_PERSONA_MODE)

    @property
    def exchange_count(self) -> int:
        return int(self.sub_persona_state.get("exchange_count", 0))

    @property
    def detected_user_state(self) -> str:
        return self.sub_persona_state.get("detected_user_state", "neutral")


class PhaseTransition(BaseModel):
    previous_phase: str
    next_phase: str | None
    progress: float


def initial_sub_persona_state() -> dict[str, Any]:
    return {
        "current_mode": DEFAULT_PERSONA_MODE,
        "exchange_count": 0,
        "mode_history": [],
        "detected_user_state": "neutral",
        "user_control_enabled": False,
        "exploration_complete": False,
    }


class SessionStore:
    """Persistence for board sessions."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Session lookup / creation
    # ------------------------------------------------------------------

    async def get_or_create_active(
        self,
        workspace_id: str,
        user_id: str,
        pathway: str,
        message_limit: int,
        session: AsyncSession | None = None,
    ) -> SessionRecord:
        """Most recent active session for a workspace, creating one if needed."""
        if session is None:
            async with self.db.session() as session:
                result = await self._get_or_create_active(workspace_id, user_id, pathway, message_limit, session)
                await session.commit()
                return result
        return await self._get_or_create_active(workspace_id, user_id, pathway, message_limit, session)

    async def _get_or_create_active(
        self,
        workspace_id: str,
        user_id: str,
        pathway: str,
        message_limit: int,
        session: AsyncSession,
    ) -> SessionRecord:
        result = await session.execute(
            select(BoardSession)
            .where(BoardSession.workspace_id == workspace_id, BoardSession.status == "active")
            .order_by(BoardSession.created_at.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if row is not None:
            return self._to_record(row)

        row = BoardSession(
            user_id=user_id,
            workspace_id=workspace_id,
            pathway=pathway,
            current_phase=PHASE_ORDER[0],
            progress=0.0,
            status="active",
            message_count=0,
            message_limit=message_limit,
            sub_persona_state=initial_sub_persona_state(),
            board_state=BoardState().model_dump(mode="json"),
        )
        session.add(row)
        await session.flush()
        await session.refresh(row)
        logger.info("Created board session %s for workspace %s", row.id, workspace_id)
        return self._to_record(row)

    async def get(self, session_id: str, session: AsyncSession | None = None) -> SessionRecord | None:
        if session is None:
            async with self.db.session() as session:
                return await self._get(session_id, session)
        return await self._get(session_id, session)

    async def _get(self, session_id: str, session: AsyncSession) -> SessionRecord | None:
        row = await session.get(BoardSession, session_id)
        return self._to_record(row) if row is not None else None

    # ------------------------------------------------------------------
    # Message counter
    # ------------------------------------------------------------------

    async def increment_message_count(self, session_id: str, session: AsyncSession | None = None) -> MessageCount:
        """Atomically add one to the counter and return the new values."""
        if session is None:
            async with self.db.session() as session:
                result = await self._increment_message_count(session_id, session)
                await session.commit()
                return result
        return await self._increment_message_count(session_id, session)

    async def _increment_message_count(self, session_id: str, session: AsyncSession) -> MessageCount:
        stmt = (
            update(BoardSession)
            .where(BoardSession.id == session_id)
            .values(message_count=BoardSession.message_count + 1, updated_at=func.now())
            .returning(BoardSession.message_count, BoardSession.message_limit)
            .execution_options(synchronize_session=False)
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            raise SessionNotFoundError(f"Board session {session_id} not found")
        return MessageCount(count=row[0], limit=row[1])

    async def get_message_count(self, session_id: str, session: AsyncSession | None = None) -> MessageCount:
        if session is None:
            async with self.db.session() as session:
                return await self._get_message_count(session_id, session)
        return await self._get_message_count(session_id, session)

    async def _get_message_count(self, session_id: str, session: AsyncSession) -> MessageCount:
        result = await session.execute(
            select(BoardSession.message_count, BoardSession.message_limit).where(BoardSession.id == session_id)
        )
        row = result.one_or_none()
        if row is None:
            raise SessionNotFoundError(f"Board session {session_id} not found")
        return MessageCount(count=row[0], limit=row[1])

    # ------------------------------------------------------------------
    # Board / persona state
    # ------------------------------------------------------------------

    async def set_active_speaker(
        self,
        session_id: str,
        speaker: SpeakerId,
        session: AsyncSession | None = None,
    ) -> SpeakerId:
        """Store the new active speaker and return the previous one."""
        if session is None:
            async with self.db.session() as session:
                result = await self._set_active_speaker(session_id, speaker, session)
                await session.commit()
                return result
        return await self._set_active_speaker(session_id, speaker, session)

    async def _set_active_speaker(self, session_id: str, speaker: SpeakerId, session: AsyncSession) -> SpeakerId:
        row = await self._get_for_update(session_id, session)
        state = BoardState.model_validate(row.board_state or {})
        previous = state.active_speaker or DEFAULT_SPEAKER
        state.active_speaker = speaker
        row.board_state = state.model_dump(mode="json")
        row.updated_at = func.now()
        await session.flush()
        return previous

    async def set_persona_mode(
        self,
        session_id: str,
        mode: str,
        trigger: str,
        session: AsyncSession | None = None,
    ) -> str:
        """Switch the coaching mode and return the previous one."""
        if session is None:
            async with self.db.session() as session:
                result = await self._set_persona_mode(session_id, mode, trigger, session)
                await session.commit()
                return result
        return await self._set_persona_mode(session_id, mode, trigger, session)

    async def _set_persona_mode(self, session_id: str, mode: str, trigger: str, session: AsyncSession) -> str:
        row = await self._get_for_update(session_id, session)
        state = {**initial_sub_persona_state(), **(row.sub_persona_state or {})}
        previous = state["current_mode"]
        state["current_mode"] = mode
        state["mode_history"] = [
            *state["mode_history"],
            {"mode": mode, "trigger": trigger, "timestamp": datetime.now().isoformat()},
        ]
        row.sub_persona_state = state
        row.updated_at = func.now()
        await session.flush()
        return previous

    async def advance_sub_persona(
        self,
        session_id: str,
        user_messages: list[str],
        rng: random.Random | None = None,
        session: AsyncSession | None = None,
    ) -> dict[str, Any]:
        """Apply one user exchange to the coaching state and return the new state."""
        if session is None:
            async with self.db.session() as session:
                result = await self._advance_sub_persona(session_id, user_messages, rng, session)
                await session.commit()
                return result
        return await self._advance_sub_persona(session_id, user_messages, rng, session)

    async def _advance_sub_persona(
        self,
        session_id: str,
        user_messages: list[str],
        rng: random.Random | None,
        session: AsyncSession,
    ) -> dict[str, Any]:
        row = await self._get_for_update(session_id, session)
        state = {**initial_sub_persona_state(), **(row.sub_persona_state or {})}
        updated = persona.advance_sub_persona(state, user_messages, row.pathway, rng)
        if updated["current_mode"] != state["current_mode"]:
            logger.info(
                "Session %s coaching mode %s -> %s (user %s)",
                session_id,
                state["current_mode"],
                updated["current_mode"],
                updated["detected_user_state"],
            )
        row.sub_persona_state = updated
        row.updated_at = func.now()
        await session.flush()
        return updated

    async def mark_exploration(
        self,
        session_id: str,
        concerns: list[str],
        session: AsyncSession | None = None,
    ) -> None:
        """Note that a recommendation probe happened with these concerns."""
        if session is None:
            async with self.db.session() as session:
                await self._mark_exploration(session_id, concerns, session)
                await session.commit()
                return
        await self._mark_exploration(session_id, concerns, session)

    async def _mark_exploration(self, session_id: str, concerns: list[str], session: AsyncSession) -> None:
        row = await self._get_for_update(session_id, session)
        state = {**initial_sub_persona_state(), **(row.sub_persona_state or {})}
        state["concerns_raised"] = sorted({*state.get("concerns_raised", []), *concerns})
        state["exploration_complete"] = True
        row.sub_persona_state = state
        await session.flush()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def complete_phase(
        self,
        session_id: str,
        reason: str,
        key_outcomes: list[str] | None = None,
        session: AsyncSession | None = None,
    ) -> PhaseTransition:
        """Advance the session to the next phase in PHASE_ORDER."""
        if session is None:
            async with self.db.session() as session:
                result = await self._complete_phase(session_id, reason, key_outcomes, session)
                await session.commit()
                return result
        return await self._complete_phase(session_id, reason, key_outcomes, session)

    async def _complete_phase(
        self,
        session_id: str,
        reason: str,
        key_outcomes: list[str] | None,
        session: AsyncSession,
    ) -> PhaseTransition:
        row = await self._get_for_update(session_id, session)
        previous = row.current_phase
        if previous not in PHASE_ORDER:
            raise ValueError(f"Unknown phase '{previous}'")

        index = PHASE_ORDER.index(previous)
        next_phase = PHASE_ORDER[index + 1] if index + 1 < len(PHASE_ORDER) else None
        progress = round((index + 1) / len(PHASE_ORDER) * 100, 1)

        if next_phase is not None:
            row.current_phase = next_phase
        else:
            row.status = "completed"
        row.progress = progress
        row.updated_at = func.now()

        session.add(PhaseOutput(
            session_id=session_id,
            phase_id=previous,
            output_name="Phase Completion",
            output_type="transition",
            output_data={"reason": reason, "key_outcomes": key_outcomes or [], "next_phase": next_phase},
        ))
        await session.flush()
        return PhaseTransition(previous_phase=previous, next_phase=next_phase, progress=progress)

    async def record_phase_output(
        self,
        session_id: str,
        phase_id: str,
        output_name: str,
        output_type: str,
        output_data: dict[str, Any],
        session: AsyncSession | None = None,
    ) -> str:
        if session is None:
            async with self.db.session() as session:
                result = await self._record_phase_output(
                    session_id, phase_id, output_name, output_type, output_data, session
                )
                await session.commit()
                return result
        return await self._record_phase_output(session_id, phase_id, output_name, output_type, output_data, session)

    async def _record_phase_output(
        self,
        session_id: str,
        phase_id: str,
        output_name: str,
        output_type: str,
        output_data: dict[str, Any],
        session: AsyncSession,
    ) -> str:
        output = PhaseOutput(
            session_id=session_id,
            phase_id=phase_id,
            output_name=output_name,
            output_type=output_type,
            output_data=output_data,
        )
        session.add(output)
        await session.flush()
        return output.id

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    async def record_insight(
        self,
        session_id: str,
        content: str,
        category: str = "general",
        session: AsyncSession | None = None,
    ) -> int:
        """Store an insight and return the session's total insight count."""
        if session is None:
            async with self.db.session() as session:
                result = await self._record_insight(session_id, content, category, session)
                await session.commit()
                return result
        return await self._record_insight(session_id, content, category, session)

    async def _record_insight(self, session_id: str, content: str, category: str, session: AsyncSession) -> int:
        if await session.get(BoardSession, session_id) is None:
            raise SessionNotFoundError(f"Board session {session_id} not found")
        session.add(SessionInsight(session_id=session_id, content=content, category=category))
        await session.flush()
        result = await session.execute(
            select(func.count()).select_from(SessionInsight).where(SessionInsight.session_id == session_id)
        )
        return result.scalar() or 0

    async def list_insights(
        self,
        session_id: str,
        limit: int | None = None,
        session: AsyncSession | None = None,
    ) -> list[str]:
        """Insight texts, newest first."""
        if session is None:
            async with self.db.session() as session:
                return await self._list_insights(session_id, limit, session)
        return await self._list_insights(session_id, limit, session)

    async def _list_insights(self, session_id: str, limit: int | None, session: AsyncSession) -> list[str]:
        stmt = (
            select(SessionInsight.content)
            .where(SessionInsight.session_id == session_id)
            .order_by(SessionInsight.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_for_update(self, session_id: str, session: AsyncSession) -> BoardSession:
        result = await session.execute(
            select(BoardSession).where(BoardSession.id == session_id).with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise SessionNotFoundError(f"Board session {session_id} not found")
        return row

    @staticmethod
    def _to_record(row: BoardSession) -> SessionRecord:
        return SessionRecord(
            id=row.id,
            user_id=row.user_id,
            workspace_id=row.workspace_id,
            pathway=row.pathway,
            current_phase=row.current_phase,
            progress=row.progress or 0.0,
            status=row.status,
            message_count=row.message_count or 0,
            message_limit=row.message_limit,
            board_state=BoardState.model_validate(row.board_state or {}),
            sub_persona_state={**initial_sub_persona_state(), **(row.sub_persona_state or {})},
            created_at=row.created_at,
        )
