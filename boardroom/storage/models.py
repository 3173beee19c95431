"""SQLAlchemy ORM models for board sessions and their recorded outputs."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Single declarative base for all tables."""

    pass


class BoardSession(Base):
    __tablename__ = "board_sessions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'paused', 'completed', 'archived')",
            name="ck_board_sessions_status",
        ),
        CheckConstraint("message_count >= 0", name="ck_board_sessions_message_count"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    workspace_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    pathway: Mapped[str] = mapped_column(String(50), nullable=False)
    current_phase: Mapped[str] = mapped_column(String(50), nullable=False, server_default="discovery")
    progress: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="active")
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    message_limit: Mapped[int] = mapped_column(Integer, nullable=False, server_default="10")
    sub_persona_state: Mapped[dict | None] = mapped_column(JSON)
    board_state: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    insights: Mapped[list["SessionInsight"]] = relationship(back_populates="session")
    phase_outputs: Mapped[list["PhaseOutput"]] = relationship(back_populates="session")


class SessionInsight(Base):
    __tablename__ = "session_insights"
    __table_args__ = (
        CheckConstraint(
            "category IN ('market', 'product', 'competition', 'risk', 'opportunity', 'general')",
            name="ck_session_insights_category",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("board_sessions.id"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False, server_default="general")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped["BoardSession"] = relationship(back_populates="insights")


class PhaseOutput(Base):
    __tablename__ = "phase_outputs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("board_sessions.id"), nullable=False, index=True)
    phase_id: Mapped[str] = mapped_column(String(50), nullable=False)
    output_name: Mapped[str] = mapped_column(String(200), nullable=False)
    output_type: Mapped[str] = mapped_column(String(50), nullable=False)
    output_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped["BoardSession"] = relationship(back_populates="phase_outputs")
