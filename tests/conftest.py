"""Test fixtures: settings, a throwaway SQLite database, and the session store."""

import uuid

import pytest
import pytest_asyncio

from boardroom.config import Settings
from boardroom.storage.database import Database
from boardroom.storage.sessions import SessionStore


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointed at a per-test SQLite file, pacing off."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'boardroom.db'}",
        ANTHROPIC_API_KEY="test-key",
        stream_pacing=False,
        unlimited_principals=["admin@example.com"],
    )


@pytest_asyncio.fixture
async def db(settings):
    """Database with the schema created, disposed after the test."""
    database = Database(settings)
    await database.connect()
    await database.create_schema()
    yield database
    await database.disconnect()


@pytest_asyncio.fixture
async def store(db) -> SessionStore:
    return SessionStore(db)


@pytest_asyncio.fixture
async def board_session(store, settings):
    """A fresh active board session."""
    return await store.get_or_create_active(
        workspace_id=f"ws-{uuid.uuid4().hex[:8]}",
        user_id="user-1",
        pathway=settings.default_pathway,
        message_limit=settings.message_limit,
    )
