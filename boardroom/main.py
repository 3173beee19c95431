"""Boardroom service entry point.

Initializes all components and starts the server:
  Settings -> Database -> SessionStore -> Tools -> LLM client -> Loop -> App -> Uvicorn

Components are created in the Starlette lifespan so they share the
event loop with uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from boardroom.api.llm import AnthropicClient
from boardroom.api.quota import QuotaGate
from boardroom.api.runner import AgenticLoop, ChatStreamer
from boardroom.api.session_tools import register_session_tools
from boardroom.api.tools import ToolDispatcher
from boardroom.config import Settings
from boardroom.storage.database import Database
from boardroom.storage.sessions import SessionStore

logger = logging.getLogger(__name__)


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components for lifespan storage.
    """
    database = Database(settings)
    await database.connect()
    await database.create_schema()

    store = SessionStore(database)

    dispatcher = ToolDispatcher()
    register_session_tools(dispatcher, store)

    llm = AnthropicClient(settings)
    await llm.start()

    loop = AgenticLoop(llm, dispatcher, settings)
    streamer = ChatStreamer(loop, llm, settings)
    quota = QuotaGate(store, settings)

    logger.info("Registered %d tools: %s", len(dispatcher.tool_names), ", ".join(dispatcher.tool_names))
    return {
        "database": database,
        "store": store,
        "dispatcher": dispatcher,
        "llm": llm,
        "loop": loop,
        "streamer": streamer,
        "quota": quota,
    }


async def shutdown_components(components: dict) -> None:
    """Close components in reverse dependency order."""
    llm = components.get("llm")
    if llm:
        await llm.close()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("Boardroom shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; components are filled in by the lifespan."""
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))
        app.state.components = components
        logger.info(
            "Boardroom started: model=%s max_tool_rounds=%d message_limit=%d",
            settings.model,
            settings.max_tool_rounds,
            settings.message_limit,
        )
        yield
        await shutdown_components(components)

    from boardroom.api.rest import create_app

    return create_app(
        streamer=_lazy_component(components, "streamer"),
        quota=_lazy_component(components, "quota"),
        store=_lazy_component(components, "store"),
        database=_lazy_component(components, "database"),
        settings=settings,
        lifespan=lifespan,
    )


class _LazyProxy:
    """Forwards attribute access to a component created later in lifespan."""

    def __init__(self, components: dict, key: str) -> None:
        object.__setattr__(self, "_components", components)
        object.__setattr__(self, "_key", key)

    def _resolve(self):
        components = object.__getattribute__(self, "_components")
        key = object.__getattribute__(self, "_key")
        obj = components.get(key)
        if obj is None:
            raise RuntimeError(f"Component '{key}' not yet initialized, lifespan hasn't started")
        return obj

    def __getattr__(self, name):
        return getattr(self._resolve(), name)


def _lazy_component(components: dict, key: str) -> _LazyProxy:
    return _LazyProxy(components, key)


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting boardroom service on %s:%d", settings.host, settings.port)
    logger.info("Model: %s", settings.model)
    if not settings.anthropic_api_key and not settings.anthropic_auth_token:
        logger.warning("Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set; /chat/stream will fail")
    if settings.unlimited_principals:
        logger.info("Quota exempt principals: %d", len(settings.unlimited_principals))

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
