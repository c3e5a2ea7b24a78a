"""Parley entry point.

Initializes all components and starts the server:
  Settings -> Transport -> ToolDispatcher -> SessionStore -> App -> Uvicorn

Uses Starlette lifespan to manage component lifecycle on the same
event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from starlette.applications import Starlette

from parley.api.builtin_tools import register_builtin_tools
from parley.api.rest import create_app
from parley.api.tools import ToolDispatcher
from parley.api.transport import OpenAITransport
from parley.chat.session import SessionStore
from parley.config import Settings

logger = logging.getLogger(__name__)


def create_components(settings: Settings) -> dict:
    """Build components in dependency order. Nothing is started yet."""
    transport = OpenAITransport(settings)

    dispatcher = ToolDispatcher()
    register_builtin_tools(dispatcher, settings)

    store = SessionStore(settings, transport, dispatcher)
    return {
        "transport": transport,
        "dispatcher": dispatcher,
        "store": store,
    }


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; the transport client lives for the app's lifespan."""
    components = create_components(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        Path(settings.workspace_dir).mkdir(parents=True, exist_ok=True)
        await components["transport"].start()
        app.state.components = components

        logger.info("Parley started: model=%s endpoint=%s", settings.model, settings.api_base_url)
        logger.info(
            "Tool loop: max_attempts=%d, workspace=%s",
            settings.max_tool_attempts,
            settings.workspace_dir,
        )
        yield

        logger.info("Shutting down Parley...")
        await components["transport"].close()
        logger.info("Parley shutdown complete.")

    return create_app(
        store=components["store"],
        dispatcher=components["dispatcher"],
        settings=settings,
        lifespan=lifespan,
    )


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting Parley (model %s, context %d tokens)", settings.model, settings.context_length)

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
