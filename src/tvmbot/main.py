"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tvmbot.api.guilds import router as guilds_router
from tvmbot.config import Settings
from tvmbot.db.engine import create_engine, init_schema

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables, optionally start the Discord bot."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    await init_schema(engine)
    app.state.engine = engine

    discord_bot = None
    from tvmbot.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from tvmbot.discord.bot import start_discord_bot

        discord_bot = await start_discord_bot(settings, engine)
        app.state.discord_bot = discord_bot
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")

    yield

    # Shutdown Discord bot if running
    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the TvM bot's FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.tvm_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="TvM Assistant",
        version="0.1.0",
        description="Town-vs-Mafia game hosting bot",
        docs_url="/docs" if settings.tvm_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(guilds_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.tvm_env}

    return app


app = create_app()
