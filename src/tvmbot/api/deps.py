"""FastAPI dependencies: a repository bound to one request's session."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from tvmbot.config import Settings
from tvmbot.db.engine import get_session
from tvmbot.db.repository import Repository


async def get_repo(request: Request) -> AsyncGenerator[Repository, None]:
    """Repository over the app's engine, committed when the request succeeds.

    Unconfigured guilds read with the deployment's default player limit.
    """
    settings: Settings = request.app.state.settings
    async with get_session(request.app.state.engine) as session:
        yield Repository(session, default_total_players=settings.tvm_default_total_players)


RepoDep = Annotated[Repository, Depends(get_repo)]
