"""Read-only guild API: game configuration and current cycle."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from tvmbot.api.deps import RepoDep
from tvmbot.core.errors import LookupFailure

router = APIRouter(prefix="/api/guilds", tags=["guilds"])


@router.get("/{guild_id}/config")
async def get_guild_config(guild_id: int, repo: RepoDep) -> dict:
    try:
        config = await repo.get_game_config(guild_id)
    except LookupFailure as exc:
        raise HTTPException(500, exc.message) from exc
    if config is None:
        raise HTTPException(404, "Guild not configured")
    return {"data": config.model_dump(mode="json")}


@router.get("/{guild_id}/cycle")
async def get_guild_cycle(guild_id: int, repo: RepoDep) -> dict:
    """Current cycle with its derived state.

    An unknown guild reads as a game that has not started.
    """
    try:
        cycle = await repo.get_cycle(guild_id)
    except LookupFailure as exc:
        raise HTTPException(500, exc.message) from exc
    return {"data": {**cycle.to_blob(), "state": cycle.state.value}}
