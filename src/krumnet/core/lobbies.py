"""Lobby and game creation jobs."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.core.names import generate_name, pick_prompts
from krumnet.db.engine import get_session
from krumnet.db.repository import Repository
from krumnet.errors import NotFoundError, RecordsError

logger = logging.getLogger(__name__)


async def create_lobby(engine: AsyncEngine, job_id: str, creator: str) -> str:
    """Create a lobby owned by *creator*. Returns the lobby id."""
    async with get_session(engine) as session:
        repo = Repository(session)
        user = await repo.get_user(creator)
        if user is None:
            raise NotFoundError("user", creator)
        lobby = await repo.create_lobby(generate_name(), user.id, job_id=job_id)
    logger.info("lobby_created lobby=%s creator=%s job=%s", lobby.id, creator, job_id)
    return lobby.id


async def create_game(
    engine: AsyncEngine,
    job_id: str,
    creator: str,
    lobby_id: str,
    rounds: int = 3,
) -> str:
    """Start a game in an open lobby the creator belongs to. Returns the game id."""
    async with get_session(engine) as session:
        repo = Repository(session)
        user = await repo.get_user(creator)
        if user is None:
            raise NotFoundError("user", creator)
        lobby = await repo.get_lobby(lobby_id)
        if lobby is None:
            raise NotFoundError("lobby", lobby_id)
        if lobby.closed_at is not None:
            raise RecordsError(f"Lobby '{lobby_id}' is closed")
        if await repo.get_active_lobby_member(lobby_id, user.id) is None:
            raise RecordsError(f"User '{creator}' is not a member of lobby '{lobby_id}'")

        game = await repo.create_game(
            lobby_id,
            generate_name(),
            pick_prompts(rounds),
            job_id=job_id,
        )
    logger.info("game_created game=%s lobby=%s rounds=%d", game.id, lobby_id, rounds)
    return game.id
