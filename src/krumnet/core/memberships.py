"""Membership cleanup for players leaving a game or a lobby.

Both cleanups are jobs themselves and may run more than once. Record changes
are committed before any follow-up job is queued, so the follow-up never
reads state the cleanup has not persisted yet.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.db.engine import get_session
from krumnet.db.repository import Repository
from krumnet.jobs.store import JobStore
from krumnet.models.jobs import CheckRoundFulfillment, CleanupGameMembership

logger = logging.getLogger(__name__)

LOBBY_CLOSED = "closed"
LOBBY_OPEN = "done"


async def cleanup_game_membership(
    engine: AsyncEngine,
    jobs: JobStore,
    user_id: str,
    member_id: str,
    lobby_id: str,
    game_id: str,
) -> list[str]:
    """Backfill placeholder entries for a departed game member.

    Queues a fulfillment check for every round that got a placeholder, since
    the departure may have been the only thing keeping it open. Returns the
    backfilled round ids.
    """
    logger.debug("game_membership_cleanup member=%s game=%s", member_id, game_id)
    async with get_session(engine) as session:
        repo = Repository(session)
        round_ids = await repo.backfill_missing_entries(user_id, member_id, game_id)

    if not round_ids:
        logger.info("game_membership_cleanup_noop member=%s game=%s", member_id, game_id)
        return round_ids

    logger.info(
        "game_membership_backfilled member=%s game=%s lobby=%s rounds=%s",
        member_id,
        game_id,
        lobby_id,
        round_ids,
    )
    for round_id in round_ids:
        job_id = await jobs.queue(CheckRoundFulfillment(round_id=round_id))
        logger.debug("round_fulfillment_queued job=%s round=%s", job_id, round_id)
    return round_ids


async def cleanup_lobby_membership(
    engine: AsyncEngine,
    jobs: JobStore,
    member_id: str,
    lobby_id: str,
) -> str:
    """Leave every running game held through the lobby membership.

    Closes the lobby when nobody is left in it and queues a game membership
    cleanup for each game the member was part of.
    """
    logger.debug("lobby_membership_cleanup member=%s lobby=%s", member_id, lobby_id)
    async with get_session(engine) as session:
        repo = Repository(session)
        remaining = await repo.count_active_lobby_members(lobby_id)
        memberships = await repo.find_game_memberships_for_lobby_member(member_id)
        for membership in memberships:
            await repo.try_leave_game(membership.game_member_id)
        closed = remaining == 0 and await repo.try_close_lobby(lobby_id)

    for membership in memberships:
        job = CleanupGameMembership(
            user_id=membership.user_id,
            member_id=membership.game_member_id,
            lobby_id=membership.lobby_id,
            game_id=membership.game_id,
        )
        job_id = await jobs.queue(job)
        logger.debug("game_membership_cleanup_queued job=%s game=%s", job_id, membership.game_id)

    if remaining == 0:
        logger.info("lobby_empty lobby=%s newly_closed=%s", lobby_id, closed)
        return LOBBY_CLOSED

    logger.info("lobby_members_remaining lobby=%s count=%d", lobby_id, remaining)
    return LOBBY_OPEN
