"""Round completion: has every active member voted?

A complete round is closed and ranked. When it was the game's last open
round the whole game is ranked and ended. Re-running a completion check is
harmless: the round/game timestamps are only set once and placement creation
returns the rows that already exist.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.db.engine import get_session
from krumnet.db.repository import Repository
from krumnet.errors import RecordsError
from krumnet.models.jobs import RoundCompletion

logger = logging.getLogger(__name__)


async def check_round_completion(
    engine: AsyncEngine,
    round_id: str,
    game_id: str,
) -> RoundCompletion:
    logger.info("round_completion_check round=%s game=%s", round_id, game_id)
    async with get_session(engine) as session:
        repo = Repository(session)
        member_count = await repo.count_members(round_id)
        vote_count = await repo.count_votes(round_id)

        if vote_count != member_count:
            logger.info(
                "round_incomplete round=%s votes=%d members=%d",
                round_id,
                vote_count,
                member_count,
            )
            return RoundCompletion.incomplete()

        round_row = await repo.get_round(round_id)
        if round_row is not None and round_row.game_id != game_id:
            raise RecordsError(f"Round '{round_id}' does not belong to game '{game_id}'")

        if not await repo.try_mark_round_completed(round_id):
            logger.info("round_already_completed round=%s", round_id)

        round_placements = await repo.create_round_placements(round_id)
        logger.info("round_placements round=%s count=%d", round_id, len(round_placements))

        remaining = await repo.count_open_rounds(game_id)
        if remaining > 0:
            logger.info("game_continues game=%s remaining_rounds=%d", game_id, remaining)
            return RoundCompletion.intermediate(round_placements)

        game_placements = await repo.create_game_placements(game_id)
        ended = await repo.try_mark_game_ended(game_id)
        logger.info(
            "game_finished game=%s placements=%d newly_ended=%s",
            game_id,
            len(game_placements),
            ended,
        )
        return RoundCompletion.final(game_placements)
