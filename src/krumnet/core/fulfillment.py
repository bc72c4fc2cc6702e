"""Round fulfillment: has every active member submitted an entry?

When the last entry arrives the round is marked fulfilled and the next round
is started. Both writes are conditional, so duplicate or concurrent checks
for the same round leave the first timestamps in place.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.db.engine import get_session
from krumnet.db.repository import Repository

logger = logging.getLogger(__name__)


async def check_round_fulfillment(engine: AsyncEngine, round_id: str) -> int:
    """Return the number of entries the round is still missing (0 = fulfilled)."""
    logger.info("round_fulfillment_check round=%s", round_id)
    async with get_session(engine) as session:
        repo = Repository(session)
        entry_count = await repo.count_entries(round_id)
        member_count = await repo.count_members(round_id)
        logger.debug(
            "round_fulfillment_counts round=%s members=%d entries=%d",
            round_id,
            member_count,
            entry_count,
        )

        diff = member_count - entry_count
        if diff != 0:
            logger.debug("round_fulfillment_pending round=%s remaining=%d", round_id, diff)
            return diff

        marked = await repo.try_mark_round_fulfilled(round_id)
        if marked is None:
            logger.info("round_already_fulfilled round=%s", round_id)
            return 0

        position, game_id = marked
        started = await repo.try_start_round(game_id, position + 1)
        logger.info(
            "round_fulfilled round=%s game=%s position=%d next_started=%s",
            round_id,
            game_id,
            position,
            started,
        )
        return 0
