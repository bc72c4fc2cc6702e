"""Tests for the round fulfillment check."""

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.core.fulfillment import check_round_fulfillment
from krumnet.db.engine import get_session
from krumnet.db.repository import Repository
from krumnet.errors import NotFoundError


async def _submit(engine: AsyncEngine, round_id: str, member_ids: list[str]) -> None:
    async with get_session(engine) as session:
        repo = Repository(session)
        for member_id in member_ids:
            await repo.create_entry(round_id, member_id, f"entry from {member_id}")


async def _rounds(engine: AsyncEngine, game_id: str) -> list:
    async with get_session(engine) as session:
        return await Repository(session).get_rounds(game_id)


class TestCheckRoundFulfillment:
    async def test_no_entries(self, engine: AsyncEngine, seed_game):
        game = await seed_game(players=3)
        assert await check_round_fulfillment(engine, game.round_ids[0]) == 3

    async def test_missing_entries_reported(self, engine: AsyncEngine, seed_game):
        game = await seed_game(players=3)
        await _submit(engine, game.round_ids[0], game.member_ids[:1])

        assert await check_round_fulfillment(engine, game.round_ids[0]) == 2
        rounds = await _rounds(engine, game.game_id)
        assert rounds[0].fulfilled_at is None
        assert rounds[1].started_at is None

    async def test_fulfilled_round_starts_next(self, engine: AsyncEngine, seed_game):
        game = await seed_game(players=3)
        await _submit(engine, game.round_ids[0], game.member_ids)

        assert await check_round_fulfillment(engine, game.round_ids[0]) == 0
        rounds = await _rounds(engine, game.game_id)
        assert rounds[0].fulfilled_at is not None
        assert rounds[1].started_at is not None
        assert rounds[2].started_at is None

    async def test_repeat_check_keeps_first_timestamps(self, engine: AsyncEngine, seed_game):
        game = await seed_game(players=2)
        await _submit(engine, game.round_ids[0], game.member_ids)
        await check_round_fulfillment(engine, game.round_ids[0])
        before = await _rounds(engine, game.game_id)

        assert await check_round_fulfillment(engine, game.round_ids[0]) == 0
        after = await _rounds(engine, game.game_id)
        assert after[0].fulfilled_at == before[0].fulfilled_at
        assert after[1].started_at == before[1].started_at

    async def test_last_round_has_no_successor(self, engine: AsyncEngine, seed_game):
        game = await seed_game(players=2, rounds=1)
        await _submit(engine, game.round_ids[0], game.member_ids)

        assert await check_round_fulfillment(engine, game.round_ids[0]) == 0
        rounds = await _rounds(engine, game.game_id)
        assert rounds[0].fulfilled_at is not None

    async def test_departed_member_not_counted(self, engine: AsyncEngine, seed_game):
        game = await seed_game(players=3)
        await _submit(engine, game.round_ids[0], game.member_ids[:2])
        async with get_session(engine) as session:
            await Repository(session).try_leave_game(game.member_ids[2])

        assert await check_round_fulfillment(engine, game.round_ids[0]) == 0

    async def test_later_round_does_not_restart_earlier(self, engine: AsyncEngine, seed_game):
        game = await seed_game(players=2)
        await _submit(engine, game.round_ids[0], game.member_ids)
        await check_round_fulfillment(engine, game.round_ids[0])
        await _submit(engine, game.round_ids[1], game.member_ids)

        assert await check_round_fulfillment(engine, game.round_ids[1]) == 0
        rounds = await _rounds(engine, game.game_id)
        assert all(r.started_at is not None for r in rounds)
        assert rounds[2].fulfilled_at is None

    async def test_unknown_round(self, engine: AsyncEngine):
        with pytest.raises(NotFoundError, match="round"):
            await check_round_fulfillment(engine, "missing")
