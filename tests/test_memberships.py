"""Tests for game and lobby membership cleanup."""

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.core.completion import check_round_completion
from krumnet.core.fulfillment import check_round_fulfillment
from krumnet.core.memberships import cleanup_game_membership, cleanup_lobby_membership
from krumnet.db.engine import get_session
from krumnet.db.repository import Repository
from krumnet.errors import NotFoundError
from krumnet.jobs.store import JobStore
from krumnet.models.jobs import CheckRoundFulfillment, CleanupGameMembership


async def _pending(jobs: JobStore, redis_client: FakeAsyncRedis) -> list:
    """Jobs waiting in the queue, oldest first."""
    ids = await redis_client.lrange(jobs.queue_key, 0, -1)
    return [(await jobs.lookup(job_id)).job for job_id in ids]


class TestCleanupGameMembership:
    async def test_member_without_entries(
        self, engine: AsyncEngine, jobs: JobStore, redis_client: FakeAsyncRedis, seed_game
    ):
        game = await seed_game(players=3, rounds=3)

        backfilled = await cleanup_game_membership(
            engine,
            jobs,
            game.user_ids[0],
            game.member_ids[0],
            game.lobby_id,
            game.game_id,
        )
        assert backfilled == game.round_ids
        async with get_session(engine) as session:
            entries = await Repository(session).get_entries_for_member(game.member_ids[0])
        assert len(entries) == 3
        assert all(entry.auto for entry in entries)
        assert [job.round_id for job in await _pending(jobs, redis_client)] == game.round_ids

    async def test_departure_of_last_voter_leaves_completion_to_producer(
        self, engine: AsyncEngine, jobs: JobStore, redis_client: FakeAsyncRedis, seed_game
    ):
        game = await seed_game(players=3, rounds=1)
        round_id = game.round_ids[0]
        async with get_session(engine) as session:
            repo = Repository(session)
            entries = [
                await repo.create_entry(round_id, member_id, "real")
                for member_id in game.member_ids
            ]
        await check_round_fulfillment(engine, round_id)
        async with get_session(engine) as session:
            repo = Repository(session)
            await repo.create_vote(round_id, game.member_ids[0], entries[1].id)
            await repo.create_vote(round_id, game.member_ids[1], entries[0].id)
            await repo.try_leave_game(game.member_ids[2])

        backfilled = await cleanup_game_membership(
            engine,
            jobs,
            game.user_ids[2],
            game.member_ids[2],
            game.lobby_id,
            game.game_id,
        )
        assert backfilled == []
        assert await _pending(jobs, redis_client) == []

        result = await check_round_completion(engine, round_id, game.game_id)
        assert result.outcome == "final"

    async def test_backfills_and_queues_fulfillment_checks(
        self, engine: AsyncEngine, jobs: JobStore, redis_client: FakeAsyncRedis, seed_game
    ):
        game = await seed_game(players=3, rounds=3)
        async with get_session(engine) as session:
            await Repository(session).create_entry(game.round_ids[0], game.member_ids[2], "hi")

        backfilled = await cleanup_game_membership(
            engine,
            jobs,
            game.user_ids[2],
            game.member_ids[2],
            game.lobby_id,
            game.game_id,
        )
        assert backfilled == game.round_ids[1:]
        assert await _pending(jobs, redis_client) == [
            CheckRoundFulfillment(round_id=round_id) for round_id in game.round_ids[1:]
        ]

    async def test_second_run_is_a_no_op(
        self, engine: AsyncEngine, jobs: JobStore, redis_client: FakeAsyncRedis, seed_game
    ):
        game = await seed_game(players=2, rounds=2)
        args = (game.user_ids[1], game.member_ids[1], game.lobby_id, game.game_id)
        await cleanup_game_membership(engine, jobs, *args)
        await redis_client.delete(jobs.queue_key)

        assert await cleanup_game_membership(engine, jobs, *args) == []
        assert await _pending(jobs, redis_client) == []
        async with get_session(engine) as session:
            entries = await Repository(session).get_entries_for_member(game.member_ids[1])
        assert len(entries) == 2

    async def test_backfill_unblocks_round(self, engine: AsyncEngine, jobs: JobStore, seed_game):
        game = await seed_game(players=3, rounds=2)
        async with get_session(engine) as session:
            repo = Repository(session)
            for member_id in game.member_ids[:2]:
                await repo.create_entry(game.round_ids[0], member_id, "real")
        assert await check_round_fulfillment(engine, game.round_ids[0]) == 1

        await cleanup_game_membership(
            engine,
            jobs,
            game.user_ids[2],
            game.member_ids[2],
            game.lobby_id,
            game.game_id,
        )
        queued = await jobs.dequeue()
        assert queued.job == CheckRoundFulfillment(round_id=game.round_ids[0])
        assert await check_round_fulfillment(engine, queued.job.round_id) == 0

    async def test_unknown_member(self, engine: AsyncEngine, jobs: JobStore, seed_game):
        game = await seed_game(players=2, rounds=1)
        with pytest.raises(NotFoundError, match="game member"):
            await cleanup_game_membership(
                engine, jobs, game.user_ids[0], "missing", game.lobby_id, game.game_id
            )


class TestCleanupLobbyMembership:
    async def _leave_lobby(self, engine: AsyncEngine, member_id: str) -> None:
        async with get_session(engine) as session:
            await Repository(session).leave_lobby(member_id)

    async def test_departure_leaves_games_and_cascades(
        self, engine: AsyncEngine, jobs: JobStore, redis_client: FakeAsyncRedis, seed_game
    ):
        game = await seed_game(players=3)
        await self._leave_lobby(engine, game.lobby_member_ids[1])

        status = await cleanup_lobby_membership(
            engine, jobs, game.lobby_member_ids[1], game.lobby_id
        )
        assert status == "done"
        assert await _pending(jobs, redis_client) == [
            CleanupGameMembership(
                user_id=game.user_ids[1],
                member_id=game.member_ids[1],
                lobby_id=game.lobby_id,
                game_id=game.game_id,
            )
        ]
        async with get_session(engine) as session:
            repo = Repository(session)
            member = await repo.get_game_member(game.member_ids[1])
            lobby = await repo.get_lobby(game.lobby_id)
        assert member.left_at is not None
        assert lobby.closed_at is None

    async def test_last_member_closes_lobby(
        self, engine: AsyncEngine, jobs: JobStore, seed_game
    ):
        game = await seed_game(players=1)
        await self._leave_lobby(engine, game.lobby_member_ids[0])

        status = await cleanup_lobby_membership(
            engine, jobs, game.lobby_member_ids[0], game.lobby_id
        )
        assert status == "closed"
        async with get_session(engine) as session:
            lobby = await Repository(session).get_lobby(game.lobby_id)
        assert lobby.closed_at is not None

    async def test_closing_twice_keeps_first_timestamp(
        self, engine: AsyncEngine, jobs: JobStore, seed_game
    ):
        game = await seed_game(players=1)
        await self._leave_lobby(engine, game.lobby_member_ids[0])
        await cleanup_lobby_membership(engine, jobs, game.lobby_member_ids[0], game.lobby_id)
        async with get_session(engine) as session:
            closed_at = (await Repository(session).get_lobby(game.lobby_id)).closed_at

        status = await cleanup_lobby_membership(
            engine, jobs, game.lobby_member_ids[0], game.lobby_id
        )
        assert status == "closed"
        async with get_session(engine) as session:
            lobby = await Repository(session).get_lobby(game.lobby_id)
        assert lobby.closed_at == closed_at

    async def test_ended_games_not_cascaded(
        self, engine: AsyncEngine, jobs: JobStore, redis_client: FakeAsyncRedis, seed_game
    ):
        game = await seed_game(players=2)
        async with get_session(engine) as session:
            await Repository(session).try_mark_game_ended(game.game_id)
        await self._leave_lobby(engine, game.lobby_member_ids[1])

        assert (
            await cleanup_lobby_membership(engine, jobs, game.lobby_member_ids[1], game.lobby_id)
            == "done"
        )
        assert await _pending(jobs, redis_client) == []

    async def test_unknown_lobby(self, engine: AsyncEngine, jobs: JobStore, seed_game):
        game = await seed_game(players=1)
        with pytest.raises(NotFoundError, match="lobby"):
            await cleanup_lobby_membership(engine, jobs, game.lobby_member_ids[0], "missing")
