"""Shared test fixtures."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.config import Settings
from krumnet.db.engine import create_engine, create_tables, get_session
from krumnet.db.repository import Repository
from krumnet.jobs.store import JobStore


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        krumnet_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        krumnet_queue_delay=1,
        krumnet_max_consecutive_failures=2,
    )


@pytest.fixture
async def engine() -> AsyncEngine:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def redis_client() -> FakeAsyncRedis:
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def jobs(redis_client: FakeAsyncRedis) -> JobStore:
    """Job store on an isolated fake Redis server with a one-second pop timeout."""
    return JobStore(redis_client, queue_delay=1)


@dataclass
class SeededGame:
    lobby_id: str
    game_id: str
    user_ids: list[str]
    lobby_member_ids: list[str]
    member_ids: list[str]  # game member ids, same order as user_ids
    round_ids: list[str]


@pytest.fixture
def seed_game(engine: AsyncEngine) -> Callable[..., Awaitable[SeededGame]]:
    """Factory fixture: build a lobby of *players* users and start a game in it."""

    async def _seed(players: int = 3, rounds: int = 3) -> SeededGame:
        async with get_session(engine) as session:
            repo = Repository(session)
            users = [
                await repo.create_user(f"Player {i}", f"player{i}@example.com")
                for i in range(players)
            ]
            lobby = await repo.create_lobby("Test Lobby", users[0].id)
            lobby_member_ids = [(await repo.get_active_lobby_member(lobby.id, users[0].id)).id]
            for user in users[1:]:
                member = await repo.add_lobby_member(lobby.id, user.id, invited_by=users[0].id)
                lobby_member_ids.append(member.id)

            game = await repo.create_game(
                lobby.id,
                "Test Game",
                [f"Prompt {i}" for i in range(rounds)],
            )
            member_ids = [
                (await repo.get_game_member_for_user(game.id, user.id)).id for user in users
            ]
            round_ids = [row.id for row in await repo.get_rounds(game.id)]

        return SeededGame(
            lobby_id=lobby.id,
            game_id=game.id,
            user_ids=[user.id for user in users],
            lobby_member_ids=lobby_member_ids,
            member_ids=member_ids,
            round_ids=round_ids,
        )

    return _seed
