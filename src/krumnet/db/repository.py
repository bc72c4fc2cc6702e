"""Repository pattern for record store access.

Wraps SQLAlchemy async sessions. Every "mark X as done" operation is a single
conditional UPDATE that only touches rows where X is still unset and reports
whether it changed anything, so jobs delivered more than once (or triggered
concurrently) converge on the same state. Placements and backfilled entries
rely on unique constraints with ``ON CONFLICT DO NOTHING`` for the same reason.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import exists, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from krumnet.core.scoring import assign_places
from krumnet.db.models import (
    EntryRow,
    GameMemberRow,
    GamePlacementRow,
    GameRow,
    LobbyMemberRow,
    LobbyRow,
    RoundPlacementRow,
    RoundRow,
    UserRow,
    VoteRow,
)
from krumnet.errors import NotFoundError, RecordsError


def _now() -> datetime:
    return datetime.now(UTC)


def _uuid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class GameMembership:
    """A game membership held through a particular lobby membership."""

    game_id: str
    lobby_id: str
    game_member_id: str
    user_id: str


class Repository:
    """Async repository for all record store operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _update(self, stmt: object) -> int:
        """Run a conditional UPDATE and return the number of rows it changed."""
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)  # type: ignore[attr-defined]
        )
        return result.rowcount

    # --- Users ---

    async def create_user(self, name: str, email: str) -> UserRow:
        row = UserRow(name=name, email=email)
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_user(self, user_id: str) -> UserRow | None:
        return await self.session.get(UserRow, user_id)

    # --- Lobbies ---

    async def create_lobby(
        self,
        name: str,
        creator_id: str,
        job_id: str | None = None,
    ) -> LobbyRow:
        """Create a lobby and make its creator the first member."""
        row = LobbyRow(name=name, creator_id=creator_id, job_id=job_id)
        self.session.add(row)
        await self.session.flush()
        await self.add_lobby_member(row.id, creator_id)
        return row

    async def get_lobby(self, lobby_id: str) -> LobbyRow | None:
        return await self.session.get(LobbyRow, lobby_id)

    async def add_lobby_member(
        self,
        lobby_id: str,
        user_id: str,
        invited_by: str | None = None,
    ) -> LobbyMemberRow:
        row = LobbyMemberRow(lobby_id=lobby_id, user_id=user_id, invited_by=invited_by)
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_lobby_member(self, member_id: str) -> LobbyMemberRow | None:
        return await self.session.get(LobbyMemberRow, member_id)

    async def get_active_lobby_member(self, lobby_id: str, user_id: str) -> LobbyMemberRow | None:
        """Return the user's current (not yet left) membership in a lobby."""
        stmt = select(LobbyMemberRow).where(
            LobbyMemberRow.lobby_id == lobby_id,
            LobbyMemberRow.user_id == user_id,
            LobbyMemberRow.left_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def leave_lobby(self, member_id: str) -> bool:
        stmt = (
            update(LobbyMemberRow)
            .where(LobbyMemberRow.id == member_id, LobbyMemberRow.left_at.is_(None))
            .values(left_at=_now())
        )
        return await self._update(stmt) == 1

    async def count_active_lobby_members(self, lobby_id: str) -> int:
        if await self.get_lobby(lobby_id) is None:
            raise NotFoundError("lobby", lobby_id)
        stmt = select(func.count(LobbyMemberRow.id)).where(
            LobbyMemberRow.lobby_id == lobby_id,
            LobbyMemberRow.left_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def try_close_lobby(self, lobby_id: str) -> bool:
        stmt = (
            update(LobbyRow)
            .where(LobbyRow.id == lobby_id, LobbyRow.closed_at.is_(None))
            .values(closed_at=_now())
        )
        return await self._update(stmt) == 1

    # --- Games ---

    async def create_game(
        self,
        lobby_id: str,
        name: str,
        prompts: list[str],
        job_id: str | None = None,
    ) -> GameRow:
        """Create a game with one round per prompt.

        Round 0 starts immediately. Every active lobby member becomes a game
        member.
        """
        if not prompts:
            raise RecordsError("A game needs at least one round")
        game = GameRow(lobby_id=lobby_id, name=name, job_id=job_id)
        self.session.add(game)
        await self.session.flush()

        now = _now()
        for position, prompt in enumerate(prompts):
            self.session.add(
                RoundRow(
                    game_id=game.id,
                    lobby_id=lobby_id,
                    position=position,
                    prompt=prompt,
                    started_at=now if position == 0 else None,
                )
            )

        members = await self.session.execute(
            select(LobbyMemberRow).where(
                LobbyMemberRow.lobby_id == lobby_id,
                LobbyMemberRow.left_at.is_(None),
            )
        )
        for member in members.scalars().all():
            self.session.add(
                GameMemberRow(
                    game_id=game.id,
                    lobby_id=lobby_id,
                    user_id=member.user_id,
                    lobby_member_id=member.id,
                )
            )
        await self.session.flush()
        return game

    async def get_game(self, game_id: str) -> GameRow | None:
        return await self.session.get(GameRow, game_id)

    async def get_game_member(self, member_id: str) -> GameMemberRow | None:
        return await self.session.get(GameMemberRow, member_id)

    async def get_game_member_for_user(self, game_id: str, user_id: str) -> GameMemberRow | None:
        stmt = select(GameMemberRow).where(
            GameMemberRow.game_id == game_id,
            GameMemberRow.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_game_members(self, game_id: str) -> list[GameMemberRow]:
        stmt = (
            select(GameMemberRow)
            .where(GameMemberRow.game_id == game_id)
            .order_by(GameMemberRow.joined_at, GameMemberRow.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def try_leave_game(self, game_member_id: str) -> bool:
        stmt = (
            update(GameMemberRow)
            .where(GameMemberRow.id == game_member_id, GameMemberRow.left_at.is_(None))
            .values(left_at=_now())
        )
        return await self._update(stmt) == 1

    async def find_game_memberships_for_lobby_member(self, member_id: str) -> list[GameMembership]:
        """Game memberships held through a lobby membership, in games still running."""
        if await self.get_lobby_member(member_id) is None:
            raise NotFoundError("lobby member", member_id)
        stmt = (
            select(
                GameMemberRow.game_id,
                GameMemberRow.lobby_id,
                GameMemberRow.id,
                GameMemberRow.user_id,
            )
            .join(GameRow, GameRow.id == GameMemberRow.game_id)
            .where(
                GameMemberRow.lobby_member_id == member_id,
                GameRow.ended_at.is_(None),
            )
            .order_by(GameRow.created_at, GameRow.id)
        )
        result = await self.session.execute(stmt)
        return [
            GameMembership(
                game_id=game_id,
                lobby_id=lobby_id,
                game_member_id=game_member_id,
                user_id=user_id,
            )
            for game_id, lobby_id, game_member_id, user_id in result.all()
        ]

    async def try_mark_game_ended(self, game_id: str) -> bool:
        stmt = (
            update(GameRow)
            .where(GameRow.id == game_id, GameRow.ended_at.is_(None))
            .values(ended_at=_now())
        )
        return await self._update(stmt) == 1

    # --- Rounds ---

    async def get_round(self, round_id: str) -> RoundRow | None:
        return await self.session.get(RoundRow, round_id)

    async def _require_round(self, round_id: str) -> RoundRow:
        row = await self.get_round(round_id)
        if row is None:
            raise NotFoundError("round", round_id)
        return row

    async def get_rounds(self, game_id: str) -> list[RoundRow]:
        stmt = select(RoundRow).where(RoundRow.game_id == game_id).order_by(RoundRow.position)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_members(self, round_id: str) -> int:
        """Active (not departed) members of the round's game."""
        round_row = await self._require_round(round_id)
        stmt = select(func.count(GameMemberRow.id)).where(
            GameMemberRow.game_id == round_row.game_id,
            GameMemberRow.left_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_entries(self, round_id: str) -> int:
        """Entries for the round submitted by (or on behalf of) active members."""
        await self._require_round(round_id)
        stmt = (
            select(func.count(EntryRow.id))
            .join(GameMemberRow, GameMemberRow.id == EntryRow.member_id)
            .where(EntryRow.round_id == round_id, GameMemberRow.left_at.is_(None))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_votes(self, round_id: str) -> int:
        """Votes for the round cast by active members."""
        await self._require_round(round_id)
        stmt = (
            select(func.count(VoteRow.id))
            .join(GameMemberRow, GameMemberRow.id == VoteRow.member_id)
            .where(VoteRow.round_id == round_id, GameMemberRow.left_at.is_(None))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def try_mark_round_fulfilled(self, round_id: str) -> tuple[int, str] | None:
        """Set ``fulfilled_at`` if unset. Returns (position, game_id) only when it changed."""
        stmt = (
            update(RoundRow)
            .where(RoundRow.id == round_id, RoundRow.fulfilled_at.is_(None))
            .values(fulfilled_at=_now())
        )
        if await self._update(stmt) == 0:
            return None
        result = await self.session.execute(
            select(RoundRow.position, RoundRow.game_id).where(RoundRow.id == round_id)
        )
        position, game_id = result.one()
        return position, game_id

    async def try_start_round(self, game_id: str, position: int) -> bool:
        """Set ``started_at`` on the round at *position* if unset.

        Returns False when already started or when there is no such round
        (the last round has no successor).
        """
        stmt = (
            update(RoundRow)
            .where(
                RoundRow.game_id == game_id,
                RoundRow.position == position,
                RoundRow.started_at.is_(None),
            )
            .values(started_at=_now())
        )
        return await self._update(stmt) == 1

    async def try_mark_round_completed(self, round_id: str) -> bool:
        """Set ``completed_at`` if unset. Refuses rounds that are not fulfilled."""
        stmt = (
            update(RoundRow)
            .where(
                RoundRow.id == round_id,
                RoundRow.completed_at.is_(None),
                RoundRow.fulfilled_at.is_not(None),
            )
            .values(completed_at=_now())
        )
        if await self._update(stmt) == 1:
            return True

        result = await self.session.execute(
            select(RoundRow.fulfilled_at).where(RoundRow.id == round_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("round", round_id)
        if row.fulfilled_at is None:
            raise RecordsError(f"Round '{round_id}' has not been fulfilled")
        return False

    async def count_open_rounds(self, game_id: str) -> int:
        """Rounds of the game that have not been completed yet."""
        if await self.get_game(game_id) is None:
            raise NotFoundError("game", game_id)
        stmt = select(func.count(RoundRow.id)).where(
            RoundRow.game_id == game_id,
            RoundRow.completed_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    # --- Entries / Votes ---

    async def create_entry(self, round_id: str, member_id: str, content: str) -> EntryRow:
        """Submit a member's entry. One entry per (round, member)."""
        round_row = await self._require_round(round_id)
        member = await self.get_game_member(member_id)
        if member is None:
            raise NotFoundError("game member", member_id)
        if member.game_id != round_row.game_id:
            raise RecordsError(f"Member '{member_id}' does not belong to round '{round_id}'")
        existing = await self.session.execute(
            select(EntryRow.id).where(EntryRow.round_id == round_id, EntryRow.member_id == member_id)
        )
        if existing.first() is not None:
            raise RecordsError(f"Member '{member_id}' already has an entry for round '{round_id}'")

        row = EntryRow(
            round_id=round_id,
            game_id=round_row.game_id,
            lobby_id=round_row.lobby_id,
            member_id=member_id,
            user_id=member.user_id,
            entry=content,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_entry(self, entry_id: str) -> EntryRow | None:
        return await self.session.get(EntryRow, entry_id)

    async def get_entries_for_member(self, member_id: str) -> list[EntryRow]:
        stmt = select(EntryRow).where(EntryRow.member_id == member_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_vote(self, round_id: str, member_id: str, entry_id: str) -> VoteRow:
        """Cast a member's vote. One vote per (round, member), never for their own entry."""
        round_row = await self._require_round(round_id)
        member = await self.get_game_member(member_id)
        if member is None:
            raise NotFoundError("game member", member_id)
        entry = await self.get_entry(entry_id)
        if entry is None or entry.round_id != round_id:
            raise NotFoundError("entry", entry_id)
        if entry.member_id == member_id:
            raise RecordsError(f"Member '{member_id}' cannot vote for their own entry")
        existing = await self.session.execute(
            select(VoteRow.id).where(VoteRow.round_id == round_id, VoteRow.member_id == member_id)
        )
        if existing.first() is not None:
            raise RecordsError(f"Member '{member_id}' already voted in round '{round_id}'")

        row = VoteRow(
            round_id=round_id,
            game_id=round_row.game_id,
            lobby_id=round_row.lobby_id,
            member_id=member_id,
            user_id=member.user_id,
            entry_id=entry_id,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def backfill_missing_entries(
        self,
        user_id: str,
        member_id: str,
        game_id: str,
    ) -> list[str]:
        """Insert an empty placeholder entry for every round the member skipped.

        Returns the ids of rounds that actually received a new entry, in
        round order. Re-running after a successful backfill returns [].
        """
        missing = select(RoundRow.id, RoundRow.lobby_id).where(
            RoundRow.game_id == game_id,
            ~exists().where(
                EntryRow.round_id == RoundRow.id,
                EntryRow.member_id == member_id,
            ),
        ).order_by(RoundRow.position)
        rounds = (await self.session.execute(missing)).all()
        if not rounds:
            return []

        member = await self.get_game_member(member_id)
        if member is None or member.game_id != game_id or member.user_id != user_id:
            raise NotFoundError("game member", member_id)

        backfilled: list[str] = []
        for round_id, lobby_id in rounds:
            stmt = (
                sqlite_insert(EntryRow)
                .values(
                    id=_uuid(),
                    round_id=round_id,
                    game_id=game_id,
                    lobby_id=lobby_id,
                    member_id=member_id,
                    user_id=user_id,
                    entry="",
                    auto=True,
                    created_at=_now(),
                )
                .on_conflict_do_nothing(index_elements=["round_id", "member_id"])
            )
            result = await self.session.execute(stmt)
            if result.rowcount == 1:
                backfilled.append(round_id)
        return list(dict.fromkeys(backfilled))

    # --- Placements ---

    async def create_round_placements(self, round_id: str) -> list[str]:
        """Rank the round's entries by votes received and persist one placement each.

        Returns the round's placement ids ordered by place. Safe to re-run:
        existing placements are kept and returned.
        """
        round_row = await self._require_round(round_id)
        votes = (
            select(VoteRow.entry_id, func.count(VoteRow.id).label("votes"))
            .where(VoteRow.round_id == round_id)
            .group_by(VoteRow.entry_id)
            .subquery()
        )
        vote_count = func.coalesce(votes.c.votes, 0)
        stmt = (
            select(EntryRow.id, EntryRow.member_id, EntryRow.user_id, vote_count)
            .outerjoin(votes, votes.c.entry_id == EntryRow.id)
            .where(EntryRow.round_id == round_id)
            .order_by(vote_count.desc(), EntryRow.created_at, EntryRow.id)
        )
        ranked = (await self.session.execute(stmt)).all()

        if ranked:
            places = assign_places([count for *_, count in ranked])
            now = _now()
            rows = [
                {
                    "id": _uuid(),
                    "round_id": round_id,
                    "game_id": round_row.game_id,
                    "lobby_id": round_row.lobby_id,
                    "member_id": member_id,
                    "user_id": user_id,
                    "entry_id": entry_id,
                    "place": place,
                    "vote_count": count,
                    "created_at": now,
                }
                for (entry_id, member_id, user_id, count), place in zip(ranked, places, strict=True)
            ]
            await self.session.execute(
                sqlite_insert(RoundPlacementRow)
                .values(rows)
                .on_conflict_do_nothing(index_elements=["member_id", "round_id"])
            )

        return [placement.id for placement in await self.get_round_placements(round_id)]

    async def get_round_placements(self, round_id: str) -> list[RoundPlacementRow]:
        stmt = (
            select(RoundPlacementRow)
            .where(RoundPlacementRow.round_id == round_id)
            .order_by(RoundPlacementRow.place, RoundPlacementRow.created_at, RoundPlacementRow.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_game_placements(self, game_id: str) -> list[str]:
        """Rank members by total votes across the game's round placements.

        Returns the game's placement ids ordered by place. Safe to re-run.
        """
        game = await self.get_game(game_id)
        if game is None:
            raise NotFoundError("game", game_id)
        total = func.sum(RoundPlacementRow.vote_count)
        stmt = (
            select(RoundPlacementRow.member_id, RoundPlacementRow.user_id, total)
            .join(GameMemberRow, GameMemberRow.id == RoundPlacementRow.member_id)
            .where(RoundPlacementRow.game_id == game_id)
            .group_by(RoundPlacementRow.member_id, RoundPlacementRow.user_id)
            .order_by(total.desc(), func.min(GameMemberRow.joined_at), RoundPlacementRow.member_id)
        )
        ranked = (await self.session.execute(stmt)).all()

        if ranked:
            places = assign_places([count for *_, count in ranked])
            now = _now()
            rows = [
                {
                    "id": _uuid(),
                    "game_id": game_id,
                    "lobby_id": game.lobby_id,
                    "member_id": member_id,
                    "user_id": user_id,
                    "place": place,
                    "vote_count": count,
                    "created_at": now,
                }
                for (member_id, user_id, count), place in zip(ranked, places, strict=True)
            ]
            await self.session.execute(
                sqlite_insert(GamePlacementRow)
                .values(rows)
                .on_conflict_do_nothing(index_elements=["member_id", "game_id"])
            )

        return [placement.id for placement in await self.get_game_placements(game_id)]

    async def get_game_placements(self, game_id: str) -> list[GamePlacementRow]:
        stmt = (
            select(GamePlacementRow)
            .where(GamePlacementRow.game_id == game_id)
            .order_by(GamePlacementRow.place, GamePlacementRow.created_at, GamePlacementRow.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
