"""SQLAlchemy ORM models for the krumnet record store.

Tables: users, lobbies, lobby_memberships, games, game_memberships,
game_rounds, game_round_entries, game_round_entry_votes and the two
placement result tables. Membership rows are never deleted; leaving sets
``left_at``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


class LobbyRow(Base):
    __tablename__ = "lobbies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    creator_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    members: Mapped[list[LobbyMemberRow]] = relationship(back_populates="lobby")


class LobbyMemberRow(Base):
    __tablename__ = "lobby_memberships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    invited_by: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    left_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    lobby: Mapped[LobbyRow] = relationship(back_populates="members")

    __table_args__ = (Index("ix_lobby_memberships_lobby_id", "lobby_id"),)


class GameRow(Base):
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    rounds: Mapped[list[RoundRow]] = relationship(
        back_populates="game", order_by="RoundRow.position"
    )

    __table_args__ = (Index("ix_games_lobby_id", "lobby_id"),)


class GameMemberRow(Base):
    __tablename__ = "game_memberships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    lobby_member_id: Mapped[str] = mapped_column(
        ForeignKey("lobby_memberships.id"), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    left_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_game_memberships_game_id", "game_id"),
        Index("ix_game_memberships_lobby_member_id", "lobby_member_id"),
        UniqueConstraint("game_id", "user_id", name="uq_game_member_user"),
    )


class RoundRow(Base):
    """One prompt/entry/vote cycle. ``completed_at`` implies ``fulfilled_at``."""

    __tablename__ = "game_rounds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    game: Mapped[GameRow] = relationship(back_populates="rounds")

    __table_args__ = (
        UniqueConstraint("game_id", "position", name="uq_game_round_position"),
    )


class EntryRow(Base):
    __tablename__ = "game_round_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    round_id: Mapped[str] = mapped_column(ForeignKey("game_rounds.id"), nullable=False)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    member_id: Mapped[str] = mapped_column(ForeignKey("game_memberships.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    entry: Mapped[str] = mapped_column(Text, default="")
    auto: Mapped[bool] = mapped_column(Boolean, default=False)  # backfilled placeholder
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        UniqueConstraint("round_id", "member_id", name="uq_single_round_entry"),
        Index("ix_game_round_entries_member_id", "member_id"),
    )


class VoteRow(Base):
    __tablename__ = "game_round_entry_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    round_id: Mapped[str] = mapped_column(ForeignKey("game_rounds.id"), nullable=False)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    member_id: Mapped[str] = mapped_column(ForeignKey("game_memberships.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    entry_id: Mapped[str] = mapped_column(ForeignKey("game_round_entries.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        UniqueConstraint("round_id", "member_id", name="uq_single_round_vote"),
        Index("ix_game_round_entry_votes_entry_id", "entry_id"),
    )


class RoundPlacementRow(Base):
    """Immutable round result, one per (round, member)."""

    __tablename__ = "game_member_round_placement_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    round_id: Mapped[str] = mapped_column(ForeignKey("game_rounds.id"), nullable=False)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    member_id: Mapped[str] = mapped_column(ForeignKey("game_memberships.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    entry_id: Mapped[str] = mapped_column(ForeignKey("game_round_entries.id"), nullable=False)
    place: Mapped[int] = mapped_column(Integer, nullable=False)
    vote_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        UniqueConstraint("member_id", "round_id", name="single_member_round_placement"),
        Index("ix_round_placements_round_id", "round_id"),
    )


class GamePlacementRow(Base):
    """Immutable game result, one per (game, member)."""

    __tablename__ = "game_member_placement_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    lobby_id: Mapped[str] = mapped_column(ForeignKey("lobbies.id"), nullable=False)
    member_id: Mapped[str] = mapped_column(ForeignKey("game_memberships.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    place: Mapped[int] = mapped_column(Integer, nullable=False)
    vote_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        UniqueConstraint("member_id", "game_id", name="single_member_game_placement"),
        Index("ix_game_placements_game_id", "game_id"),
    )
