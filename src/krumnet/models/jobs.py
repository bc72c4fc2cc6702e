"""Job envelope models: the closed set of background jobs and their results.

Every job carries an optional ``result`` that stays unset until a worker has
processed it. Results are either ``{"ok": value}`` or ``{"err": message}``.

On the wire a job is adjacently tagged::

    {"t": "check_round_fulfillment", "c": {"round_id": "r-1", "result": {"ok": 0}}}
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, ClassVar, Generic, Literal, Self, TypeVar

from pydantic import BaseModel, Field, field_serializer, field_validator

T = TypeVar("T")


class Ok(BaseModel, Generic[T]):
    """Successful job result."""

    ok: T


class Err(BaseModel):
    """Failed job result. Failed jobs are never retried automatically."""

    err: str


class RoundCompletion(BaseModel):
    """Outcome of a round completion check.

    ``intermediate`` carries the round's placement ids, ``final`` carries the
    game's placement ids.
    """

    outcome: Literal["incomplete", "intermediate", "final"]
    placement_ids: list[str] = Field(default_factory=list)

    @classmethod
    def incomplete(cls) -> RoundCompletion:
        return cls(outcome="incomplete")

    @classmethod
    def intermediate(cls, placement_ids: list[str]) -> RoundCompletion:
        return cls(outcome="intermediate", placement_ids=placement_ids)

    @classmethod
    def final(cls, placement_ids: list[str]) -> RoundCompletion:
        return cls(outcome="final", placement_ids=placement_ids)


class JobBase(BaseModel):
    """Common behaviour for job variants. ``kind`` is the wire tag."""

    kind: ClassVar[str]

    def resolve(self, value: Any) -> Self:
        """Return a copy of this job carrying a successful result."""
        return self._with_result({"ok": value})

    def fail(self, message: str) -> Self:
        """Return a copy of this job carrying an error result."""
        return self._with_result({"err": message})

    def _with_result(self, result: dict[str, Any]) -> Self:
        # Re-validate so the result lands in the variant's typed Ok[...] model.
        payload = self.model_dump(exclude={"result"})
        payload["result"] = result
        return self.model_validate(payload)

    @property
    def processed(self) -> bool:
        return getattr(self, "result", None) is not None


class CreateLobby(JobBase):
    kind: ClassVar[str] = "create_lobby"

    creator: str
    result: Ok[str] | Err | None = None


class CreateGame(JobBase):
    kind: ClassVar[str] = "create_game"

    creator: str
    lobby_id: str
    result: Ok[str] | Err | None = None


class CheckRoundFulfillment(JobBase):
    """Result is the number of entries still missing; 0 means fulfilled."""

    kind: ClassVar[str] = "check_round_fulfillment"

    round_id: str
    result: Ok[int] | Err | None = None


class CheckRoundCompletion(JobBase):
    kind: ClassVar[str] = "check_round_completion"

    round_id: str
    game_id: str
    result: Ok[RoundCompletion] | Err | None = None


class CleanupLobbyMembership(JobBase):
    kind: ClassVar[str] = "cleanup_lobby_membership"

    member_id: str
    lobby_id: str
    result: Ok[str] | Err | None = None


class CleanupGameMembership(JobBase):
    """Result is the list of round ids that received a placeholder entry."""

    kind: ClassVar[str] = "cleanup_game_membership"

    user_id: str
    member_id: str
    lobby_id: str
    game_id: str
    result: Ok[list[str]] | Err | None = None


Job = (
    CreateLobby
    | CreateGame
    | CheckRoundFulfillment
    | CheckRoundCompletion
    | CleanupLobbyMembership
    | CleanupGameMembership
)

JOB_KINDS: dict[str, type[JobBase]] = {
    cls.kind: cls
    for cls in (
        CreateLobby,
        CreateGame,
        CheckRoundFulfillment,
        CheckRoundCompletion,
        CleanupLobbyMembership,
        CleanupGameMembership,
    )
}


def encode_job(job: JobBase) -> dict[str, Any]:
    """Adjacently-tagged wire form. An unset result is omitted."""
    return {"t": job.kind, "c": job.model_dump(mode="json", exclude_none=True)}


def decode_job(data: dict[str, Any]) -> JobBase:
    """Inverse of :func:`encode_job`. Raises ValueError on an unknown tag."""
    tag = data.get("t")
    cls = JOB_KINDS.get(tag)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"unknown job type '{tag}'")
    return cls.model_validate(data.get("c") or {})


class QueuedJob(BaseModel):
    """A job plus the id it was queued under. Never deleted once queued."""

    id: str
    job: Job

    @field_validator("job", mode="before")
    @classmethod
    def _decode_tagged(cls, value: Any) -> Any:
        if isinstance(value, dict) and "t" in value:
            return decode_job(value)
        return value

    @field_serializer("job")
    def _encode_tagged(self, job: JobBase) -> dict[str, Any]:
        return encode_job(job)


class DequeuedJob(BaseModel):
    """Marker recorded when a worker pops a job id off the queue."""

    id: str
    dequeued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
