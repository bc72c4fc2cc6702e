"""Worker dispatch loop.

Pulls one job at a time from the job store, routes it to its handler and
writes the job back with its result attached. Any number of workers may share
one store; the blocking pop hands each job id to exactly one of them.

Handler failures are recorded on the job and never retried. Store failures
are retried until ``max_consecutive_failures`` is exceeded, after which the
worker gives up with ``WorkerFatalError``.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from krumnet.config import Settings
from krumnet.core.completion import check_round_completion
from krumnet.core.fulfillment import check_round_fulfillment
from krumnet.core.lobbies import create_game, create_lobby
from krumnet.core.memberships import cleanup_game_membership, cleanup_lobby_membership
from krumnet.errors import RecordsError, StoreError, WorkerFatalError
from krumnet.jobs.store import JobStore
from krumnet.models.jobs import (
    CheckRoundCompletion,
    CheckRoundFulfillment,
    CleanupGameMembership,
    CleanupLobbyMembership,
    CreateGame,
    CreateLobby,
    JobBase,
    QueuedJob,
)

logger = logging.getLogger(__name__)


class Worker:
    """Sequential job consumer bound to one record store and one job store."""

    def __init__(
        self,
        engine: AsyncEngine,
        jobs: JobStore,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or Settings()
        self.engine = engine
        self.jobs = jobs
        self.max_consecutive_failures = settings.krumnet_max_consecutive_failures
        self.rounds_per_game = settings.krumnet_rounds_per_game
        self.consecutive_failures = 0

    async def handle(self, queued: QueuedJob) -> JobBase:
        """Run the handler for *queued* and return the job with its result set."""
        job = queued.job
        logger.info("job_started id=%s kind=%s", queued.id, job.kind)
        try:
            value = await self._dispatch(queued.id, job)
        except (RecordsError, SQLAlchemyError, StoreError) as exc:
            logger.warning("job_failed id=%s kind=%s error=%s", queued.id, job.kind, exc)
            return job.fail(str(exc))
        except Exception as exc:  # Last-resort handler, any other handler error
            logger.exception("job_failed id=%s kind=%s", queued.id, job.kind)
            return job.fail(str(exc) or type(exc).__name__)
        logger.info("job_finished id=%s kind=%s", queued.id, job.kind)
        return job.resolve(value)

    async def _dispatch(self, job_id: str, job: JobBase) -> object:
        if isinstance(job, CreateLobby):
            return await create_lobby(self.engine, job_id, job.creator)
        if isinstance(job, CreateGame):
            return await create_game(
                self.engine,
                job_id,
                job.creator,
                job.lobby_id,
                rounds=self.rounds_per_game,
            )
        if isinstance(job, CheckRoundFulfillment):
            return await check_round_fulfillment(self.engine, job.round_id)
        if isinstance(job, CheckRoundCompletion):
            return await check_round_completion(self.engine, job.round_id, job.game_id)
        if isinstance(job, CleanupLobbyMembership):
            return await cleanup_lobby_membership(
                self.engine, self.jobs, job.member_id, job.lobby_id
            )
        if isinstance(job, CleanupGameMembership):
            return await cleanup_game_membership(
                self.engine,
                self.jobs,
                job.user_id,
                job.member_id,
                job.lobby_id,
                job.game_id,
            )
        msg = f"no handler for job kind '{job.kind}'"
        raise TypeError(msg)

    async def step(self) -> QueuedJob | None:
        """Process at most one job. Returns the updated job, or None when idle.

        Raises StoreError when the job store cannot be reached.
        """
        queued = await self.jobs.dequeue()
        if queued is None:
            return None
        job = await self.handle(queued)
        await self.jobs.update(queued.id, job)
        return QueuedJob(id=queued.id, job=job)

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Process jobs until *stop* is set.

        Raises WorkerFatalError once store failures exceed the configured cap.
        """
        logger.info(
            "worker_started max_consecutive_failures=%d",
            self.max_consecutive_failures,
        )
        while stop is None or not stop.is_set():
            try:
                await self.step()
            except StoreError as exc:
                self.consecutive_failures += 1
                logger.error(
                    "worker_store_error failures=%d error=%s",
                    self.consecutive_failures,
                    exc,
                )
                if self.consecutive_failures > self.max_consecutive_failures:
                    msg = f"job store failed {self.consecutive_failures} times in a row"
                    raise WorkerFatalError(msg) from exc
                continue
            self.consecutive_failures = 0
        logger.info("worker_stopped")
