"""Redis-backed job queue store.

Three keys:

- a list used as the FIFO of pending job ids (``RPUSH`` / ``BLPOP``),
- a hash mapping job id -> serialized ``QueuedJob`` (the status map),
- a hash mapping job id -> serialized ``DequeuedJob`` (when it was popped).

The status map entry is always written before the id is pushed onto the list,
so a worker woken by the push can always resolve the id. Ids are never removed
from the status map; it doubles as the record producers poll for results.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from redis.asyncio import Redis
from redis.exceptions import RedisError

from krumnet.config import Settings
from krumnet.errors import StoreError
from krumnet.models.jobs import DequeuedJob, JobBase, QueuedJob

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate Redis and (de)serialization failures into StoreError."""
    try:
        yield
    except RedisError as exc:
        raise StoreError(f"job store {action} failed - {exc}") from exc
    except ValueError as exc:  # includes pydantic.ValidationError
        raise StoreError(f"job store {action} got an unreadable job - {exc}") from exc


class JobStore:
    """FIFO job queue plus a durable id -> job-state map.

    Usage:
        store = JobStore.from_settings(settings)
        job_id = await store.queue(CheckRoundFulfillment(round_id=round_id))
        queued = await store.dequeue()  # None after ``queue_delay`` seconds idle
        await store.update(queued.id, queued.job.resolve(0))
    """

    def __init__(
        self,
        client: Redis,
        queue_key: str = "krumnet:jobs:queue",
        map_key: str = "krumnet:jobs:map",
        dequeue_key: str = "krumnet:jobs:dequeued",
        queue_delay: int = 10,
    ) -> None:
        self._client = client
        self.queue_key = queue_key
        self.map_key = map_key
        self.dequeue_key = dequeue_key
        self.queue_delay = queue_delay

    @classmethod
    def from_settings(cls, settings: Settings) -> JobStore:
        """Build a store on a pooled ``redis.asyncio`` client.

        No socket read timeout is set: it would cut the blocking pop short.
        """
        client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            health_check_interval=30,
        )
        logger.info(
            "job_store_ready queue=%s map=%s",
            settings.krumnet_queue_key,
            settings.krumnet_map_key,
        )
        return cls(
            client,
            queue_key=settings.krumnet_queue_key,
            map_key=settings.krumnet_map_key,
            dequeue_key=settings.krumnet_dequeue_key,
            queue_delay=settings.krumnet_queue_delay,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def queue(self, job: JobBase) -> str:
        """Persist *job* under a fresh id and append the id to the queue."""
        job_id = str(uuid.uuid4())
        with _store_errors("queue"):
            serialized = QueuedJob(id=job_id, job=job).model_dump_json()
            await self._client.hset(self.map_key, job_id, serialized)
            await self._client.rpush(self.queue_key, job_id)
        logger.debug("job_queued id=%s kind=%s", job_id, job.kind)
        return job_id

    async def dequeue(self) -> QueuedJob | None:
        """Pop the oldest job id, waiting up to ``queue_delay`` seconds.

        Returns None when the queue stayed empty. A popped id gets a
        dequeued-at marker before its job is resolved from the status map.
        """
        with _store_errors("dequeue"):
            popped = await self._client.blpop([self.queue_key], timeout=self.queue_delay)
            if popped is None:
                return None
            _, job_id = popped
            logger.debug("job_popped id=%s", job_id)
            marker = DequeuedJob(id=job_id)
            await self._client.hset(self.dequeue_key, job_id, marker.model_dump_json())
        queued = await self.lookup(job_id)
        if queued is None:
            logger.warning("job_popped_without_entry id=%s", job_id)
        return queued

    async def update(self, job_id: str, job: JobBase) -> str:
        """Overwrite the status map entry for *job_id* (used to attach results)."""
        with _store_errors("update"):
            serialized = QueuedJob(id=job_id, job=job).model_dump_json()
            await self._client.hset(self.map_key, job_id, serialized)
        return job_id

    async def lookup(self, job_id: str) -> QueuedJob | None:
        """Resolve the current state of a job. Read-only."""
        with _store_errors("lookup"):
            raw = await self._client.hget(self.map_key, job_id)
            if raw is None:
                return None
            return QueuedJob.model_validate_json(raw)
