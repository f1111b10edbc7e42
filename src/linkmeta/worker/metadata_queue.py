"""Durable Redis queue for link metadata fetch jobs.

Jobs live in two lists: ``pending`` holds jobs nobody has claimed yet and
``processing`` holds jobs a worker has claimed but not acknowledged. A job
moves between them with a single BLMOVE, so it is always in exactly one of
the two lists (or gone, once acked).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from linkmeta.main.exceptions import MalformedJobError
from linkmeta.main.logging import get_logger
from linkmeta.worker.redis.lua_scripts import LuaScripts

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)

DEFAULT_QUEUE_KEY = "clubhouse:metadata_queue"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetadataJob(BaseModel):
    """A request to fetch metadata for one link."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    post_id: UUID
    link_id: UUID
    url: str
    created_at: datetime = Field(default_factory=_utcnow)

    def to_payload(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_payload(cls, raw: bytes | str) -> MetadataJob:
        return cls.model_validate_json(raw)


class MetadataQueue:
    """Pending/processing list pair with explicit acknowledgement.

    Args:
        redis_client: Async Redis connection. Must not decode responses, raw
            payload bytes are needed for exact LREM matching.
        key: Name of the pending list. The processing list is
            ``<key>:processing``.
    """

    def __init__(
        self, redis_client: aioredis.Redis, key: str = DEFAULT_QUEUE_KEY
    ) -> None:
        self._redis = redis_client
        self._key = key

    @property
    def pending_key(self) -> str:
        return self._key

    @property
    def processing_key(self) -> str:
        return f"{self._key}:processing"

    async def enqueue(self, job: MetadataJob) -> None:
        """Push a job onto the pending list.

        Raises:
            redis.RedisError: The job was not stored.
        """
        await self._redis.lpush(self.pending_key, job.to_payload())
        logger.debug(
            "Enqueued metadata job",
            extra={"job_id": str(job.id), "link_id": str(job.link_id)},
        )

    async def dequeue(self, timeout: float) -> Optional[MetadataJob]:
        """Claim the oldest pending job, waiting up to ``timeout`` seconds.

        The job is moved to the processing list in the same step, and stays
        there until :meth:`ack` is called.

        Returns:
            The claimed job, or None if nothing arrived in time.

        Raises:
            MalformedJobError: The claimed payload could not be decoded. It
                has already been removed from the processing list.
        """
        if timeout > 0:
            raw = await self._redis.blmove(
                self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT"
            )
        else:
            raw = await self._redis.lmove(
                self.pending_key, self.processing_key, "RIGHT", "LEFT"
            )

        if raw is None:
            return None

        try:
            return MetadataJob.from_payload(raw)
        except ValidationError as exc:
            await self._redis.lrem(self.processing_key, 1, raw)
            raise MalformedJobError(raw, str(exc)) from exc

    async def ack(self, job: MetadataJob) -> int:
        """Remove a finished job from the processing list.

        Acking a job that is no longer there is not an error.

        Returns:
            Number of entries removed (0 or 1).
        """
        removed = await LuaScripts.ack_job(
            self._redis, self.processing_key, str(job.id)
        )
        if not removed:
            logger.debug(
                "Ack found no processing entry",
                extra={"job_id": str(job.id)},
            )
        return 1 if removed else 0

    async def pending_length(self) -> int:
        return int(await self._redis.llen(self.pending_key))

    async def processing_length(self) -> int:
        return int(await self._redis.llen(self.processing_key))

    async def requeue_processing(self) -> int:
        """Move every stranded processing entry back to pending.

        Jobs come back in their original order, oldest first. Run this only
        while no worker is consuming the queue, otherwise jobs that are being
        processed right now would be handed out a second time.

        Returns:
            Number of jobs moved.
        """
        moved = await LuaScripts.requeue_processing(
            self._redis, self.processing_key, self.pending_key
        )
        if moved:
            logger.info(
                "Requeued stranded metadata jobs",
                extra={"count": moved, "queue": self.pending_key},
            )
        return moved
