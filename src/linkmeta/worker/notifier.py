from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from linkmeta.main.logging import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)

LINK_METADATA_UPDATED = "link_metadata_updated"


def section_channel(section_id: UUID | str) -> str:
    return f"section:{section_id}"


class LinkMetadataEventData(BaseModel):
    post_id: UUID
    link_id: UUID
    url: str
    metadata: dict[str, Any]


class LinkMetadataEvent(BaseModel):
    type: Literal["link_metadata_updated"] = LINK_METADATA_UPDATED
    data: LinkMetadataEventData
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SectionNotifier:
    """Publishes link updates to everyone watching a section.

    Delivery is best effort: nothing is stored, and a message published while
    nobody is subscribed is lost.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        *,
        attempts: int = 3,
        backoff_seconds: float = 0.05,
    ):
        self._redis = redis_client
        self._attempts = max(attempts, 1)
        self._backoff_seconds = backoff_seconds

    async def publish(self, section_id: UUID, event: LinkMetadataEvent) -> int:
        """Publish an event on the section's channel.

        Returns:
            Number of subscribers that received the message.

        Raises:
            redis.RedisError: Every attempt failed.
        """
        channel = section_channel(section_id)
        message = event.model_dump_json()

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_incrementing(
                start=self._backoff_seconds, increment=self._backoff_seconds
            ),
            retry=retry_if_exception_type((RedisError, OSError)),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug(
                        "Retrying publish on %s (attempt %s)",
                        channel,
                        attempt.retry_state.attempt_number,
                    )
                receivers = await self._redis.publish(channel, message)

        return int(receivers or 0)
