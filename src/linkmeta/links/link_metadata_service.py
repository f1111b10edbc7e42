from typing import Iterable
from uuid import UUID

from linkmeta.links.fetcher import is_internal_upload_url
from linkmeta.main.logging import get_logger
from linkmeta.worker.metadata_queue import MetadataJob, MetadataQueue

logger = get_logger(__name__)


class LinkMetadataService:
    """Schedules metadata fetches for links that were just created or edited.

    Call this after the post has been committed: the worker loads the link
    from the database and will drop the job if the row is not visible yet.
    """

    def __init__(self, queue: MetadataQueue, *, enabled: bool = True):
        self.queue = queue
        self.enabled = enabled

    async def schedule(
        self, post_id: UUID, links: Iterable[tuple[UUID, str]]
    ) -> list[MetadataJob]:
        if not self.enabled:
            return []

        jobs = []
        for link_id, url in links:
            if is_internal_upload_url(url):
                continue

            job = MetadataJob(post_id=post_id, link_id=link_id, url=url)
            await self.queue.enqueue(job)
            jobs.append(job)

        if jobs:
            logger.debug(
                f"Scheduled {len(jobs)} metadata jobs for post {post_id}",
            )

        return jobs
