"""Worker pool that drains the metadata queue.

Each worker is an asyncio task running the same loop: claim a job, fetch
the URL, merge the result into the stored metadata, persist it, notify the
section, and finally acknowledge the job. Jobs that fail are dropped (acked
without a write); the queue is at-least-once, so a worker that dies before
acking leaves its job in the processing list for the requeue sweep.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Optional

from linkmeta.links.fetcher import classify_fetch_error, extract_domain
from linkmeta.links.link_metadata import LinkMetadata, merge_fetched_metadata
from linkmeta.main.exceptions import MalformedJobError
from linkmeta.main.job_context import set_job_context
from linkmeta.main.logging import get_logger
from linkmeta.worker.notifier import LinkMetadataEvent, LinkMetadataEventData

if TYPE_CHECKING:
    from linkmeta.links.fetcher import MetadataFetcher
    from linkmeta.links.link_metadata_repo import LinkMetadataRepository
    from linkmeta.worker.metadata_queue import MetadataJob, MetadataQueue
    from linkmeta.worker.notifier import SectionNotifier

logger = get_logger(__name__)

DEFAULT_WORKER_COUNT = 3
DEFAULT_DEQUEUE_TIMEOUT = 1.0
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_ERROR_BACKOFF = 1.0


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    DROPPED_FETCH_FAILED = "dropped_fetch_failed"
    DROPPED_EMPTY_RESULT = "dropped_empty_result"
    DROPPED_LINK_MISSING = "dropped_link_missing"
    DROPPED_PERSIST_FAILED = "dropped_persist_failed"


class MetadataWorkerPool:
    """A fixed number of workers consuming one metadata queue.

    Args:
        queue: Queue to consume.
        repository: Where link metadata is loaded from and written to.
        fetcher: Fetches metadata for a URL.
        notifier: Publishes updates to section subscribers.
        worker_count: Number of workers. Values <= 0 fall back to 3.
        dequeue_timeout: Seconds a worker blocks waiting for a job. This also
            bounds how long :meth:`stop` takes when the pool is idle.
        fetch_timeout: Seconds allowed for a single fetch.
        error_backoff: Seconds a worker pauses after the queue itself fails.
    """

    def __init__(
        self,
        queue: MetadataQueue,
        repository: LinkMetadataRepository,
        fetcher: MetadataFetcher,
        notifier: SectionNotifier,
        *,
        worker_count: int = DEFAULT_WORKER_COUNT,
        dequeue_timeout: float = DEFAULT_DEQUEUE_TIMEOUT,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        error_backoff: float = DEFAULT_ERROR_BACKOFF,
    ):
        self.queue = queue
        self.repository = repository
        self.fetcher = fetcher
        self.notifier = notifier

        self._worker_count = worker_count if worker_count > 0 else DEFAULT_WORKER_COUNT
        self._dequeue_timeout = dequeue_timeout
        self._fetch_timeout = fetch_timeout
        self._error_backoff = error_backoff

        self._stop_event = asyncio.Event()
        self._shutdown_event: Optional[asyncio.Event] = None
        self._tasks: list[asyncio.Task] = []

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self, shutdown: Optional[asyncio.Event] = None) -> None:
        """Launch the workers and return immediately.

        Args:
            shutdown: Optional event owned by the caller. Setting it makes
                every worker exit after its current iteration, just like
                :meth:`stop` does.
        """
        if self.running:
            logger.warning("Metadata workers already running, ignoring start")
            return

        self._stop_event = asyncio.Event()
        self._shutdown_event = shutdown
        logger.info(f"Starting {self._worker_count} metadata workers")

        self._tasks = [
            asyncio.create_task(
                self._run_worker(worker_id), name=f"metadata-worker-{worker_id}"
            )
            for worker_id in range(self._worker_count)
        ]

    async def stop(self) -> None:
        """Signal every worker to exit and wait until they have.

        A job that is being processed is finished first. Safe to call more
        than once.
        """
        if not self._tasks:
            return

        logger.info("Stopping metadata workers")
        self._stop_event.set()
        await self.wait()
        logger.info("Metadata workers stopped")

    async def wait(self) -> None:
        """Wait for every worker to exit without asking them to."""
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(
                result, asyncio.CancelledError
            ):
                logger.error(
                    "Metadata worker exited with an error",
                    exc_info=(type(result), result, result.__traceback__),
                )

    def _should_stop(self) -> bool:
        if self._stop_event.is_set():
            return True
        return self._shutdown_event is not None and self._shutdown_event.is_set()

    async def _pause(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until either stop signal fires."""
        events = [self._stop_event]
        if self._shutdown_event is not None:
            events.append(self._shutdown_event)

        waiters = [asyncio.create_task(event.wait()) for event in events]
        try:
            await asyncio.wait(
                waiters, timeout=seconds, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def _run_worker(self, worker_id: int) -> None:
        set_job_context(worker_id=worker_id)
        logger.debug("Metadata worker started")

        while not self._should_stop():
            try:
                job = await self.queue.dequeue(self._dequeue_timeout)
            except MalformedJobError as exc:
                logger.warning(
                    "Discarded malformed metadata job",
                    extra={"error_code": "METADATA_JOB_MALFORMED", "reason": exc.reason},
                )
                continue
            except Exception as exc:
                logger.error(
                    f"Failed to dequeue metadata job: {exc}",
                    extra={"error_code": "METADATA_DEQUEUE_FAILED"},
                )
                await self._pause(self._error_backoff)
                continue

            if job is None:
                continue

            set_job_context(job_id=str(job.id), link_id=str(job.link_id))
            try:
                outcome = await self.process_job(job)
                await self._finalize(job, outcome)
            finally:
                set_job_context(job_id=None, link_id=None)

        logger.debug("Metadata worker stopping")

    async def process_job(self, job: MetadataJob) -> JobOutcome:
        """Fetch, merge, persist and announce metadata for one job.

        Never raises for job-level failures; they are reported through the
        returned outcome instead. The job is not acked here.
        """
        domain = extract_domain(job.url)

        try:
            async with asyncio.timeout(self._fetch_timeout):
                fetched = await self.fetcher.fetch(job.url)
        except Exception as exc:
            logger.warning(
                f"Link metadata fetch failed: {exc}",
                extra={
                    "error_code": "METADATA_FETCH_FAILED",
                    "error_type": classify_fetch_error(exc),
                    "link_domain": domain,
                },
            )
            return JobOutcome.DROPPED_FETCH_FAILED

        if not fetched:
            logger.warning(
                "Link metadata fetch returned nothing",
                extra={"error_type": "empty_metadata", "link_domain": domain},
            )
            return JobOutcome.DROPPED_EMPTY_RESULT

        try:
            link = await self.repository.get_link_context(job.link_id)
            if link is None:
                logger.info("Link no longer exists, dropping metadata job")
                return JobOutcome.DROPPED_LINK_MISSING

            # Merge against what is stored now, not what was there at enqueue time
            existing = LinkMetadata.from_storage(link.metadata)
            merged = merge_fetched_metadata(existing, fetched).to_storage()

            if not await self.repository.update_metadata(job.link_id, merged):
                logger.info("Link deleted before metadata was stored")
                return JobOutcome.DROPPED_LINK_MISSING
        except Exception as exc:
            logger.error(
                f"Failed to update link metadata: {exc}",
                extra={"error_code": "METADATA_UPDATE_FAILED"},
            )
            return JobOutcome.DROPPED_PERSIST_FAILED

        event = LinkMetadataEvent(
            data=LinkMetadataEventData(
                post_id=job.post_id,
                link_id=job.link_id,
                url=job.url,
                metadata=merged,
            )
        )
        try:
            await self.notifier.publish(link.section_id, event)
        except Exception as exc:
            logger.warning(
                f"Failed to publish link metadata update: {exc}",
                extra={"error_code": "METADATA_PUBLISH_FAILED"},
            )

        logger.info("Metadata fetched and stored", extra={"link_domain": domain})
        return JobOutcome.COMPLETED

    async def _finalize(self, job: MetadataJob, outcome: JobOutcome) -> None:
        # Every outcome is terminal for now, a retry policy would branch here
        try:
            await self.queue.ack(job)
        except Exception as exc:
            logger.error(
                f"Failed to acknowledge metadata job: {exc}",
                extra={"error_code": "METADATA_ACK_FAILED", "outcome": outcome.value},
            )
