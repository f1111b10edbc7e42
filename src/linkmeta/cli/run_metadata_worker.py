"""Run the link metadata worker pool until SIGINT/SIGTERM.

Usage:
    python -m linkmeta.cli.run_metadata_worker [--workers N] [--requeue-stranded]

--requeue-stranded moves jobs left in the processing list by a crashed worker
back to the pending list before the workers start. Only use it when no other
worker process is consuming the same queue.
"""

import argparse
import asyncio
import signal
from typing import Optional

import redis.asyncio as aioredis

from linkmeta.database.database import sessionmanager
from linkmeta.links.fetcher import HtmlMetadataFetcher
from linkmeta.links.link_metadata_repo import LinkMetadataRepository
from linkmeta.main.aiohttp_client import aiohttp_client
from linkmeta.main.config import Settings, get_settings
from linkmeta.main.logging import get_logger
from linkmeta.redis.connection import create_redis_client
from linkmeta.worker.metadata_queue import MetadataQueue
from linkmeta.worker.metadata_worker import MetadataWorkerPool
from linkmeta.worker.notifier import SectionNotifier

logger = get_logger(__name__)


def build_worker_pool(
    settings: Settings,
    redis_client: aioredis.Redis,
    *,
    worker_count: Optional[int] = None,
) -> MetadataWorkerPool:
    """Wire the pool and its collaborators from settings."""
    queue = MetadataQueue(redis_client, settings.metadata_queue_key)
    fetcher = HtmlMetadataFetcher(
        aiohttp_client,
        user_agent=settings.metadata_fetch_user_agent,
        request_timeout=settings.metadata_fetch_request_timeout_seconds,
        max_body_bytes=settings.metadata_fetch_max_body_bytes,
        max_redirects=settings.metadata_fetch_max_redirects,
    )
    notifier = SectionNotifier(
        redis_client, attempts=settings.metadata_publish_attempts
    )

    return MetadataWorkerPool(
        queue,
        LinkMetadataRepository(sessionmanager),
        fetcher,
        notifier,
        worker_count=(
            worker_count if worker_count is not None else settings.metadata_worker_count
        ),
        dequeue_timeout=settings.metadata_dequeue_timeout_seconds,
        fetch_timeout=settings.metadata_fetch_timeout_seconds,
    )


def install_signal_handlers(shutdown: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Not available on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(shutdown.set))


async def run_worker(
    worker_count: Optional[int] = None,
    requeue_stranded: bool = False,
    shutdown: Optional[asyncio.Event] = None,
) -> None:
    settings = get_settings()

    if not settings.link_metadata_enabled:
        logger.info("Link metadata is disabled, not starting workers")
        return

    if shutdown is None:
        shutdown = asyncio.Event()
        install_signal_handlers(shutdown)

    sessionmanager.init(settings.database_url)
    aiohttp_client.start(
        total_timeout=settings.metadata_fetch_timeout_seconds,
        user_agent=settings.metadata_fetch_user_agent,
    )
    redis_client = create_redis_client(settings)

    pool = build_worker_pool(settings, redis_client, worker_count=worker_count)

    max_connections = settings.redis_max_connections
    if max_connections is not None and max_connections < pool.worker_count + 2:
        logger.warning(
            f"REDIS_MAX_CONNECTIONS={max_connections} is too small for "
            f"{pool.worker_count} workers, dequeues may block on the pool"
        )

    try:
        if requeue_stranded:
            moved = await pool.queue.requeue_processing()
            logger.info(f"Requeued {moved} stranded metadata jobs")

        pool.start(shutdown)
        await shutdown.wait()
        logger.info("Shutdown requested")
    finally:
        await pool.stop()
        await redis_client.aclose()
        await aiohttp_client.stop()
        await sessionmanager.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the link metadata workers")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of concurrent workers (default: METADATA_WORKER_COUNT)",
    )
    parser.add_argument(
        "--requeue-stranded",
        action="store_true",
        help="Move jobs stuck in the processing list back to pending before starting",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None):
    """Entry point for CLI script."""
    args = parse_args(argv)
    try:
        asyncio.run(
            run_worker(
                worker_count=args.workers, requeue_stranded=args.requeue_stranded
            )
        )
    except KeyboardInterrupt:
        logger.info("Metadata worker interrupted by user")
    except Exception as e:
        logger.error(f"Metadata worker failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
