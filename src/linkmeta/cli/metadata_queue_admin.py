"""Inspect or repair the link metadata queue.

Usage:
    python -m linkmeta.cli.metadata_queue_admin status
    python -m linkmeta.cli.metadata_queue_admin requeue

``requeue`` moves every job in the processing list back to pending. Stop all
metadata workers first, otherwise jobs that are being processed right now
will run twice.
"""

import argparse
import asyncio
from typing import Optional

from linkmeta.main.config import get_settings
from linkmeta.main.logging import get_logger
from linkmeta.redis.connection import create_redis_client
from linkmeta.worker.metadata_queue import MetadataQueue
from linkmeta.worker.redis import QueueHealth, get_queue_health

logger = get_logger(__name__)


async def queue_status() -> QueueHealth:
    settings = get_settings()
    redis_client = create_redis_client(settings)
    try:
        queue = MetadataQueue(redis_client, settings.metadata_queue_key)
        health = await get_queue_health(
            queue, settings.metadata_queue_backlog_threshold
        )
    finally:
        await redis_client.aclose()

    logger.info(
        f"Metadata queue {health.status}: pending={health.pending} "
        f"processing={health.processing}",
        extra={"details": health.details},
    )
    return health


async def requeue_stranded() -> int:
    settings = get_settings()
    redis_client = create_redis_client(settings)
    try:
        queue = MetadataQueue(redis_client, settings.metadata_queue_key)
        moved = await queue.requeue_processing()
    finally:
        await redis_client.aclose()

    logger.info(f"Requeued {moved} metadata jobs")
    return moved


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Metadata queue administration")
    parser.add_argument("command", choices=["status", "requeue"])
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None):
    """Entry point for CLI script."""
    args = parse_args(argv)
    if args.command == "status":
        health = asyncio.run(queue_status())
        print(
            f"status={health.status} pending={health.pending} "
            f"processing={health.processing}"
        )
        if health.status == "UNKNOWN":
            raise SystemExit(1)
    else:
        moved = asyncio.run(requeue_stranded())
        print(f"requeued={moved}")


if __name__ == "__main__":
    main()
