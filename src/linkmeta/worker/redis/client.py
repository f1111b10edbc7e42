"""Queue health reporting."""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from linkmeta.worker.metadata_queue import MetadataQueue


class QueueHealth(NamedTuple):
    status: str  # "HEALTHY", "BACKLOGGED", "UNKNOWN"
    pending: int | None
    processing: int | None
    details: str | None


async def get_queue_health(queue: MetadataQueue, backlog_threshold: int) -> QueueHealth:
    """Report queue depth and whether the workers are keeping up.

    Returns:
        QueueHealth: ``BACKLOGGED`` when more than ``backlog_threshold`` jobs
        are pending, ``UNKNOWN`` when Redis could not be reached.
    """
    try:
        pending = await queue.pending_length()
        processing = await queue.processing_length()
    except Exception as e:
        return QueueHealth(
            status="UNKNOWN",
            pending=None,
            processing=None,
            details=f"Redis connection error: {str(e)}",
        )

    if pending > backlog_threshold:
        return QueueHealth(
            status="BACKLOGGED",
            pending=pending,
            processing=processing,
            details=f"{pending} pending jobs exceeds threshold of {backlog_threshold}",
        )

    return QueueHealth(
        status="HEALTHY",
        pending=pending,
        processing=processing,
        details=None,
    )
