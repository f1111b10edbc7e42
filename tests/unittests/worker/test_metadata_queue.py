"""Unit tests for the pending/processing metadata queue."""

import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from linkmeta.main.exceptions import MalformedJobError
from linkmeta.worker.metadata_queue import MetadataJob, MetadataQueue


@pytest.fixture
def queue(fake_redis) -> MetadataQueue:
    return MetadataQueue(fake_redis, "test:metadata_queue")


def test_processing_key_is_derived_from_queue_key(queue):
    assert queue.pending_key == "test:metadata_queue"
    assert queue.processing_key == "test:metadata_queue:processing"


def test_jobs_get_unique_ids():
    post_id, link_id = uuid4(), uuid4()
    created_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    first = MetadataJob(post_id=post_id, link_id=link_id, url="https://a.test", created_at=created_at)
    second = MetadataJob(post_id=post_id, link_id=link_id, url="https://a.test", created_at=created_at)

    assert first.id != second.id


def test_payload_round_trip(make_job):
    job = make_job()

    payload = json.loads(job.to_payload())

    assert payload["id"] == str(job.id)
    assert payload["link_id"] == str(job.link_id)
    assert MetadataJob.from_payload(job.to_payload()) == job


async def test_dequeue_moves_job_to_processing(queue, fake_redis, make_job):
    job = make_job()
    await queue.enqueue(job)

    dequeued = await queue.dequeue(0.1)

    assert dequeued == job
    assert await queue.pending_length() == 0
    assert await queue.processing_length() == 1


async def test_dequeue_returns_oldest_job_first(queue, make_job):
    jobs = [make_job(f"https://example.com/{i}") for i in range(3)]
    for job in jobs:
        await queue.enqueue(job)

    dequeued = [await queue.dequeue(0.1) for _ in jobs]

    assert dequeued == jobs


async def test_dequeue_times_out_on_empty_queue(queue):
    assert await queue.dequeue(0.02) is None


async def test_dequeue_without_timeout_does_not_block(queue):
    assert await queue.dequeue(0) is None


async def test_ack_removes_job_from_processing(queue, make_job):
    job = make_job()
    await queue.enqueue(job)
    await queue.dequeue(0.1)

    assert await queue.ack(job) == 1
    assert await queue.processing_length() == 0


async def test_ack_is_idempotent(queue, make_job):
    job = make_job()
    await queue.enqueue(job)
    await queue.dequeue(0.1)

    await queue.ack(job)

    assert await queue.ack(job) == 0


async def test_ack_by_id_leaves_identical_job_in_place(queue):
    post_id, link_id = uuid4(), uuid4()
    created_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first = MetadataJob(post_id=post_id, link_id=link_id, url="https://a.test", created_at=created_at)
    second = MetadataJob(post_id=post_id, link_id=link_id, url="https://a.test", created_at=created_at)
    await queue.enqueue(first)
    await queue.enqueue(second)
    await queue.dequeue(0.1)
    await queue.dequeue(0.1)

    await queue.ack(first)

    assert await queue.processing_length() == 1
    assert await queue.ack(second) == 1
    assert await queue.processing_length() == 0


async def test_malformed_payload_is_removed_from_processing(queue, fake_redis):
    await fake_redis.lpush(queue.pending_key, b"{not json")

    with pytest.raises(MalformedJobError) as exc_info:
        await queue.dequeue(0.1)

    assert exc_info.value.raw_payload == b"{not json"
    assert await queue.pending_length() == 0
    assert await queue.processing_length() == 0


async def test_payload_missing_fields_is_malformed(queue, fake_redis):
    await fake_redis.lpush(queue.pending_key, json.dumps({"url": "https://a.test"}))

    with pytest.raises(MalformedJobError):
        await queue.dequeue(0.1)

    assert await queue.processing_length() == 0


async def test_requeue_processing_restores_original_order(queue, make_job):
    first, second, later = (make_job(f"https://example.com/{i}") for i in range(3))
    await queue.enqueue(first)
    await queue.enqueue(second)
    await queue.dequeue(0.1)
    await queue.dequeue(0.1)
    # Enqueued after the crash, must stay behind the stranded jobs
    await queue.enqueue(later)

    moved = await queue.requeue_processing()

    assert moved == 2
    assert await queue.processing_length() == 0
    assert await queue.dequeue(0.1) == first
    assert await queue.dequeue(0.1) == second
    assert await queue.dequeue(0.1) == later


async def test_requeue_processing_with_nothing_stranded(queue):
    assert await queue.requeue_processing() == 0
