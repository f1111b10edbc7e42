"""End to end: queue in Redis, links in PostgreSQL, a stub fetcher."""

import asyncio
from uuid import uuid4

import pytest
import sqlalchemy as sa

from linkmeta.database.tables.links_table import Links, Posts, Sections
from linkmeta.links.link_metadata_repo import LinkMetadataRepository
from linkmeta.links.link_metadata_service import LinkMetadataService
from linkmeta.worker.metadata_queue import MetadataQueue
from linkmeta.worker.metadata_worker import MetadataWorkerPool
from linkmeta.worker.notifier import SectionNotifier


class StubFetcher:
    def __init__(self, results):
        self.results = results

    async def fetch(self, url):
        result = self.results[url]
        if isinstance(result, Exception):
            raise result
        return result


async def create_link(db, url, metadata=None):
    section_id, post_id, link_id = uuid4(), uuid4(), uuid4()
    async with db.session() as session, session.begin():
        session.add(Sections(id=section_id))
        await session.flush()
        session.add(Posts(id=post_id, section_id=section_id))
        await session.flush()
        session.add(Links(id=link_id, post_id=post_id, url=url, link_metadata=metadata))
    return section_id, post_id, link_id


async def load_metadata(db, link_id):
    async with db.session() as session, session.begin():
        result = await session.execute(
            sa.select(Links.link_metadata).where(Links.id == link_id)
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_repository_round_trip(db):
    section_id, post_id, link_id = await create_link(db, "https://a.test")
    repo = LinkMetadataRepository(db)

    context = await repo.get_link_context(link_id)
    assert (context.post_id, context.section_id, context.metadata) == (post_id, section_id, None)

    assert await repo.update_metadata(link_id, {"title": "T"}) is True
    assert await load_metadata(db, link_id) == {"title": "T"}

    assert await repo.update_metadata(uuid4(), {"title": "T"}) is False
    assert await repo.get_link_context(uuid4()) is None


@pytest.mark.asyncio
async def test_pipeline_enriches_links_and_keeps_highlights(db, redis_client):
    highlights = [{"timestamp": 42, "label": "drop"}]
    _, post_id, kept_link = await create_link(
        db, "https://music.test/track", metadata={"highlights": highlights}
    )
    _, _, failed_link = await create_link(db, "https://broken.test")
    fetcher = StubFetcher(
        {
            "https://music.test/track": {"title": "Track", "highlights": []},
            "https://broken.test": RuntimeError("boom"),
        }
    )

    queue = MetadataQueue(redis_client, "it:pipeline_queue")
    service = LinkMetadataService(queue)
    await service.schedule(post_id, [(kept_link, "https://music.test/track")])
    await service.schedule(uuid4(), [(failed_link, "https://broken.test")])

    pool = MetadataWorkerPool(
        queue,
        LinkMetadataRepository(db),
        fetcher,
        SectionNotifier(redis_client),
        worker_count=2,
        dequeue_timeout=0.1,
    )
    pool.start()
    for _ in range(100):
        if await queue.pending_length() == 0 and await queue.processing_length() == 0:
            break
        await asyncio.sleep(0.05)
    await pool.stop()

    assert await load_metadata(db, kept_link) == {"title": "Track", "highlights": highlights}
    assert await load_metadata(db, failed_link) is None
    assert await queue.pending_length() == 0
    assert await queue.processing_length() == 0
