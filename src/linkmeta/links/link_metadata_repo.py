from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

import sqlalchemy as sa

from linkmeta.database.tables.links_table import Links, Posts
from linkmeta.main.logging import get_logger

if TYPE_CHECKING:
    from linkmeta.database.database import DatabaseSessionManager

logger = get_logger(__name__)


@dataclass(frozen=True)
class LinkContext:
    """What the worker needs to know about a link at processing time."""

    link_id: UUID
    post_id: UUID
    section_id: UUID
    metadata: dict[str, Any] | None


class LinkMetadataRepository:
    """Reads and writes ``links.metadata`` for the metadata worker.

    Each call opens its own short-lived session; the worker never holds a
    transaction open across the network fetch.
    """

    def __init__(self, sessionmanager: DatabaseSessionManager):
        self._sessionmanager = sessionmanager

    async def get_link_context(self, link_id: UUID) -> LinkContext | None:
        stmt = (
            sa.select(Links.id, Links.post_id, Posts.section_id, Links.link_metadata)
            .join(Posts, Posts.id == Links.post_id)
            .where(Links.id == link_id)
        )

        async with self._sessionmanager.session() as session, session.begin():
            result = await session.execute(stmt)
            row = result.one_or_none()

        if row is None:
            return None

        return LinkContext(
            link_id=row.id,
            post_id=row.post_id,
            section_id=row.section_id,
            metadata=row.link_metadata,
        )

    async def update_metadata(self, link_id: UUID, metadata: dict[str, Any]) -> bool:
        """Persist merged metadata and bump ``updated_at``.

        Returns:
            False if the link no longer exists.
        """
        stmt = (
            sa.update(Links)
            .where(Links.id == link_id)
            .values(link_metadata=metadata, updated_at=datetime.now(timezone.utc))
        )

        async with self._sessionmanager.session() as session, session.begin():
            result = await session.execute(stmt)

        if result.rowcount == 0:
            logger.debug(
                "Link disappeared before metadata could be stored",
                extra={"link_id": str(link_id)},
            )
            return False
        return True
