"""Tables owned by the wider application.

Only the columns the metadata pipeline reads or writes are mapped here.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from linkmeta.database.tables.base_class import BasePublic


class Sections(BasePublic):
    __tablename__ = "sections"


class Posts(BasePublic):
    __tablename__ = "posts"

    section_id: Mapped[UUID] = mapped_column(
        ForeignKey(Sections.id, ondelete="CASCADE"), index=True
    )


class Links(BasePublic):
    __tablename__ = "links"

    post_id: Mapped[UUID] = mapped_column(
        ForeignKey(Posts.id, ondelete="CASCADE"), index=True
    )
    url: Mapped[str] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    link_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONB, nullable=True
    )
