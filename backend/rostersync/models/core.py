"""
Core data model: Documents.

The live store is a key-addressable document store of a handful of
collections (schedules, people, rooms, terms). Every document is one
row addressed by (collection, doc_id) with its fields held as JSON.

collection is application configuration, not schema. Adding a new
collection requires zero migrations.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rostersync.core.database import Base


class Document(Base):
    """One record of one collection: a schedule, a person, a room or a term."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Collection name: schedules, people, rooms, terms.",
    )
    doc_id: Mapped[str] = mapped_column(
        String(500),
        primary_key=True,
        comment="Document id, unique within its collection.",
    )
    data: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Document fields as JSON.",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_documents_collection", "collection"),
    )

    def __repr__(self) -> str:
        return f"<Document {self.collection}/{self.doc_id}>"
