"""
Infrastructure models: import transactions and commit audits.

These support the document store but are not part of it: a
transaction is the reviewable change-set produced by a preview, and an
audit row records what one commit applied.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from rostersync.core.database import Base


class ImportTransactionRecord(Base):
    """
    A persisted import transaction.

    The full change-set is stored as JSON in payload; status and the
    columns used for history listing are duplicated for querying.
    """

    __tablename__ = "import_transactions"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    import_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="schedule or directory",
    )
    semester: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="preview",
        comment="preview, committed or partial",
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_changes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Serialized ImportTransaction.",
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
        Index("idx_import_transactions_status", "status"),
        Index("idx_import_transactions_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ImportTransaction {self.id} {self.status}>"


class CommitAuditRecord(Base):
    """
    One row per committed (or partially committed) transaction.

    Holds enough of the selection to reconstruct what was applied.
    Rollback from this record is not supported.
    """

    __tablename__ = "commit_audits"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    transaction_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("import_transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    term: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    stats: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    selection: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Selected change ids, field map and match resolutions.",
    )
    applied_change_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    committed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<CommitAudit {self.transaction_id} by {self.actor}>"
