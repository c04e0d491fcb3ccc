"""Initial schema: document store + import transactions + commit audits.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Extensions ──────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Documents (schedules, people, rooms, terms) ─────────
    op.create_table(
        "documents",
        sa.Column("collection", sa.String(100), primary_key=True),
        sa.Column("doc_id", sa.String(500), primary_key=True),
        sa.Column("data", JSONB, nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_documents_collection", "documents", ["collection"])
    op.execute(
        "CREATE INDEX idx_documents_term_code ON documents "
        "((data->>'term_code')) WHERE collection = 'schedules'"
    )

    # ── Import Transactions ─────────────────────────────────
    op.create_table(
        "import_transactions",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("import_type", sa.String(50), nullable=False),
        sa.Column("semester", sa.String(100), nullable=True),
        sa.Column("status", sa.String(50), nullable=False,
                  server_default="preview"),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("total_changes", sa.Integer, nullable=False,
                  server_default="0"),
        sa.Column("payload", JSONB, nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_import_transactions_status", "import_transactions", ["status"])
    op.create_index("idx_import_transactions_created", "import_transactions", ["created_at"])

    # ── Commit Audits ───────────────────────────────────────
    op.create_table(
        "commit_audits",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("uuid_generate_v4()")),
        sa.Column("transaction_id", sa.String(100),
                  sa.ForeignKey("import_transactions.id", ondelete="CASCADE"),
                  nullable=False, unique=True),
        sa.Column("term", sa.String(100), nullable=True),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("stats", JSONB, nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("selection", JSONB, nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("applied_change_ids", JSONB, nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column("committed_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("commit_audits")
    op.drop_table("import_transactions")
    op.drop_index("idx_documents_term_code", table_name="documents")
    op.drop_table("documents")
