"""
Import pipeline service: file parsing, transaction persistence, commit.

Wires the pure preview and the commit executor to the database.
Transactions are persisted as JSON right after preview and read back
for review and commit.

Key flow:
  1. Parse file → list of rows keyed by header, each with _row_number
  2. Detect the import type from the headers (unless given)
  3. Load a store snapshot → build_preview → persist the transaction
  4. commit_import: load → apply_commit → persist status + audit row
"""

import csv
import io
import logging
from datetime import datetime, timezone
from typing import Any

import openpyxl
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rostersync.core.config import settings
from rostersync.core.errors import (
    CommitWriteError,
    ImportPipelineError,
    TransactionAlreadyCommittedError,
    TransactionNotFoundError,
)
from rostersync.models.infrastructure import CommitAuditRecord, ImportTransactionRecord
from rostersync.schemas.imports import (
    CommitResult,
    ImportTransaction,
    Selection,
    TransactionSummary,
)
from rostersync.services.commit import apply_commit
from rostersync.services.preview import PreviewOptions, build_preview
from rostersync.services.projection import batch_term_codes, detect_import_type
from rostersync.services.store import SqlDocumentStore, load_snapshot

log = logging.getLogger(__name__)


# ─── File Parsing ─────────────────────────────────────────────

def _headers(values) -> list[str]:
    return [str(h).strip() if h is not None else "" for h in values]


def _record(headers: list[str], values, row_num: int) -> dict[str, Any]:
    record: dict[str, Any] = {"_row_number": row_num}
    for idx, header in enumerate(headers):
        if not header:
            continue
        val = values[idx] if idx < len(values) else None
        record[header] = val.strip() if isinstance(val, str) else val
    return record


def parse_excel(file_bytes: bytes) -> list[dict[str, Any]]:
    """
    Parse the first sheet of an Excel file into row dicts.

    Row 1 is the header. Each dict maps header → cell value and carries
    _row_number, the 1-indexed spreadsheet row. Empty rows are skipped.
    """
    wb = openpyxl.load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    try:
        ws = wb.active
        rows_iter = ws.iter_rows(values_only=True)
        header_row_values = next(rows_iter, None)
        if not header_row_values:
            return []
        headers = _headers(header_row_values)

        parsed: list[dict[str, Any]] = []
        for row_num, row_values in enumerate(rows_iter, start=2):
            if not row_values or all(v is None or str(v).strip() == "" for v in row_values):
                continue
            parsed.append(_record(headers, row_values, row_num))
        return parsed
    finally:
        wb.close()


def parse_csv(file_bytes: bytes) -> list[dict[str, Any]]:
    """Parse a CSV file into row dicts (same shape as parse_excel)."""
    text_content = file_bytes.decode("utf-8-sig")
    reader = csv.reader(io.StringIO(text_content))
    header_row_values = next(reader, None)
    if not header_row_values:
        return []
    headers = _headers(header_row_values)

    parsed: list[dict[str, Any]] = []
    for row_num, row_values in enumerate(reader, start=2):
        if not row_values or all(v.strip() == "" for v in row_values):
            continue
        parsed.append(_record(headers, row_values, row_num))
    return parsed


def parse_upload(file_name: str, file_bytes: bytes) -> list[dict[str, Any]]:
    name = (file_name or "").lower()
    if name.endswith((".xlsx", ".xlsm")):
        return parse_excel(file_bytes)
    if name.endswith(".csv"):
        return parse_csv(file_bytes)
    raise ImportPipelineError(f"Unsupported file type: {file_name!r} (expected .xlsx or .csv)")


# ─── Persistence ──────────────────────────────────────────────

def _payload(transaction: ImportTransaction) -> dict[str, Any]:
    return transaction.model_dump(mode="json", by_alias=True)


def _sync_record(record: ImportTransactionRecord, transaction: ImportTransaction) -> None:
    record.semester = transaction.semester or None
    record.status = transaction.status
    record.total_changes = transaction.stats["total_changes"]
    record.payload = _payload(transaction)


async def _get_record(db: AsyncSession, transaction_id: str) -> ImportTransactionRecord:
    record = await db.get(ImportTransactionRecord, transaction_id)
    if record is None:
        raise TransactionNotFoundError(transaction_id)
    return record


async def load_transaction(db: AsyncSession, transaction_id: str) -> ImportTransaction:
    record = await _get_record(db, transaction_id)
    return ImportTransaction.model_validate(record.payload)


async def list_transactions(db: AsyncSession, limit: int = 50) -> list[TransactionSummary]:
    """Import history, newest first."""
    result = await db.execute(
        select(ImportTransactionRecord)
        .order_by(ImportTransactionRecord.created_at.desc(), ImportTransactionRecord.id.desc())
        .limit(limit)
    )
    return [
        TransactionSummary(
            id=r.id,
            import_type=r.import_type,
            semester=r.semester,
            status=r.status,
            created_by=r.created_by,
            total_changes=r.total_changes,
            created_at=r.created_at,
        )
        for r in result.scalars().all()
    ]


async def discard_transaction(db: AsyncSession, transaction_id: str) -> None:
    """Delete a transaction that was never committed."""
    record = await _get_record(db, transaction_id)
    if record.status != "preview":
        raise TransactionAlreadyCommittedError(transaction_id, record.status)
    await db.delete(record)
    await db.flush()
    log.info("Discarded import transaction %s", transaction_id)


# ─── Preview ──────────────────────────────────────────────────

async def preview_import(
    db: AsyncSession,
    rows: list[dict[str, Any]],
    import_type: str | None = None,
    semester: str = "",
    description: str = "",
    actor: str | None = None,
    file_name: str = "",
) -> ImportTransaction:
    """Build a preview against the current store and persist it."""
    if not rows:
        raise ImportPipelineError("No data rows found")
    if not import_type:
        headers = {key for row in rows for key in row if not str(key).startswith("_")}
        import_type = detect_import_type(headers)

    store = SqlDocumentStore(db)
    term_codes = batch_term_codes(rows, semester) if import_type == "schedule" else None
    snapshot = await load_snapshot(store, term_codes or None)

    transaction = build_preview(
        rows,
        import_type,
        semester,
        snapshot,
        description=description,
        created_by=actor,
        options=PreviewOptions(file_name=file_name),
    )

    record = ImportTransactionRecord(
        id=transaction.id,
        import_type=transaction.import_type,
        created_by=transaction.created_by,
        created_at=transaction.created_at,
    )
    _sync_record(record, transaction)
    db.add(record)
    await db.flush()
    return transaction


# ─── Commit ───────────────────────────────────────────────────

def _audit(
    transaction: ImportTransaction, result: CommitResult, selection: Selection, actor: str
) -> CommitAuditRecord:
    return CommitAuditRecord(
        transaction_id=transaction.id,
        term=transaction.semester or ", ".join(result.term_codes) or None,
        actor=actor,
        status=result.status,
        stats=result.stats.model_dump(),
        selection=selection.model_dump(mode="json"),
        applied_change_ids=result.applied_change_ids,
        committed_at=transaction.committed_at or datetime.now(timezone.utc),
    )


async def commit_import(
    db: AsyncSession,
    transaction_id: str,
    selection: Selection | None = None,
    actor: str | None = None,
) -> CommitResult:
    """
    Commit a persisted preview.

    A failed write after earlier writes succeeded leaves the transaction
    'partial' with an audit row, then re-raises CommitWriteError.
    """
    record = await _get_record(db, transaction_id)
    transaction = ImportTransaction.model_validate(record.payload)
    selection = (selection or Selection()).materialize(transaction)
    actor = actor or settings.DEFAULT_ACTOR

    try:
        result = await apply_commit(SqlDocumentStore(db), transaction, selection, actor=actor)
    except CommitWriteError:
        if transaction.status == "partial" and transaction.commit_result:
            _sync_record(record, transaction)
            db.add(_audit(transaction, transaction.commit_result, selection, actor))
            await db.flush()
        raise

    _sync_record(record, transaction)
    db.add(_audit(transaction, result, selection, actor))
    await db.flush()
    return result


async def get_commit_audit(db: AsyncSession, transaction_id: str) -> CommitAuditRecord | None:
    await _get_record(db, transaction_id)
    result = await db.execute(
        select(CommitAuditRecord).where(CommitAuditRecord.transaction_id == transaction_id)
    )
    return result.scalar_one_or_none()
