"""
Import API routes.

Endpoints:
  POST   /api/v1/imports/preview             — Preview an uploaded file (Excel/CSV)
  POST   /api/v1/imports/preview/rows        — Preview already-parsed rows
  GET    /api/v1/imports                     — Import history
  GET    /api/v1/imports/:id                 — Get a transaction
  GET    /api/v1/imports/:id/changes         — Flat change list
  DELETE /api/v1/imports/:id                 — Discard a preview
  POST   /api/v1/imports/:id/commit          — Commit a selection
  GET    /api/v1/imports/:id/audit           — Commit audit record
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from rostersync.core.database import get_db
from rostersync.core.errors import (
    CommitWriteError,
    ImportPipelineError,
    InvalidResolutionError,
    TermLockedError,
    TransactionAlreadyCommittedError,
    TransactionNotFoundError,
    UnresolvedMatchError,
)
from rostersync.schemas.imports import (
    Change,
    CommitAuditResponse,
    CommitRequest,
    CommitResult,
    ImportTransaction,
    PreviewRowsRequest,
    TransactionSummary,
)
from rostersync.services import import_service

router = APIRouter()


# ─── Helpers ───────────────────────────────────────────────────

def _http_error(exc: ImportPipelineError) -> HTTPException:
    """Map a pipeline error to the response the client should see."""
    if isinstance(exc, TransactionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TransactionAlreadyCommittedError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, UnresolvedMatchError):
        return HTTPException(
            status_code=422,
            detail={
                "error": "unresolved_match",
                "message": str(exc),
                "issue_ids": exc.issue_ids,
                "change_ids": exc.change_ids,
            },
        )
    if isinstance(exc, InvalidResolutionError):
        return HTTPException(
            status_code=422,
            detail={"error": "invalid_resolution", "message": str(exc)},
        )
    if isinstance(exc, TermLockedError):
        return HTTPException(
            status_code=423,
            detail={"error": "term_locked", "message": str(exc), "term_code": exc.term_code},
        )
    if isinstance(exc, CommitWriteError):
        return HTTPException(
            status_code=500,
            detail={
                "error": "commit_write_failed",
                "message": str(exc),
                "partial": exc.partial,
                "failed_change_id": exc.failed_change_id,
                "applied_change_ids": exc.applied_change_ids,
                "applied_writes": [list(w) for w in exc.applied_writes],
            },
        )
    return HTTPException(status_code=400, detail=str(exc))


async def _get_transaction_or_404(db: AsyncSession, transaction_id: str) -> ImportTransaction:
    try:
        return await import_service.load_transaction(db, transaction_id)
    except TransactionNotFoundError as e:
        raise _http_error(e)


# ─── Preview ──────────────────────────────────────────────────

@router.post("/preview", response_model=ImportTransaction, status_code=201)
async def preview_file(
    file: UploadFile = File(...),
    import_type: str | None = Form(None, description="schedule or directory; detected when omitted"),
    semester: str = Form("", description="Fallback term for rows without one"),
    description: str = Form(""),
    actor: str | None = Form(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Parse an uploaded export and build a reviewable transaction.

    Nothing is written to the store; the transaction itself is persisted
    so it can be reviewed and committed later.
    """
    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(status_code=400, detail="Empty file uploaded")
    try:
        rows = import_service.parse_upload(file.filename or "", file_bytes)
        return await import_service.preview_import(
            db,
            rows,
            import_type=import_type,
            semester=semester,
            description=description,
            actor=actor,
            file_name=file.filename or "",
        )
    except ImportPipelineError as e:
        raise _http_error(e)


@router.post("/preview/rows", response_model=ImportTransaction, status_code=201)
async def preview_rows(
    payload: PreviewRowsRequest,
    db: AsyncSession = Depends(get_db),
):
    """Build a transaction from rows the client already parsed."""
    try:
        return await import_service.preview_import(
            db,
            payload.rows,
            import_type=payload.import_type,
            semester=payload.semester,
            description=payload.description,
            actor=payload.actor,
        )
    except ImportPipelineError as e:
        raise _http_error(e)


# ─── History / Review ─────────────────────────────────────────

@router.get("", response_model=list[TransactionSummary])
async def list_imports(
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
):
    """Import history, newest first."""
    return await import_service.list_transactions(db, limit=limit)


@router.get("/{transaction_id}", response_model=ImportTransaction)
async def get_import(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await _get_transaction_or_404(db, transaction_id)


@router.get("/{transaction_id}/changes", response_model=list[Change])
async def get_import_changes(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Every change of a transaction in creation order."""
    transaction = await _get_transaction_or_404(db, transaction_id)
    return transaction.get_all_changes()


@router.delete("/{transaction_id}", status_code=204)
async def discard_import(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Discard a preview. Committed transactions are history and stay."""
    try:
        await import_service.discard_transaction(db, transaction_id)
    except ImportPipelineError as e:
        raise _http_error(e)
    return Response(status_code=204)


# ─── Commit ───────────────────────────────────────────────────

@router.post("/{transaction_id}/commit", response_model=CommitResult)
async def commit_import(
    transaction_id: str,
    payload: CommitRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Commit the selected changes of a previewed transaction.

    With no body, every change not waiting on an unresolved person
    match is applied.
    """
    payload = payload or CommitRequest()
    try:
        return await import_service.commit_import(
            db,
            transaction_id,
            payload.to_selection(),
            actor=payload.actor,
        )
    except ImportPipelineError as e:
        raise _http_error(e)


@router.get("/{transaction_id}/audit", response_model=CommitAuditResponse)
async def get_import_audit(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        audit = await import_service.get_commit_audit(db, transaction_id)
    except ImportPipelineError as e:
        raise _http_error(e)
    if audit is None:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} has not been committed")
    return CommitAuditResponse(
        transaction_id=audit.transaction_id,
        term=audit.term,
        actor=audit.actor,
        status=audit.status,
        stats=audit.stats,
        selection=audit.selection,
        applied_change_ids=audit.applied_change_ids,
        committed_at=audit.committed_at,
    )
