"""Term API routes: list terms and set the advisory lock/archive flags."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rostersync.core.database import get_db
from rostersync.core.errors import ImportPipelineError
from rostersync.schemas.terms import TermArchiveRequest, TermLockRequest, TermResponse
from rostersync.services.store import SqlDocumentStore
from rostersync.services.term_service import list_terms, set_term_state

router = APIRouter()


@router.get("", response_model=list[TermResponse])
async def get_terms(db: AsyncSession = Depends(get_db)):
    """Every known term, newest first."""
    return await list_terms(SqlDocumentStore(db))


@router.put("/{term_code}/lock", response_model=TermResponse)
async def lock_term(
    term_code: str,
    payload: TermLockRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Lock (or unlock) a term. Commits touching a locked term are rejected."""
    payload = payload or TermLockRequest()
    try:
        return await set_term_state(SqlDocumentStore(db), term_code, locked=payload.locked)
    except ImportPipelineError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{term_code}/archive", response_model=TermResponse)
async def archive_term(
    term_code: str,
    payload: TermArchiveRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Archive (or restore) a term. Archived terms reject commits."""
    payload = payload or TermArchiveRequest()
    try:
        return await set_term_state(
            SqlDocumentStore(db),
            term_code,
            status="archived" if payload.archived else "active",
        )
    except ImportPipelineError as e:
        raise HTTPException(status_code=400, detail=str(e))
