"""
Term documents: listing and the advisory lock/archive flags.

A `terms/<code>` document is created by the first commit that writes a
schedule for that term. Locking or archiving a term makes later commits
touching it fail with TermLockedError.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from rostersync.core.errors import ImportPipelineError
from rostersync.services.store import DocumentStore
from rostersync.services.terms import parse_term_code, term_label_from_code

log = logging.getLogger(__name__)


def _sort_key(term: dict[str, Any]) -> str:
    return term.get("term_code") or term["id"]


async def list_terms(store: DocumentStore) -> list[dict[str, Any]]:
    """Every term, newest term code first."""
    terms = await store.list("terms")
    return sorted(terms, key=_sort_key, reverse=True)


async def set_term_state(
    store: DocumentStore,
    term_code: str,
    *,
    locked: bool | None = None,
    status: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Set the lock flag and/or status of a term, creating the document if needed."""
    if parse_term_code(term_code) is None:
        raise ImportPipelineError(f"Invalid term code: {term_code!r}")
    timestamp = (now or datetime.now(timezone.utc)).isoformat()

    term = await store.get("terms", term_code) or {
        "term_code": term_code,
        "term": term_label_from_code(term_code),
        "status": "active",
        "locked": False,
        "created_at": timestamp,
    }
    if locked is not None:
        term["locked"] = locked
    if status is not None:
        term["status"] = status
    term["updated_at"] = timestamp

    await store.put("terms", term_code, term)
    log.info("Term %s: locked=%s status=%s", term_code, term["locked"], term["status"])
    return {**term, "id": term_code}
