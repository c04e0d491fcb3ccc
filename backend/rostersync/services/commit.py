"""
Commit executor: apply a selection of an ImportTransaction to the store.

This is the only step with side effects. The store guarantees only
per-document atomicity, so writes are sequenced and the first failure
stops the commit.

Key flow:
  1. Status guard (a transaction commits at most once)
  2. Resolution checks and the matching gate; nothing is written before
     both pass
  3. Advisory lock check on every affected term
  4. First pass: person adds (capturing ids per match issue), link
     resolutions, room adds
  5. Second pass: schedule adds and all modifies, with instructor
     assignments rewritten to person ids
  6. Term upserts, then status → committed
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from rostersync.core.config import settings
from rostersync.core.errors import (
    CommitWriteError,
    InvalidResolutionError,
    TermLockedError,
    TransactionAlreadyCommittedError,
    UnresolvedMatchError,
)
from rostersync.core.collection_config import get_internal_fields
from rostersync.schemas.imports import (
    Change,
    CommitResult,
    CommitStats,
    ImportTransaction,
    MatchResolution,
    Selection,
)
from rostersync.services.diffing import merge_external_ids
from rostersync.services.identity import build_schedule_doc_id
from rostersync.services.names import make_name_key
from rostersync.services.normalization import is_empty
from rostersync.services.store import DocumentStore
from rostersync.services.terms import term_label_from_code

log = logging.getLogger(__name__)

# Display-only fields the preview carries on schedule changes
PREVIEW_ONLY_FIELDS = ("instructor_match_issue_ids",)


# ─── Pre-write Checks ─────────────────────────────────────────

async def _check_resolutions(
    store: DocumentStore,
    transaction: ImportTransaction,
    resolutions: dict[str, MatchResolution],
) -> dict[str, dict[str, Any]]:
    """Validate resolutions and return the people that link resolutions point at."""
    linked: dict[str, dict[str, Any]] = {}
    for issue_id, resolution in resolutions.items():
        if transaction.get_issue(issue_id) is None:
            raise InvalidResolutionError(f"Unknown match issue: {issue_id}")
        if resolution.action != "link":
            continue
        if not resolution.person_id:
            raise InvalidResolutionError(f"Match issue {issue_id}: 'link' needs a person_id")
        person = await store.get("people", resolution.person_id)
        if person is None:
            raise InvalidResolutionError(
                f"Match issue {issue_id}: person {resolution.person_id} does not exist"
            )
        linked[issue_id] = person
    return linked


def _check_gate(transaction: ImportTransaction, selection: Selection) -> None:
    blocked = selection.selected_gated_change_ids(transaction)
    if not blocked:
        return
    blocked_set = set(blocked)
    issue_ids = [
        issue.id
        for issue in selection.unresolved_issues(transaction)
        if blocked_set & {*issue.schedule_change_ids, issue.pending_person_change_id}
    ]
    log.warning(
        "Commit of %s rejected: %d selected change(s) wait on unresolved match issue(s) %s",
        transaction.id, len(blocked), ", ".join(issue_ids),
    )
    raise UnresolvedMatchError(issue_ids, blocked)


async def check_term_locks(store: DocumentStore, term_codes: Iterable[str]) -> None:
    """Reject the commit if any affected term is locked or archived."""
    for code in sorted(set(term_codes)):
        term = await store.get("terms", code)
        if not term:
            continue
        reason = None
        if term.get("locked"):
            reason = "locked"
        elif term.get("status") == "archived":
            reason = "archived"
        if reason:
            log.warning("Commit rejected: term %s is %s", code, reason)
            raise TermLockedError(code, reason)


# ─── Payloads ─────────────────────────────────────────────────

def resolve_assignments(
    assignments: list[dict[str, Any]], person_ids_by_issue: dict[str, str]
) -> list[dict[str, Any]]:
    """
    Rewrite match-issue references to person ids, primary first.

    A person named twice keeps the first assignment.
    """
    resolved: list[dict[str, Any]] = []
    seen: set[str] = set()
    for assignment in assignments or []:
        person_id = assignment.get("person_id") or person_ids_by_issue.get(assignment.get("match_issue_id") or "")
        if not person_id or person_id in seen:
            continue
        seen.add(person_id)
        resolved.append({
            "person_id": person_id,
            "is_primary": bool(assignment.get("is_primary")),
            "percentage": assignment.get("percentage", 100),
        })
    resolved.sort(key=lambda a: not a["is_primary"])
    if resolved and not resolved[0]["is_primary"]:
        resolved[0]["is_primary"] = True
    return resolved


def _apply_instructors(data: dict[str, Any], person_ids_by_issue: dict[str, str]) -> None:
    if "instructor_assignments" not in data:
        return
    assignments = resolve_assignments(data["instructor_assignments"], person_ids_by_issue)
    data["instructor_assignments"] = assignments
    data["instructor_ids"] = [a["person_id"] for a in assignments]
    data["instructor_id"] = assignments[0]["person_id"] if assignments else None


def modify_payload(change: Change, keys: Iterable[str] | None) -> dict[str, Any]:
    """
    Keys of a modify change to write: the selected diff keys (all of them
    when unset) plus internal linking fields.
    """
    selected = set(keys) if keys is not None else set(change.diff_keys)
    internal = get_internal_fields(change.collection)
    return {
        key: value
        for key, value in change.new_data.items()
        if key in selected or key in internal
    }


def _linked_person_updates(person: dict[str, Any], proposed: dict[str, Any]) -> dict[str, Any]:
    """
    Identifiers a reviewed match adds to the linked person.

    A reference name that differs from the person's own is kept under
    external_ids.name_keys so the next import matches it exactly.
    """
    updates: dict[str, Any] = {}
    if is_empty(person.get("baylor_id")) and proposed.get("baylor_id"):
        updates["baylor_id"] = proposed["baylor_id"]
    if is_empty(person.get("email")) and proposed.get("email"):
        updates["email"] = proposed["email"]

    current = person.get("external_ids") or {}
    merged = merge_external_ids(current, proposed.get("external_ids") or {})
    alias = make_name_key(proposed.get("first_name"), proposed.get("last_name"))
    aliases = list(current.get("name_keys") or [])
    if alias and alias != make_name_key(person.get("first_name"), person.get("last_name")) and alias not in aliases:
        merged["name_keys"] = [*aliases, alias]
    if merged != current:
        updates["external_ids"] = merged
    return updates


# ─── Executor ─────────────────────────────────────────────────

class _CommitRun:
    def __init__(self, store: DocumentStore, transaction: ImportTransaction, timestamp: str):
        self.store = store
        self.tx = transaction
        self.timestamp = timestamp
        self.stats = CommitStats()
        self.applied_change_ids: list[str] = []
        self.applied_writes: list[tuple[str, str]] = []
        self.document_ids: dict[str, str] = {}
        self.person_ids_by_issue: dict[str, str] = {}
        self.terms: dict[str, str] = {}

    async def write(self, collection: str, doc_id: str, data: dict[str, Any], change: Change | None = None) -> None:
        try:
            await self.store.put(collection, doc_id, data)
        except Exception as exc:
            label = change.id if change else f"{collection}/{doc_id}"
            log.error(
                "Commit of %s failed writing %s after %d write(s): %s",
                self.tx.id, label, len(self.applied_writes), exc,
            )
            raise CommitWriteError(
                f"Write of {collection}/{doc_id} failed: {exc}",
                applied_change_ids=list(self.applied_change_ids),
                applied_writes=list(self.applied_writes),
                failed_change_id=change.id if change else None,
            ) from exc
        self.applied_writes.append((collection, doc_id))
        if change is not None:
            change.applied = True
            change.document_id = doc_id
            self.applied_change_ids.append(change.id)
            self.document_ids[change.id] = doc_id
            self.stats.total_changes += 1
            verb = "added" if change.action == "add" else "updated"
            field = f"{change.collection}_{verb}"
            setattr(self.stats, field, getattr(self.stats, field) + 1)

    # ─── Pass 1 ────────────────────────────────────────────────

    async def add_person(self, change: Change) -> None:
        doc_id = self.store.new_id("people")
        await self.write("people", doc_id, dict(change.new_data), change)
        if change.match_issue_id:
            self.person_ids_by_issue[change.match_issue_id] = doc_id

    async def link_person(self, issue_id: str, person: dict[str, Any]) -> None:
        self.person_ids_by_issue[issue_id] = person["id"]
        issue = self.tx.get_issue(issue_id)
        updates = _linked_person_updates(person, issue.proposed_person if issue else {})
        if not updates:
            return
        await self.write("people", person["id"], {**person, **updates, "updated_at": self.timestamp})
        self.stats.people_updated += 1

    async def add_room(self, change: Change) -> None:
        doc_id = change.new_data.get("space_key") or self.store.new_id("rooms")
        await self.write("rooms", doc_id, dict(change.new_data), change)

    # ─── Pass 2 ────────────────────────────────────────────────

    async def add_schedule(self, change: Change) -> None:
        data = {k: v for k, v in change.new_data.items() if k not in PREVIEW_ONLY_FIELDS}
        _apply_instructors(data, self.person_ids_by_issue)
        identity_key = (change.import_meta or {}).get("identity_key") or data.get("identity_key") or ""
        doc_id = build_schedule_doc_id(identity_key) or self.store.new_id("schedules")
        current = await self.store.get("schedules", doc_id)
        if current:
            data = {**current, **data, "created_at": current.get("created_at", data.get("created_at"))}
        await self.write("schedules", doc_id, data, change)
        self._note_term(data)

    async def modify(self, change: Change, keys: Iterable[str] | None) -> None:
        original = change.original_data or {}
        doc_id = original.get("id")
        if not doc_id:
            raise CommitWriteError(
                f"{change.id} has no stored record to modify",
                applied_change_ids=list(self.applied_change_ids),
                applied_writes=list(self.applied_writes),
                failed_change_id=change.id,
            )
        payload = modify_payload(change, keys)
        current = await self.store.get(change.collection, doc_id) or dict(original)
        if change.collection == "schedules":
            for key in (*PREVIEW_ONLY_FIELDS, "instructor_name"):
                payload.pop(key, None)
            _apply_instructors(payload, self.person_ids_by_issue)
        if "external_ids" in payload:
            payload["external_ids"] = merge_external_ids(current.get("external_ids"), payload["external_ids"])
        merged = {**current, **payload, "updated_at": self.timestamp}
        await self.write(change.collection, doc_id, merged, change)
        if change.collection == "schedules":
            self._note_term(merged)

    def _note_term(self, schedule: dict[str, Any]) -> None:
        code = schedule.get("term_code")
        if code:
            self.terms.setdefault(code, schedule.get("term") or term_label_from_code(code))

    async def upsert_terms(self) -> None:
        for code, label in sorted(self.terms.items()):
            if await self.store.get("terms", code):
                continue
            await self.write("terms", code, {
                "term_code": code,
                "term": label,
                "status": "active",
                "locked": False,
                "created_at": self.timestamp,
                "updated_at": self.timestamp,
            })


async def apply_commit(
    store: DocumentStore,
    transaction: ImportTransaction,
    selection: Selection | None = None,
    *,
    now: datetime | None = None,
    actor: str | None = None,
) -> CommitResult:
    """
    Apply `selection` of `transaction` to `store`.

    On success the transaction is marked committed and carries the
    result. On a failed write it is marked partial (when anything was
    written) and CommitWriteError propagates.
    """
    if transaction.status != "preview":
        raise TransactionAlreadyCommittedError(transaction.id, transaction.status)

    selection = selection or Selection()
    now = now or datetime.now(timezone.utc)
    actor = actor or settings.DEFAULT_ACTOR

    resolutions = selection.effective_resolutions(transaction)
    linked_people = await _check_resolutions(store, transaction, resolutions)
    _check_gate(transaction, selection)

    chosen = [transaction.get_change(cid) for cid in selection.effective_change_ids(transaction)]
    changes = [c for c in chosen if c is not None]
    term_codes = {
        (c.new_data.get("term_code") or (c.original_data or {}).get("term_code"))
        for c in changes
        if c.collection == "schedules"
    }
    await check_term_locks(store, (code for code in term_codes if code))

    for issue in transaction.matching_issues:
        if issue.id in resolutions:
            issue.resolution = resolutions[issue.id]

    run = _CommitRun(store, transaction, now.isoformat())
    log.info("Committing %s: %d of %d changes selected", transaction.id, len(changes), len(transaction.get_all_changes()))
    try:
        for change in changes:
            if change.collection == "people" and change.action == "add":
                await run.add_person(change)
        for issue_id, person in linked_people.items():
            await run.link_person(issue_id, person)
        for change in changes:
            if change.collection == "rooms" and change.action == "add":
                await run.add_room(change)
        log.info(
            "Commit %s pass 1: %d people added, %d rooms added",
            transaction.id, run.stats.people_added, run.stats.rooms_added,
        )

        for change in changes:
            if change.collection == "schedules" and change.action == "add":
                await run.add_schedule(change)
            elif change.action == "modify":
                await run.modify(change, selection.fields_for(change.id))
        log.info(
            "Commit %s pass 2: %d schedules added, %d schedules updated, %d people updated, %d rooms updated",
            transaction.id, run.stats.schedules_added, run.stats.schedules_updated,
            run.stats.people_updated, run.stats.rooms_updated,
        )

        await run.upsert_terms()
    except CommitWriteError as exc:
        if exc.partial:
            transaction.status = "partial"
            transaction.committed_at = now
            transaction.commit_result = CommitResult(
                transaction_id=transaction.id,
                semester=transaction.semester,
                status="partial",
                stats=run.stats,
                applied_change_ids=run.applied_change_ids,
                document_ids=run.document_ids,
                term_codes=sorted(run.terms),
            )
        raise

    result = CommitResult(
        transaction_id=transaction.id,
        semester=transaction.semester,
        status="committed",
        stats=run.stats,
        applied_change_ids=run.applied_change_ids,
        document_ids=run.document_ids,
        term_codes=sorted(run.terms),
    )
    transaction.status = "committed"
    transaction.committed_at = now
    transaction.commit_result = result
    log.info("Committed %s by %s: %d changes applied", transaction.id, actor, run.stats.total_changes)
    return result
