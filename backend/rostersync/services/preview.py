"""
Import preview: raw rows + store snapshot → ImportTransaction.

Pure and deterministic: no store access, no writes. Given the same rows,
snapshot, matcher and `now`, the same Changes come out with the same ids.

Schedule flow, per row:
  1. Project the row (None → skipped, not an error)
  2. Structural checks → error, row skipped
  3. Identity keys; any key or stored match already claimed in the batch
     → collision, row skipped
  4. Match instructors: exact → person id (+ backfill), otherwise one
     MatchingIssue per reference with a pending person add
  5. Resolve rooms: unknown rooms become room adds (+ backfill for known)
  6. Diff against the matched stored schedule: add / modify / unchanged

Then: person and room backfill modifies, batch-level validation,
summary counts.

Directory flow, per row: project the person, match it, emit a person
modify for exact matches or a MatchingIssue with a pending add.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from rostersync.core.config import settings
from rostersync.core.errors import UnknownImportTypeError
from rostersync.schemas.entities import InstructorRef, PersonEntity, RoomEntity, ScheduleEntity
from rostersync.schemas.imports import (
    Change,
    ImportTransaction,
    MatchingIssue,
    RowLineageEntry,
)
from rostersync.services.diffing import (
    build_diff,
    build_directory_person_updates,
    build_person_backfill,
    build_room_backfill,
    build_schedule_updates,
    merge_external_ids,
    schedule_allow_empty_fields,
)
from rostersync.services.identity import (
    BatchKeyRegistry,
    batch_claim_keys,
    build_schedule_doc_id,
    build_schedule_identity_index,
    derive_schedule_identity,
    resolve_identity_match,
)
from rostersync.core.collection_config import get_internal_fields
from rostersync.services.locations import room_name_keys
from rostersync.services.names import make_name_key
from rostersync.services.normalization import clean_text, is_empty, normalize_baylor_id, normalize_identifier
from rostersync.services.person_matching import MatchResult, NameSimilarityMatcher, PersonMatcher, PersonQuery
from rostersync.services.projection import project_person_row, project_schedule_row, row_hash, row_index
from rostersync.services.store import StoreSnapshot
from rostersync.services.validation import (
    person_structural_error,
    room_structural_error,
    schedule_structural_error,
    validate_transaction,
)

log = logging.getLogger(__name__)


@dataclass
class PreviewOptions:
    include_office_rooms: bool = field(default_factory=lambda: settings.INCLUDE_OFFICE_ROOMS)
    conflict_bucket_minutes: int | None = None
    file_name: str = ""


def new_transaction_id(now: datetime) -> str:
    return f"import_{now:%Y%m%d%H%M%S}_{uuid.uuid4().hex[:8]}"


# ─── Shared Helpers ───────────────────────────────────────────

class _RoomIndex:
    """Stored rooms by space key and by name, plus rooms added by this batch."""

    def __init__(self, rooms: list[dict[str, Any]]):
        self.by_key: dict[str, dict[str, Any]] = {}
        self.by_name: dict[str, dict[str, Any]] = {}
        self.created: set[str] = set()
        for room in rooms:
            self._index(room)

    def _index(self, room: dict[str, Any]) -> None:
        if room.get("space_key"):
            self.by_key.setdefault(room["space_key"], room)
        for key in room_name_keys(room):
            self.by_name[key] = room

    def find(self, room: RoomEntity) -> dict[str, Any] | None:
        found = self.by_key.get(room.space_key)
        if found is None:
            found = self.by_name.get(normalize_identifier(room.display_name))
        return found

    def add_placeholder(self, room: RoomEntity) -> dict[str, Any]:
        placeholder = {"id": room.space_key, **room.to_document()}
        self.created.add(room.space_key)
        self._index(placeholder)
        return placeholder


def _merge_if_missing(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    merged = dict(target)
    for key, value in source.items():
        if is_empty(value):
            continue
        if is_empty(merged.get(key)):
            merged[key] = value
    return merged


class _BackfillQueue:
    """Accumulates fill-in-the-blanks updates per stored record across a batch."""

    def __init__(self) -> None:
        self._pending: dict[str, tuple[dict[str, Any], dict[str, Any]]] = {}

    def current(self, record: dict[str, Any]) -> dict[str, Any]:
        pending = self._pending.get(record["id"])
        if not pending:
            return record
        merged = {**record, **pending[1]}
        if "external_ids" in pending[1]:
            merged["external_ids"] = merge_external_ids(record.get("external_ids"), pending[1]["external_ids"])
        return merged

    def queue(self, record: dict[str, Any], updates: dict[str, Any]) -> None:
        if not updates:
            return
        original, existing = self._pending.get(record["id"], (record, {}))
        merged = {**existing, **updates}
        if "external_ids" in existing and "external_ids" in updates:
            merged["external_ids"] = merge_external_ids(existing["external_ids"], updates["external_ids"])
        self._pending[record["id"]] = (original, merged)

    def items(self):
        return self._pending.values()


# ─── Schedule Imports ─────────────────────────────────────────

class _SchedulePreview:
    def __init__(
        self,
        transaction: ImportTransaction,
        snapshot: StoreSnapshot,
        matcher: PersonMatcher,
        fallback_term: str,
        timestamp: str,
    ):
        self.tx = transaction
        self.snapshot = snapshot
        self.matcher = matcher
        self.fallback_term = fallback_term
        self.timestamp = timestamp
        self.summary = transaction.preview_summary
        self.report = transaction.validation
        self.rooms = _RoomIndex(snapshot.rooms)
        self.registry = BatchKeyRegistry()
        self.issues_by_key: dict[str, MatchingIssue] = {}
        self.person_backfill = _BackfillQueue()
        self.room_backfill = _BackfillQueue()
        self.index, collisions = build_schedule_identity_index(snapshot.schedules)
        if collisions.total:
            self.tx.collision_summary = collisions
            self.report.add_warning(
                "identity_collision",
                f"Found {collisions.total} duplicate schedule identities in existing data. "
                "Imports will match the preferred record for each key.",
                collection="schedules",
                details={"by_type": dict(collisions.by_type)},
            )

    def _skip(self, idx: int, digest: str, reason: str, **extra: Any) -> None:
        self.summary.rows_skipped += 1
        self.tx.row_lineage.append(
            RowLineageEntry(row_index=idx, action="skipped", reason=reason, row_hash=digest, **extra)
        )

    def run(self, rows: list[dict[str, Any]]) -> None:
        self.summary.rows_total = len(rows)
        for position, row in enumerate(rows, start=1):
            self._process_row(row, row_index(row, position))

        for original, updates in self.person_backfill.items():
            self.tx.add_change(
                "people", "modify", updates, original,
                diff=build_diff(original, updates),
                group_key=f"person_{original['id']}",
            )
        for original, updates in self.room_backfill.items():
            self.tx.add_change(
                "rooms", "modify", updates, original,
                diff=build_diff(original, updates),
                group_key=f"room_{original['id']}",
            )

    def _process_row(self, row: dict[str, Any], idx: int) -> None:
        label = f"Row {idx}"
        entity = project_schedule_row(row, self.fallback_term)
        if entity is None:
            self._skip(idx, row_hash(row), "No room, meeting pattern or online marker")
            return

        error = schedule_structural_error(entity)
        if error:
            type_, message = error
            self.report.add_error(type_, f"{label}: {message}", collection="schedules", row_index=idx)
            self._skip(idx, entity.row_hash, message)
            return

        identity = derive_schedule_identity(
            course_code=entity.course_code,
            section=entity.section,
            term=entity.term,
            term_code=entity.term_code,
            clss_id=entity.clss_id,
            crn=entity.crn,
            meeting_patterns=entity.meeting_patterns,
            space_ids=entity.space_ids,
            room_names=entity.space_display_names,
        )
        primary_key = identity.primary_key
        if not primary_key:
            self.report.add_error(
                "missing_identity", f"{label}: Unable to derive identity key",
                collection="schedules", row_index=idx,
            )
            self._skip(idx, entity.row_hash, "Missing identity key")
            return

        existing, matched_key = resolve_identity_match(identity.keys, self.index)
        claim_keys = batch_claim_keys(identity, (existing or {}).get("id"))

        claimed = self.registry.find(claim_keys)
        if claimed:
            hit_key, kept = claimed
            self.tx.collision_summary.record(
                hit_key,
                existing_id=kept,
                incoming_id=label,
                preferred_id=(existing or {}).get("id") or kept,
            )
            self.report.add_warning(
                "duplicate_identity",
                f'{label}: Duplicate schedule identity "{hit_key}" skipped',
                collection="schedules",
                row_index=idx,
                details={"identity_key": hit_key, "kept": kept},
            )
            self._skip(idx, entity.row_hash, "Duplicate identity", identity_key=hit_key)
            return

        group_key = f"sched_{primary_key}"
        assignments, issues, instructor_people = self._resolve_instructors(entity, label, idx)
        self._resolve_rooms(entity, group_key)

        instructor_ids = list(dict.fromkeys(a["person_id"] for a in assignments if a.get("person_id")))
        primary = next((a for a in assignments if a["is_primary"]), None)
        instructor_id = primary.get("person_id") if primary else None

        doc = entity.to_document()
        doc.update({
            "identity_key": primary_key,
            "identity_keys": identity.keys,
            "identity_source": identity.source,
            "instructor_id": instructor_id,
            "instructor_ids": instructor_ids,
            "instructor_assignments": assignments,
            "instructor_name": self._instructor_display(entity, instructor_people.get(instructor_id)),
            "instructor_match_issue_ids": [i.id for i in issues],
            "created_at": self.timestamp,
            "updated_at": self.timestamp,
        })
        import_meta = {
            "row_index": idx,
            "row_hash": entity.row_hash,
            "identity_key": primary_key,
            "identity_keys": identity.keys,
            "identity_source": identity.source,
            "matched_key": matched_key or "",
        }
        lineage = {
            "row_index": idx,
            "row_hash": entity.row_hash,
            "identity_key": primary_key,
            "matched_key": matched_key,
        }

        if existing is not None:
            updates = build_schedule_updates(existing, doc, schedule_allow_empty_fields(doc))
            if not updates:
                self.summary.schedules_unchanged += 1
                self.registry.claim(claim_keys, existing["id"])
                self.tx.row_lineage.append(
                    RowLineageEntry(action="unchanged", schedule_id=existing["id"], **lineage)
                )
                return
            change = self.tx.add_change(
                "schedules", "modify", updates, existing,
                diff=build_diff(existing, updates),
                group_key=group_key,
                import_meta=import_meta,
            )
            internal = get_internal_fields("schedules")
            if all(key in internal for key in updates):
                self.summary.schedules_metadata_only += 1
            else:
                self.summary.schedules_updated += 1
            action, schedule_id = "update", existing["id"]
        else:
            change = self.tx.add_change(
                "schedules", "add", doc,
                group_key=group_key,
                import_meta=import_meta,
            )
            self.summary.schedules_added += 1
            action, schedule_id = "add", build_schedule_doc_id(primary_key)

        self._link_issues(issues, change)
        self.registry.claim(claim_keys, change.id)
        self.tx.row_lineage.append(
            RowLineageEntry(action=action, change_id=change.id, schedule_id=schedule_id, **lineage)
        )

    # ─── Instructors ───────────────────────────────────────────

    def _resolve_instructors(
        self, entity: ScheduleEntity, label: str, idx: int
    ) -> tuple[list[dict[str, Any]], list[MatchingIssue], dict[str, dict[str, Any]]]:
        candidates = [
            ref for ref in entity.instructors
            if not ref.is_staff and (ref.first_name or ref.last_name or normalize_baylor_id(ref.instructor_id))
        ]
        if not candidates:
            self.report.add_warning(
                "instructor_unassigned", f"{label}: Instructor parsed as staff/unassigned",
                collection="schedules", row_index=idx,
            )
        for ref in candidates:
            if not normalize_baylor_id(ref.instructor_id):
                self.report.add_warning(
                    "missing_instructor_id",
                    f"{label}: Missing instructor ID for {ref.last_name or ref.first_name or 'Unknown'}",
                    collection="schedules", row_index=idx,
                )

        assignments: list[dict[str, Any]] = []
        issues: list[MatchingIssue] = []
        people: dict[str, dict[str, Any]] = {}
        for ref in candidates:
            result = self.matcher.match(
                PersonQuery(
                    first_name=ref.first_name,
                    last_name=ref.last_name,
                    baylor_id=normalize_baylor_id(ref.instructor_id),
                    clss_instructor_id=ref.instructor_id,
                ),
                self.snapshot.people,
            )
            if result.is_exact:
                person = result.person
                people[person["id"]] = person
                self.person_backfill.queue(
                    person, build_person_backfill(self.person_backfill.current(person), ref)
                )
                assignments.append({
                    "person_id": person["id"],
                    "is_primary": ref.is_primary,
                    "percentage": ref.percentage,
                })
                continue
            issue = self._match_issue(ref, result)
            if issue is None:
                continue
            if issue not in issues:
                issues.append(issue)
            assignments.append({
                "match_issue_id": issue.id,
                "is_primary": ref.is_primary,
                "percentage": ref.percentage,
            })

        if assignments and not any(a["is_primary"] for a in assignments):
            assignments[0]["is_primary"] = True
        return assignments, issues, people

    def _match_issue(self, ref: InstructorRef, result: MatchResult) -> MatchingIssue | None:
        """The batch's single MatchingIssue for this instructor reference."""
        baylor_id = normalize_baylor_id(ref.instructor_id)
        match_key = f"baylor:{baylor_id}" if baylor_id else make_name_key(ref.first_name, ref.last_name)
        if not match_key:
            return None
        issue = self.issues_by_key.get(match_key)
        if issue is not None:
            return issue

        proposed = PersonEntity(
            first_name=ref.first_name,
            last_name=ref.last_name,
            name=f"{ref.first_name} {ref.last_name}".strip(),
            baylor_id=baylor_id,
            external_ids={"clss_instructor_id": ref.instructor_id} if ref.instructor_id else {},
            roles=["faculty"],
        ).to_document()
        issue = self.tx.add_match_issue(
            import_type="schedule",
            match_key=match_key,
            reason=result.reason or "No exact match",
            proposed_person=proposed,
            candidates=result.candidates,
        )
        pending = self.tx.add_change(
            "people", "add", {**proposed, "created_at": self.timestamp, "updated_at": self.timestamp},
            group_key=f"person_{issue.id}",
            pending_resolution=True,
            match_issue_id=issue.id,
        )
        issue.pending_person_change_id = pending.id
        self.issues_by_key[match_key] = issue
        return issue

    def _link_issues(self, issues: list[MatchingIssue], change: Change) -> None:
        for issue in issues:
            if change.id not in issue.schedule_change_ids:
                issue.schedule_change_ids.append(change.id)

    @staticmethod
    def _instructor_display(entity: ScheduleEntity, person: dict[str, Any] | None) -> str:
        if len(entity.instructors) > 1 or person is None:
            return entity.instructor_name
        first = clean_text(person.get("first_name"))
        last = clean_text(person.get("last_name"))
        if first and last:
            return f"{last}, {first}"
        return last or first or entity.instructor_name

    # ─── Rooms ─────────────────────────────────────────────────

    def _resolve_rooms(self, entity: ScheduleEntity, group_key: str) -> None:
        for room in entity.rooms:
            if room_structural_error(room):
                continue
            stored = self.rooms.find(room)
            if stored is None:
                self.tx.add_change(
                    "rooms", "add",
                    {**room.to_document(), "created_at": self.timestamp, "updated_at": self.timestamp},
                    group_key=group_key,
                )
                self.rooms.add_placeholder(room)
                continue
            if stored["id"] in self.rooms.created:
                continue
            self.room_backfill.queue(stored, build_room_backfill(self.room_backfill.current(stored), room))


# ─── Directory Imports ────────────────────────────────────────

class _DirectoryPreview:
    def __init__(
        self,
        transaction: ImportTransaction,
        snapshot: StoreSnapshot,
        matcher: PersonMatcher,
        options: PreviewOptions,
        timestamp: str,
    ):
        self.tx = transaction
        self.snapshot = snapshot
        self.matcher = matcher
        self.options = options
        self.timestamp = timestamp
        self.summary = transaction.preview_summary
        self.report = transaction.validation
        self.rooms = _RoomIndex(snapshot.rooms)
        self.issues_by_key: dict[str, MatchingIssue] = {}

    def run(self, rows: list[dict[str, Any]]) -> None:
        self.summary.rows_total = len(rows)
        for position, row in enumerate(rows, start=1):
            self._process_row(row, row_index(row, position))

    def _skip(self, idx: int, digest: str, reason: str) -> None:
        self.summary.rows_skipped += 1
        self.tx.row_lineage.append(
            RowLineageEntry(row_index=idx, action="skipped", reason=reason, row_hash=digest)
        )

    def _add_office_room(self, person: PersonEntity, group_key: str) -> None:
        room = person.office_room
        if not self.options.include_office_rooms or room is None:
            return
        if self.rooms.find(room) is not None:
            return
        self.tx.add_change(
            "rooms", "add",
            {**room.to_document(), "created_at": self.timestamp, "updated_at": self.timestamp},
            group_key=group_key,
        )
        self.rooms.add_placeholder(room)

    def _process_row(self, row: dict[str, Any], idx: int) -> None:
        digest = row_hash(row)
        person = project_person_row(row)
        if person is None:
            self._skip(idx, digest, "Empty row")
            return
        error = person_structural_error(person)
        if error:
            type_, message = error
            self.report.add_error(type_, f"Row {idx}: {message}", collection="people", row_index=idx)
            self._skip(idx, digest, message)
            return

        result = self.matcher.match(
            PersonQuery(first_name=person.first_name, last_name=person.last_name, email=person.email),
            self.snapshot.people,
        )

        if result.is_exact:
            existing = result.person
            group_key = f"dir_{existing['id']}"
            self._add_office_room(person, group_key)
            updates = build_directory_person_updates(existing, person)
            if not updates:
                self.tx.row_lineage.append(RowLineageEntry(
                    row_index=idx, action="unchanged", row_hash=digest, schedule_id=None,
                    matched_key=result.match_type,
                ))
                return
            change = self.tx.add_change(
                "people", "modify", updates, existing,
                diff=build_diff(existing, updates),
                group_key=group_key,
            )
            self.tx.row_lineage.append(RowLineageEntry(
                row_index=idx, action="update", row_hash=digest, change_id=change.id,
                matched_key=result.match_type,
            ))
            return

        match_key = person.email or make_name_key(person.first_name, person.last_name)
        if not match_key:
            self._skip(idx, digest, "No email or name to match on")
            return

        group_key = f"dir_{match_key}"
        proposed = person.to_document()
        issue = self.issues_by_key.get(match_key)
        if issue is None:
            issue = self.tx.add_match_issue(
                import_type="directory",
                match_key=match_key,
                reason=result.reason or "No exact match",
                proposed_person=proposed,
                candidates=result.candidates,
            )
            self._add_office_room(person, group_key)
            pending = self.tx.add_change(
                "people", "add", {**proposed, "created_at": self.timestamp, "updated_at": self.timestamp},
                group_key=group_key,
                pending_resolution=True,
                match_issue_id=issue.id,
            )
            issue.pending_person_change_id = pending.id
            self.issues_by_key[match_key] = issue
        else:
            issue.proposed_person = _merge_if_missing(issue.proposed_person, proposed)
            pending = self.tx.get_change(issue.pending_person_change_id)
            if pending is not None:
                pending.new_data = _merge_if_missing(pending.new_data, proposed)
            self._add_office_room(person, group_key)

        self.tx.row_lineage.append(RowLineageEntry(
            row_index=idx, action="add", row_hash=digest, change_id=issue.pending_person_change_id,
        ))


# ─── Entry Point ──────────────────────────────────────────────

def build_preview(
    rows: list[dict[str, Any]],
    import_type: str,
    semester: str = "",
    snapshot: StoreSnapshot | None = None,
    *,
    matcher: PersonMatcher | None = None,
    now: datetime | None = None,
    transaction_id: str | None = None,
    description: str = "",
    created_by: str | None = None,
    options: PreviewOptions | None = None,
) -> ImportTransaction:
    """
    Compute the reviewable change-set for one batch.

    `semester` is the fallback term for rows that carry none.
    """
    if import_type not in ("schedule", "directory"):
        raise UnknownImportTypeError(f"Unknown import type: {import_type}")
    snapshot = snapshot or StoreSnapshot()
    matcher = matcher or NameSimilarityMatcher()
    options = options or PreviewOptions()
    now = now or datetime.now(timezone.utc)
    timestamp = now.isoformat()

    transaction = ImportTransaction(
        id=transaction_id or new_transaction_id(now),
        import_type=import_type,
        description=description or f"{import_type.capitalize()} import",
        semester=semester,
        created_at=now,
        created_by=created_by or settings.DEFAULT_ACTOR,
    )

    if import_type == "schedule":
        _SchedulePreview(transaction, snapshot, matcher, semester, timestamp).run(rows)
    else:
        _DirectoryPreview(transaction, snapshot, matcher, options, timestamp).run(rows)

    validate_transaction(transaction, snapshot, options.conflict_bucket_minutes)

    summary = transaction.preview_summary
    summary.rows_processed = summary.rows_total - summary.rows_skipped
    summary.people_added = len(transaction.changes["people"].added)
    summary.people_updated = len(transaction.changes["people"].modified)
    summary.rooms_added = len(transaction.changes["rooms"].added)
    summary.rooms_updated = len(transaction.changes["rooms"].modified)
    summary.match_issues = len(transaction.matching_issues)
    if not transaction.semester and transaction.term_codes:
        transaction.semester = ", ".join(transaction.term_codes)

    transaction.import_metadata = {
        "row_count": len(rows),
        "row_hashes": [entry.row_hash for entry in transaction.row_lineage],
        "import_type": import_type,
        "file_name": options.file_name,
    }

    log.info(
        "Preview %s (%s): %d rows, %d added, %d updated, %d unchanged, %d skipped, "
        "%d match issues, %d errors, %d warnings",
        transaction.id,
        import_type,
        summary.rows_total,
        summary.schedules_added + summary.people_added,
        summary.schedules_updated + summary.people_updated,
        summary.schedules_unchanged,
        summary.rows_skipped,
        summary.match_issues,
        len(transaction.validation.errors),
        len(transaction.validation.warnings),
    )
    return transaction
