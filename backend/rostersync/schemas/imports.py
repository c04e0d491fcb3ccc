"""Pydantic schemas for the import pipeline: changes, transactions, selection, commit."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from rostersync.core.collection_config import get_internal_fields

CollectionName = Literal["schedules", "people", "rooms"]
ImportType = Literal["schedule", "directory"]
TransactionStatus = Literal["preview", "committed", "partial"]

CHANGE_COLLECTIONS: tuple[str, ...] = ("schedules", "people", "rooms")


# ─── Changes ───────────────────────────────────────────────────

class DiffEntry(BaseModel):
    """One field-level difference: stored value → incoming value."""
    model_config = ConfigDict(populate_by_name=True)

    key: str
    from_: Any = Field(None, alias="from")
    to: Any = None


class Change(BaseModel):
    """
    One proposed mutation of one document.

    For `modify`, new_data holds only the keys to write and diff has an
    entry for exactly those keys whose value differs from original_data.
    """
    id: str
    collection: CollectionName
    action: Literal["add", "modify"]
    group_key: str | None = Field(
        None,
        description="Changes sharing a group key are meant to be selected together",
    )
    original_data: dict[str, Any] | None = None
    new_data: dict[str, Any] = Field(default_factory=dict)
    diff: list[DiffEntry] = Field(default_factory=list)
    pending_resolution: bool = Field(
        False,
        description="Person add that only applies if its match issue resolves to 'create'",
    )
    match_issue_id: str | None = None
    import_meta: dict[str, Any] | None = None
    applied: bool = False
    document_id: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def visible_diff(self) -> list[DiffEntry]:
        """Diff entries shown to reviewers; internal linking fields are hidden."""
        internal = get_internal_fields(self.collection)
        return [d for d in self.diff if d.key not in internal]

    @property
    def diff_keys(self) -> list[str]:
        return [d.key for d in self.diff]


class CollectionChanges(BaseModel):
    added: list[Change] = Field(default_factory=list)
    modified: list[Change] = Field(default_factory=list)


# ─── Person Matching ───────────────────────────────────────────

class MatchCandidate(BaseModel):
    """An existing person proposed for an ambiguous reference."""
    person: dict[str, Any] = Field(..., description="Summary of the existing person, including id")
    score: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""


class MatchResolution(BaseModel):
    """How a reviewer resolved a matching issue."""
    action: Literal["link", "create"]
    person_id: str | None = Field(None, description="Existing person to link (action='link')")


class MatchingIssue(BaseModel):
    """
    One ambiguous person reference per batch.

    Dependent schedule changes stay gated until the issue is resolved.
    """
    id: str
    type: str = "person"
    import_type: ImportType = "schedule"
    match_key: str = ""
    reason: str = ""
    proposed_person: dict[str, Any] = Field(default_factory=dict)
    candidates: list[MatchCandidate] = Field(default_factory=list)
    pending_person_change_id: str | None = None
    schedule_change_ids: list[str] = Field(default_factory=list)
    resolution: MatchResolution | None = None


# ─── Validation ────────────────────────────────────────────────

class ValidationIssue(BaseModel):
    type: str = Field(..., description="e.g. invalid_crn, orphaned_reference, potential_teaching_conflict")
    message: str
    collection: str | None = None
    change_id: str | None = None
    row_index: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ValidationReport(BaseModel):
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    def add_error(self, type_: str, message: str, **kwargs: Any) -> ValidationIssue:
        issue = ValidationIssue(type=type_, message=message, **kwargs)
        self.errors.append(issue)
        return issue

    def add_warning(self, type_: str, message: str, **kwargs: Any) -> ValidationIssue:
        issue = ValidationIssue(type=type_, message=message, **kwargs)
        self.warnings.append(issue)
        return issue

    def warnings_of(self, type_: str) -> list[ValidationIssue]:
        return [w for w in self.warnings if w.type == type_]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def summary(self) -> dict[str, int]:
        return {
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "orphaned_references": len(self.warnings_of("orphaned_reference")),
            "potential_conflicts": len(self.warnings_of("potential_teaching_conflict")),
        }


# ─── Collisions / Summary / Lineage ────────────────────────────

class CollisionExample(BaseModel):
    key: str
    existing_id: str = ""
    incoming_id: str = ""
    preferred_id: str = ""


class CollisionSummary(BaseModel):
    """Identity keys claimed by more than one record."""
    total: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    examples: list[CollisionExample] = Field(default_factory=list)

    def record(self, key: str, existing_id: str, incoming_id: str, preferred_id: str) -> None:
        self.total += 1
        prefix = key.split(":", 1)[0] or "unknown"
        self.by_type[prefix] = self.by_type.get(prefix, 0) + 1
        if len(self.examples) < 5:
            self.examples.append(CollisionExample(
                key=key,
                existing_id=existing_id,
                incoming_id=incoming_id,
                preferred_id=preferred_id,
            ))


class PreviewSummary(BaseModel):
    rows_total: int = 0
    rows_processed: int = 0
    rows_skipped: int = 0
    schedules_added: int = 0
    schedules_updated: int = 0
    schedules_unchanged: int = 0
    schedules_metadata_only: int = 0
    people_added: int = 0
    people_updated: int = 0
    rooms_added: int = 0
    rooms_updated: int = 0
    match_issues: int = 0


class RowLineageEntry(BaseModel):
    """What happened to one raw row."""
    row_index: int
    action: Literal["add", "update", "unchanged", "skipped"]
    reason: str | None = None
    row_hash: str = ""
    identity_key: str | None = None
    matched_key: str | None = None
    change_id: str | None = None
    schedule_id: str | None = None


# ─── Commit Results ────────────────────────────────────────────

class CommitStats(BaseModel):
    total_changes: int = 0
    schedules_added: int = 0
    schedules_updated: int = 0
    people_added: int = 0
    people_updated: int = 0
    rooms_added: int = 0
    rooms_updated: int = 0


class CommitResult(BaseModel):
    transaction_id: str
    semester: str = ""
    status: TransactionStatus = "committed"
    stats: CommitStats = Field(default_factory=CommitStats)
    applied_change_ids: list[str] = Field(default_factory=list)
    document_ids: dict[str, str] = Field(
        default_factory=dict,
        description="change id → id of the document it wrote",
    )
    term_codes: list[str] = Field(default_factory=list)


# ─── Transaction ───────────────────────────────────────────────

def _sequence(change_id: str) -> int:
    """'change_0012' → 12"""
    tail = change_id.rsplit("_", 1)[-1]
    return int(tail) if tail.isdigit() else 0


def _empty_changes() -> dict[str, CollectionChanges]:
    return {name: CollectionChanges() for name in CHANGE_COLLECTIONS}


class ImportTransaction(BaseModel):
    """
    The reviewable change-set produced by one preview.

    Built once by the preview, read-only for review, and marked
    committed (or partial) by the commit executor.
    """
    id: str
    import_type: ImportType
    description: str = ""
    semester: str = ""
    created_at: datetime
    created_by: str = "system"
    status: TransactionStatus = "preview"
    changes: dict[str, CollectionChanges] = Field(default_factory=_empty_changes)
    matching_issues: list[MatchingIssue] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)
    preview_summary: PreviewSummary = Field(default_factory=PreviewSummary)
    collision_summary: CollisionSummary = Field(default_factory=CollisionSummary)
    row_lineage: list[RowLineageEntry] = Field(default_factory=list)
    import_metadata: dict[str, Any] = Field(default_factory=dict)
    committed_at: datetime | None = None
    commit_result: CommitResult | None = None

    # ─── Building ──────────────────────────────────────────────

    def add_change(
        self,
        collection: str,
        action: str,
        new_data: dict[str, Any],
        original_data: dict[str, Any] | None = None,
        *,
        diff: list[DiffEntry] | None = None,
        group_key: str | None = None,
        pending_resolution: bool = False,
        match_issue_id: str | None = None,
        import_meta: dict[str, Any] | None = None,
    ) -> Change:
        count = sum(len(b.added) + len(b.modified) for b in self.changes.values())
        change = Change(
            id=f"change_{count + 1:04d}",
            collection=collection,
            action=action,
            new_data=new_data,
            original_data=original_data,
            diff=diff or [],
            group_key=group_key,
            pending_resolution=pending_resolution,
            match_issue_id=match_issue_id,
            import_meta=import_meta,
        )
        bucket = self.changes.setdefault(collection, CollectionChanges())
        (bucket.added if action == "add" else bucket.modified).append(change)
        return change

    def add_match_issue(self, **fields: Any) -> MatchingIssue:
        issue = MatchingIssue(id=f"match_{len(self.matching_issues) + 1:04d}", **fields)
        self.matching_issues.append(issue)
        return issue

    # ─── Read-only views ───────────────────────────────────────

    def get_all_changes(self) -> list[Change]:
        """Every change in creation order."""
        changes = [
            change
            for bucket in self.changes.values()
            for change in (*bucket.added, *bucket.modified)
        ]
        return sorted(changes, key=lambda c: _sequence(c.id))

    def get_change(self, change_id: str) -> Change | None:
        return next((c for c in self.get_all_changes() if c.id == change_id), None)

    def get_issue(self, issue_id: str) -> MatchingIssue | None:
        return next((i for i in self.matching_issues if i.id == issue_id), None)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def stats(self) -> dict[str, int]:
        counts = {
            f"{name}_{action}": len(getattr(bucket, action))
            for name, bucket in self.changes.items()
            for action in ("added", "modified")
        }
        counts["total_changes"] = sum(counts.values())
        return counts

    @property
    def term_codes(self) -> list[str]:
        codes = {
            (c.new_data.get("term_code") or (c.original_data or {}).get("term_code") or "")
            for c in self.get_all_changes()
            if c.collection == "schedules"
        }
        return sorted(code for code in codes if code)


# ─── Selection ─────────────────────────────────────────────────

class Selection(BaseModel):
    """
    Which changes (and which fields of modify changes) to commit.

    An immutable value: every helper returns a new Selection.
    change_ids=None means "every change not gated by an unresolved
    match issue".
    """
    model_config = ConfigDict(frozen=True)

    change_ids: tuple[str, ...] | None = None
    field_map: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    resolutions: dict[str, MatchResolution] = Field(default_factory=dict)

    @classmethod
    def default(cls, transaction: ImportTransaction) -> "Selection":
        """Explicit form of the default selection."""
        return cls().materialize(transaction)

    # ─── Gating ────────────────────────────────────────────────

    def effective_resolutions(self, transaction: ImportTransaction) -> dict[str, MatchResolution]:
        resolved = {i.id: i.resolution for i in transaction.matching_issues if i.resolution}
        resolved.update(self.resolutions)
        return resolved

    def unresolved_issues(self, transaction: ImportTransaction) -> list[MatchingIssue]:
        resolved = self.effective_resolutions(transaction)
        return [i for i in transaction.matching_issues if i.id not in resolved]

    def gated_change_ids(self, transaction: ImportTransaction) -> set[str]:
        """Changes that cannot be committed while their match issue is unresolved."""
        gated: set[str] = set()
        for issue in self.unresolved_issues(transaction):
            gated.update(issue.schedule_change_ids)
            if issue.pending_person_change_id:
                gated.add(issue.pending_person_change_id)
        return gated

    def selected_gated_change_ids(self, transaction: ImportTransaction) -> list[str]:
        """Explicitly selected changes that are gated; must be empty to commit."""
        if self.change_ids is None:
            return []
        gated = self.gated_change_ids(transaction)
        return [cid for cid in self.change_ids if cid in gated]

    def effective_change_ids(self, transaction: ImportTransaction) -> list[str]:
        """
        Ids of the changes a commit would apply, in creation order.

        Pending person adds are applied only for 'create' resolutions and
        are pulled in automatically for them.
        """
        resolutions = self.effective_resolutions(transaction)
        gated = self.gated_change_ids(transaction)
        if self.change_ids is None:
            chosen = {c.id for c in transaction.get_all_changes()} - gated
        else:
            chosen = set(self.change_ids)

        for issue in transaction.matching_issues:
            pending = issue.pending_person_change_id
            if not pending:
                continue
            resolution = resolutions.get(issue.id)
            if resolution and resolution.action == "create":
                chosen.add(pending)
            else:
                chosen.discard(pending)

        return [c.id for c in transaction.get_all_changes() if c.id in chosen]

    def fields_for(self, change_id: str) -> tuple[str, ...] | None:
        keys = self.field_map.get(change_id)
        return tuple(keys) if keys else None

    # ─── Builders ──────────────────────────────────────────────

    def materialize(self, transaction: ImportTransaction) -> "Selection":
        if self.change_ids is not None:
            return self
        gated = self.gated_change_ids(transaction)
        ids = tuple(c.id for c in transaction.get_all_changes() if c.id not in gated)
        return self.model_copy(update={"change_ids": ids})

    def with_changes(self, transaction: ImportTransaction, *change_ids: str) -> "Selection":
        base = self.materialize(transaction).change_ids or ()
        added = tuple(cid for cid in change_ids if cid not in base)
        return self.model_copy(update={"change_ids": base + added})

    def without_changes(self, transaction: ImportTransaction, *change_ids: str) -> "Selection":
        base = self.materialize(transaction).change_ids or ()
        return self.model_copy(update={"change_ids": tuple(c for c in base if c not in change_ids)})

    def with_group(self, transaction: ImportTransaction, group_key: str) -> "Selection":
        ids = [c.id for c in transaction.get_all_changes() if c.group_key == group_key]
        return self.with_changes(transaction, *ids)

    def without_group(self, transaction: ImportTransaction, group_key: str) -> "Selection":
        ids = [c.id for c in transaction.get_all_changes() if c.group_key == group_key]
        return self.without_changes(transaction, *ids)

    def with_fields(self, change_id: str, *keys: str) -> "Selection":
        return self.model_copy(update={"field_map": {**self.field_map, change_id: tuple(keys)}})

    def with_resolution(
        self, issue_id: str, action: str, person_id: str | None = None
    ) -> "Selection":
        resolution = MatchResolution(action=action, person_id=person_id)
        return self.model_copy(update={"resolutions": {**self.resolutions, issue_id: resolution}})


# ─── API Requests / Responses ─────────────────────────────────

class PreviewRowsRequest(BaseModel):
    """Preview already-parsed rows (the file-upload endpoint parses them itself)."""
    rows: list[dict[str, Any]] = Field(..., description="Column name → cell value, one dict per row")
    import_type: ImportType | None = Field(
        None, description="Omit to detect from the header signature"
    )
    semester: str = Field("", description="Fallback term for rows without one")
    description: str = ""
    actor: str | None = None


class CommitRequest(BaseModel):
    selected_change_ids: list[str] | None = Field(
        None, description="Omit to commit every change not gated by an unresolved match"
    )
    field_map: dict[str, list[str]] | None = Field(
        None, description="change id → diff keys to apply for modify changes"
    )
    match_resolutions: dict[str, MatchResolution] | None = None
    actor: str | None = None

    def to_selection(self) -> Selection:
        return Selection(
            change_ids=tuple(self.selected_change_ids) if self.selected_change_ids is not None else None,
            field_map={k: tuple(v) for k, v in (self.field_map or {}).items()},
            resolutions=self.match_resolutions or {},
        )


class TransactionSummary(BaseModel):
    """One line of import history."""
    id: str
    import_type: str
    semester: str | None
    status: str
    created_by: str | None
    total_changes: int
    created_at: datetime


class CommitAuditResponse(BaseModel):
    transaction_id: str
    term: str | None
    actor: str
    status: str
    stats: dict[str, Any]
    selection: dict[str, Any]
    applied_change_ids: list[str]
    committed_at: datetime
