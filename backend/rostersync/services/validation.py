"""
Validator: structural, cross-reference and teaching-conflict passes.

All passes are pure functions over the batch and a store snapshot.

  structural       per-entity required fields and formats → errors;
                   the row is excluded from the change set
  cross-reference  schedule space/instructor ids that resolve to
                   nothing → orphaned_reference warnings
  teaching         same instructor, same day, overlapping times
                   → potential_teaching_conflict warnings
  modification     identity or instructor fields changed on modify
                   → identity_change / instructor_change warnings
"""

from collections import defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import Any

from rostersync.core.collection_config import get_identity_fields
from rostersync.core.config import settings
from rostersync.schemas.entities import PersonEntity, RoomEntity, ScheduleEntity
from rostersync.schemas.imports import Change, ImportTransaction, ValidationReport
from rostersync.services.diffing import format_diff_value
from rostersync.services.meeting_patterns import (
    DAY_CODES,
    format_minutes,
    has_valid_meeting_pattern,
    is_timed,
    time_to_minutes,
)
from rostersync.services.names import format_person_name
from rostersync.services.normalization import normalize_crn
from rostersync.services.store import StoreSnapshot


# ─── Structural ───────────────────────────────────────────────

def schedule_structural_error(entity: ScheduleEntity) -> tuple[str, str] | None:
    """
    First structural problem with a projected schedule, as (type, message).

    Checks run in a fixed order so a row always reports the same error.
    """
    if not entity.course_code:
        return "missing_course", "Missing Course"
    if not entity.section:
        return "missing_section", "Missing Section"
    if not entity.term and not entity.term_code:
        return "missing_term", "Missing Semester"
    if not entity.instructor_field:
        return "missing_instructor", "Missing Instructor"
    if not normalize_crn(entity.crn):
        return "invalid_crn", f'Invalid CRN "{entity.crn}"'
    if (
        entity.location_type == "room"
        and not entity.is_online
        and not has_valid_meeting_pattern(entity.meeting_patterns)
    ):
        return "invalid_meeting_pattern", "Room assigned but no valid meeting pattern"
    return None


def person_structural_error(entity: PersonEntity) -> tuple[str, str] | None:
    if not (entity.email or entity.baylor_id or entity.first_name or entity.last_name):
        return "invalid_person", "Person has no email, id or name"
    return None


def room_structural_error(entity: RoomEntity) -> tuple[str, str] | None:
    if not entity.space_key or not entity.display_name:
        return "invalid_room", f'Room "{entity.display_name or entity.space_key}" has no space key'
    return None


# ─── Cross-Reference ──────────────────────────────────────────

def check_references(
    transaction: ImportTransaction, snapshot: StoreSnapshot, report: ValidationReport
) -> None:
    """
    Space and instructor ids on schedule changes must resolve to a stored
    record or a record added by the same batch. References that wait on a
    match issue are covered by the commit gate and are not repeated here.
    """
    room_ids = snapshot.room_ids | {
        c.new_data.get("space_key") for c in transaction.changes["rooms"].added
    }
    person_ids = set(snapshot.people_by_id)

    for change in transaction.get_all_changes():
        if change.collection != "schedules":
            continue
        data = change.new_data
        for space_id in data.get("space_ids") or []:
            if space_id not in room_ids:
                _orphan(report, change, "space_ids", space_id)
        instructor_ids = list(data.get("instructor_ids") or [])
        if data.get("instructor_id") and data["instructor_id"] not in instructor_ids:
            instructor_ids.append(data["instructor_id"])
        for person_id in instructor_ids:
            if person_id not in person_ids:
                _orphan(report, change, "instructor_ids", person_id)


def _orphan(report: ValidationReport, change: Change, field: str, ref: str) -> None:
    report.add_warning(
        "orphaned_reference",
        f"{change.id}: {field} references unknown id '{ref}'",
        collection=change.collection,
        change_id=change.id,
        details={"field": field, "reference": ref},
    )


# ─── Teaching Conflicts ───────────────────────────────────────

@dataclass(frozen=True)
class _Interval:
    schedule_key: str
    instructor: str
    term: str
    day: str
    start: int
    end: int


def _section_label(schedule: dict[str, Any]) -> str:
    course = schedule.get("course_code") or "?"
    section = schedule.get("section")
    return f"{course}-{section}" if section else course


def _instructor_keys(schedule: dict[str, Any]) -> list[str]:
    keys = list(schedule.get("instructor_ids") or [])
    if schedule.get("instructor_id") and schedule["instructor_id"] not in keys:
        keys.append(schedule["instructor_id"])
    for assignment in schedule.get("instructor_assignments") or []:
        if assignment.get("match_issue_id") and not assignment.get("person_id"):
            keys.append(f"match:{assignment['match_issue_id']}")
    return keys


def _conflict_inputs(
    transaction: ImportTransaction, snapshot: StoreSnapshot
) -> tuple[dict[str, dict[str, Any]], dict[str, str]]:
    """
    Existing schedules of the affected terms merged with incoming adds and
    modifies. Also returns schedule key → change id for the incoming ones.
    """
    term_codes = set(transaction.term_codes)
    merged: dict[str, dict[str, Any]] = {
        s["id"]: s for s in snapshot.schedules if s.get("term_code") in term_codes
    }
    incoming: dict[str, str] = {}
    for change in transaction.get_all_changes():
        if change.collection != "schedules":
            continue
        if change.action == "modify" and change.original_data:
            key = change.original_data.get("id") or change.id
            merged[key] = {**change.original_data, **change.new_data}
        else:
            key = change.id
            merged[key] = change.new_data
        incoming[key] = change.id
    return merged, incoming


def _instructor_display(key: str, schedule: dict[str, Any], snapshot: StoreSnapshot) -> str:
    person = snapshot.people_by_id.get(key)
    if person:
        return format_person_name(person) or key
    return schedule.get("instructor_name") or key


def find_teaching_conflicts(
    transaction: ImportTransaction,
    snapshot: StoreSnapshot,
    report: ValidationReport,
    bucket_minutes: int | None = None,
) -> None:
    """
    Flag instructors booked into overlapping sections.

    Intervals are bucketed by (instructor, term, day, time quantum) so
    only intervals sharing a bucket are compared. One warning is raised
    per pair of sections, listing every day they overlap.
    """
    quantum = bucket_minutes or settings.CONFLICT_BUCKET_MINUTES
    schedules, incoming = _conflict_inputs(transaction, snapshot)

    buckets: dict[tuple, list[_Interval]] = defaultdict(list)
    for key, schedule in schedules.items():
        term = schedule.get("term_code") or schedule.get("term") or ""
        for instructor in _instructor_keys(schedule):
            for pattern in schedule.get("meeting_patterns") or []:
                if not is_timed(pattern):
                    continue
                start = time_to_minutes(pattern["start_time"])
                end = time_to_minutes(pattern["end_time"])
                if end <= start:
                    continue
                interval = _Interval(key, instructor, term, pattern["day"], start, end)
                for slot in range(start // quantum, (end - 1) // quantum + 1):
                    buckets[(instructor, term, pattern["day"], slot)].append(interval)

    compared: set[tuple] = set()
    overlaps: dict[tuple[str, str, str], dict[str, tuple[int, int]]] = defaultdict(dict)
    for intervals in buckets.values():
        for a, b in combinations(intervals, 2):
            if a.schedule_key == b.schedule_key:
                continue
            if a.schedule_key not in incoming and b.schedule_key not in incoming:
                continue
            first, second = sorted((a, b), key=lambda i: (i.schedule_key, i.start))
            pair = (first.instructor, first.schedule_key, second.schedule_key, first.day, first.start, second.start)
            if pair in compared:
                continue
            compared.add(pair)
            start, end = max(a.start, b.start), min(a.end, b.end)
            if start < end:
                overlaps[(first.instructor, first.schedule_key, second.schedule_key)].setdefault(
                    first.day, (start, end)
                )

    for (instructor, key_a, key_b), by_day in sorted(overlaps.items()):
        days = sorted(by_day, key=DAY_CODES.index)
        start, end = by_day[days[0]]
        window = f"{format_minutes(start)}-{format_minutes(end)}"
        schedule_a, schedule_b = schedules[key_a], schedules[key_b]
        name = _instructor_display(instructor, schedule_a, snapshot)
        label_a, label_b = _section_label(schedule_a), _section_label(schedule_b)
        report.add_warning(
            "potential_teaching_conflict",
            f"Potential teaching conflict: {name} may be double-booked on "
            f"{', '.join(days)} at {window} ({label_a} vs {label_b})",
            collection="schedules",
            change_id=incoming.get(key_a) or incoming.get(key_b),
            details={
                "instructor": instructor,
                "instructor_name": name,
                "sections": [label_a, label_b],
                "schedule_keys": [key_a, key_b],
                "days": days,
                "overlap_start": format_minutes(start),
                "overlap_end": format_minutes(end),
                "overlaps": [
                    {"day": d, "start": format_minutes(by_day[d][0]), "end": format_minutes(by_day[d][1])}
                    for d in days
                ],
            },
        )


# ─── Modification Warnings ────────────────────────────────────

INSTRUCTOR_FIELDS = ("instructor_id", "instructor_ids")


def check_modifications(transaction: ImportTransaction, report: ValidationReport) -> None:
    for change in transaction.get_all_changes():
        if change.action != "modify":
            continue
        identity_fields = get_identity_fields(change.collection)
        for entry in change.diff:
            if entry.key in identity_fields:
                report.add_warning(
                    "identity_change",
                    f"{change.id}: {entry.key} changes from "
                    f"'{format_diff_value(entry.from_, entry.key)}' to "
                    f"'{format_diff_value(entry.to, entry.key)}'",
                    collection=change.collection,
                    change_id=change.id,
                    details={"field": entry.key},
                )
        if change.collection == "schedules" and any(k in INSTRUCTOR_FIELDS for k in change.diff_keys):
            report.add_warning(
                "instructor_change",
                f"{change.id}: instructor assignment changes",
                collection="schedules",
                change_id=change.id,
                details={
                    "from": (change.original_data or {}).get("instructor_ids") or [],
                    "to": change.new_data.get("instructor_ids") or [],
                },
            )


def validate_transaction(
    transaction: ImportTransaction, snapshot: StoreSnapshot, bucket_minutes: int | None = None
) -> ValidationReport:
    """Run the batch-level passes, appending to the transaction's report."""
    report = transaction.validation
    check_references(transaction, snapshot, report)
    find_teaching_conflicts(transaction, snapshot, report, bucket_minutes)
    check_modifications(transaction, report)
    return report
