"""
Diff engine: incoming entity vs. stored record.

Schedule modifies follow merge rules rather than a plain field compare:
  - bookkeeping fields (created_at, updated_at, row_hash) are never diffed
  - display/linking fields (instructor_name, instructor_match_issue_ids)
    are never written on modify
  - identity_keys merges as a union; identity_key only upgrades
  - empty incoming values never overwrite stored data, except room
    fields on online / no-room schedules
  - a longer stored course_title survives a truncated incoming one
  - list and id fields compare as normalized sets

People and rooms matched during a schedule import only get backfill
updates: values the stored record is missing.
"""

import json
from typing import Any

from rostersync.core.collection_config import get_ignored_fields
from rostersync.schemas.entities import InstructorRef, PersonEntity, RoomEntity
from rostersync.schemas.imports import DiffEntry
from rostersync.services.identity import identity_strength, merge_identity_keys
from rostersync.services.meeting_patterns import format_meeting_patterns, meeting_pattern_token
from rostersync.services.normalization import (
    clean_text,
    is_empty,
    normalize_baylor_id,
    normalize_course_code,
    normalize_identifier,
    normalize_section,
    parse_number,
)
from rostersync.services.terms import normalize_term_label

NON_WRITTEN_SCHEDULE_FIELDS = frozenset({"instructor_name", "instructor_match_issue_ids"})
ROOM_FIELDS = ("space_ids", "space_display_names")


# ─── Equivalence ──────────────────────────────────────────────

def _as_list(value: Any) -> list:
    if value is None or value == "":
        return []
    return list(value) if isinstance(value, (list, tuple, set)) else [value]


def _normalized_set(value: Any, normalize=lambda v: clean_text(v)) -> list[str]:
    items = (normalize(v) for v in _as_list(value))
    return sorted({item for item in items if item})


def _assignment_token(assignment: Any) -> str:
    if not isinstance(assignment, dict):
        return ""
    who = clean_text(assignment.get("person_id")) or (
        f"match:{assignment['match_issue_id']}" if assignment.get("match_issue_id") else ""
    )
    parts = [who, clean_text(assignment.get("percentage")), "primary" if assignment.get("is_primary") else ""]
    return "|".join(p for p in parts if p)


def schedule_values_equivalent(key: str, existing: Any, incoming: Any) -> bool:
    if key == "space_display_names":
        return _normalized_set(existing, lambda v: normalize_identifier(clean_text(v))) == \
            _normalized_set(incoming, lambda v: normalize_identifier(clean_text(v)))
    if key in ("space_ids", "instructor_ids", "cross_list_crns"):
        return _normalized_set(existing) == _normalized_set(incoming)
    if key == "meeting_patterns":
        return _normalized_set(existing, meeting_pattern_token) == \
            _normalized_set(incoming, meeting_pattern_token)
    if key == "instructor_assignments":
        return _normalized_set(existing, _assignment_token) == _normalized_set(incoming, _assignment_token)
    if key == "credits":
        return parse_number(existing) == parse_number(incoming)
    if key == "course_code":
        return normalize_course_code(existing) == normalize_course_code(incoming)
    if key == "section":
        return normalize_section(existing) == normalize_section(incoming)
    if key == "term":
        return normalize_term_label(existing) == normalize_term_label(incoming)
    if key in ("term_code", "crn", "clss_id", "instructor_id"):
        return clean_text(existing) == clean_text(incoming)
    return existing == incoming


def _prefer_existing_title(key: str, existing: Any, incoming: Any) -> bool:
    """A stored course title that the incoming one merely truncates is kept."""
    if key != "course_title" or not existing or not incoming:
        return False
    stored, new = clean_text(existing), clean_text(incoming)
    return len(stored) > len(new) and stored.lower().startswith(new.lower())


# ─── Schedule Merge ───────────────────────────────────────────

def build_schedule_updates(
    existing: dict[str, Any],
    incoming: dict[str, Any],
    allow_empty_fields: frozenset[str] | set[str] = frozenset(),
) -> dict[str, Any]:
    """
    Keys to write onto `existing` so it reflects `incoming`.

    Returns an empty dict when the stored record is already current.
    """
    ignored = get_ignored_fields("schedules") | NON_WRITTEN_SCHEDULE_FIELDS
    updates: dict[str, Any] = {}

    for key, value in incoming.items():
        if key in ignored or key == "id":
            continue
        current = existing.get(key)

        if key == "identity_keys":
            merged = merge_identity_keys(current, value)
            if merged != (current or []):
                updates[key] = merged
            continue

        if key == "identity_key":
            if value and (not current or identity_strength(value) >= identity_strength(current)):
                if value != current:
                    updates[key] = value
            continue

        if key == "identity_source" and existing.get("identity_key"):
            if identity_strength(incoming.get("identity_key")) < identity_strength(existing["identity_key"]):
                continue

        if is_empty(value) and key not in allow_empty_fields:
            continue
        if _prefer_existing_title(key, current, value):
            continue
        if not schedule_values_equivalent(key, current, value):
            updates[key] = value

    return updates


def schedule_allow_empty_fields(incoming: dict[str, Any]) -> frozenset[str]:
    if incoming.get("location_type") == "no_room" or incoming.get("is_online"):
        return frozenset(ROOM_FIELDS)
    return frozenset()


def build_diff(original: dict[str, Any], updates: dict[str, Any]) -> list[DiffEntry]:
    """One entry per update key, stored value → incoming value."""
    return [DiffEntry(key=key, from_=original.get(key), to=value) for key, value in updates.items()]


def format_diff_value(value: Any, key: str = "") -> str:
    """Display form of a diff value."""
    if value is None:
        return ""
    if key == "meeting_patterns" and isinstance(value, list):
        return format_meeting_patterns(value)
    if isinstance(value, list):
        if any(isinstance(v, (dict, list)) for v in value):
            return json.dumps(value, sort_keys=True, default=str)
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


# ─── Backfill (people / rooms) ────────────────────────────────

def merge_external_ids(base: dict[str, Any] | None, updates: dict[str, Any]) -> dict[str, Any]:
    """Fill missing external ids; existing ids are never replaced."""
    merged = dict(base or {})
    for key, value in updates.items():
        if is_empty(value):
            continue
        if not merged.get(key):
            merged[key] = value
    return merged


def _backfill_baylor_id(value: Any) -> str:
    digits = normalize_baylor_id(value)
    return digits if len(digits) == 9 else ""


def build_person_backfill(person: dict[str, Any], instructor: InstructorRef) -> dict[str, Any]:
    """Values a matched instructor row can fill in on a stored person."""
    updates: dict[str, Any] = {}
    first = clean_text(instructor.first_name)
    last = clean_text(instructor.last_name)
    raw_id = clean_text(instructor.instructor_id)
    baylor_id = _backfill_baylor_id(raw_id)

    if not person.get("first_name") and first:
        updates["first_name"] = first
    if not person.get("last_name") and last:
        updates["last_name"] = last
    if not clean_text(person.get("name")) and (first or last):
        updates["name"] = f"{first} {last}".strip()
    if not person.get("baylor_id") and baylor_id:
        updates["baylor_id"] = baylor_id

    external = person.get("external_ids") or {}
    external_updates = {}
    if raw_id and not external.get("clss_instructor_id"):
        external_updates["clss_instructor_id"] = raw_id
    if baylor_id and not external.get("baylor_id"):
        external_updates["baylor_id"] = baylor_id
    if external_updates:
        updates["external_ids"] = merge_external_ids(external, external_updates)
    return updates


def build_room_backfill(room: dict[str, Any], parsed: RoomEntity) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    for key in ("space_key", "building_code", "building_display_name", "space_number", "display_name"):
        value = getattr(parsed, key)
        if is_empty(value):
            continue
        if is_empty(room.get(key)):
            updates[key] = value
    return updates


# ─── Directory People ─────────────────────────────────────────

DIRECTORY_UPDATE_FIELDS = ("email", "phone", "office", "office_space_id")


def build_directory_person_updates(person: dict[str, Any], incoming: PersonEntity) -> dict[str, Any]:
    """Contact fields from a directory row that differ from the stored person."""
    updates: dict[str, Any] = {}
    for key in DIRECTORY_UPDATE_FIELDS:
        value = getattr(incoming, key)
        if value and (person.get(key) or "") != value:
            updates[key] = value
    return updates
