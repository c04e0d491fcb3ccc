"""
Schedule identity keys.

Every schedule gets a list of candidate keys, strongest first:

  clss:<termKey>:<clssId>                            strength 4
  crn:<termKey>:<crn>                                strength 3
  section:<termCode>_<COURSE>_<SECTION>              strength 2
  composite:<COURSE>:<termKey>:<meetings>:<rooms>    strength 1

The strongest available key is the primary key; it decides the
document id of new schedules. Rows within a batch are deduplicated on
every clss, crn and section key and on the stored record they match.
Existing schedules are indexed under every key they carry so an
incoming row matches whichever key the stored record was created with.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from rostersync.schemas.imports import CollisionSummary
from rostersync.services.meeting_patterns import normalize_time
from rostersync.services.normalization import (
    clean_text,
    normalize_course_code,
    normalize_crn,
    normalize_identifier,
    normalize_key_part,
    normalize_section,
)
from rostersync.services.terms import resolve_term

IDENTITY_STRENGTH = {"clss": 4, "crn": 3, "section": 2, "composite": 1}


@dataclass
class ScheduleIdentity:
    keys: list[str] = field(default_factory=list)

    @property
    def primary_key(self) -> str:
        return self.keys[0] if self.keys else ""

    @property
    def source(self) -> str:
        return self.primary_key.split(":", 1)[0] if self.primary_key else ""


def identity_strength(key: str | None) -> int:
    if not key:
        return 0
    return IDENTITY_STRENGTH.get(key.split(":", 1)[0], 0)


# ─── Key Derivation ───────────────────────────────────────────

def _meeting_key(patterns: Iterable[dict] | None) -> str:
    tokens = sorted(
        (
            clean_text(p.get("day")).upper(),
            normalize_time(p.get("start_time")),
            normalize_time(p.get("end_time")),
            "" if p.get("day") and p.get("start_time") else clean_text(p.get("raw")),
        )
        for p in patterns or []
    )
    return "~".join("|".join(part for part in token if part) for token in tokens)


def _room_key(space_ids: Iterable[str] | None, room_names: Iterable[str] | None) -> str:
    ids = sorted(k for k in (normalize_key_part(s) for s in space_ids or []) if k)
    if ids:
        return "|".join(ids)
    names = sorted(n for n in (normalize_identifier(clean_text(r)) for r in room_names or []) if n)
    return "|".join(names)


def derive_schedule_identity(
    *,
    course_code: Any = "",
    section: Any = "",
    term: Any = "",
    term_code: Any = "",
    clss_id: Any = "",
    crn: Any = "",
    meeting_patterns: list[dict] | None = None,
    space_ids: list[str] | None = None,
    room_names: list[str] | None = None,
) -> ScheduleIdentity:
    course = normalize_course_code(course_code)
    section_number = normalize_section(section)
    label, code = resolve_term(term, term_code)
    term_key = code or label or clean_text(term)
    clss = clean_text(clss_id)
    crn_value = normalize_crn(crn)

    keys: list[str] = []
    if clss and term_key:
        keys.append(f"clss:{normalize_key_part(term_key)}:{normalize_key_part(clss)}")
    if crn_value and term_key:
        keys.append(f"crn:{normalize_key_part(term_key)}:{crn_value}")
    if course and section_number and term_key:
        keys.append(f"section:{normalize_key_part(f'{code or term_key}_{course}_{section_number}')}")

    course_part = normalize_key_part(course).upper()
    meeting_part = normalize_key_part(_meeting_key(meeting_patterns))
    room_part = normalize_key_part(_room_key(space_ids, room_names))
    term_part = normalize_key_part(term_key)
    if course_part and term_part and meeting_part and room_part:
        keys.append(f"composite:{course_part}:{term_part}:{meeting_part}:{room_part}")

    return ScheduleIdentity(keys=keys)


def identity_from_schedule(schedule: dict[str, Any]) -> ScheduleIdentity:
    """Identity of a stored schedule document."""
    return derive_schedule_identity(
        course_code=schedule.get("course_code"),
        section=schedule.get("section"),
        term=schedule.get("term"),
        term_code=schedule.get("term_code"),
        clss_id=schedule.get("clss_id"),
        crn=schedule.get("crn"),
        meeting_patterns=schedule.get("meeting_patterns") or [],
        space_ids=schedule.get("space_ids") or [],
        room_names=schedule.get("space_display_names") or [],
    )


def build_schedule_doc_id(primary_key: str) -> str:
    """'crn:202530:33038' → 'sched_crn_202530_33038'"""
    if not primary_key:
        return ""
    return "sched_" + re.sub(r"[^A-Za-z0-9_-]+", "_", primary_key)


# ─── Existing-Data Index ──────────────────────────────────────

def schedule_preference_score(schedule: dict[str, Any]) -> int:
    score = identity_strength(schedule.get("identity_key")) * 10
    if schedule.get("identity_keys"):
        score += 4
    if str(schedule.get("id") or "").startswith("sched_"):
        score += 3
    if schedule.get("clss_id"):
        score += 2
    if schedule.get("crn"):
        score += 1
    return score


def choose_preferred_schedule(a: dict[str, Any], b: dict[str, Any]) -> dict[str, Any]:
    score_a, score_b = schedule_preference_score(a), schedule_preference_score(b)
    if score_a != score_b:
        return a if score_a > score_b else b
    id_a, id_b = str(a.get("id") or ""), str(b.get("id") or "")
    if not id_a and id_b:
        return b
    if not id_b and id_a:
        return a
    return a if id_a <= id_b else b


def build_schedule_identity_index(
    schedules: Iterable[dict[str, Any]],
) -> tuple[dict[str, dict[str, Any]], CollisionSummary]:
    """
    Index existing schedules by every identity key they carry.

    Keys claimed by more than one schedule go to the preferred record
    and are counted in the returned CollisionSummary.
    """
    index: dict[str, dict[str, Any]] = {}
    collisions = CollisionSummary()

    for schedule in schedules:
        stored = [k for k in (schedule.get("identity_keys") or []) if k]
        keys = list(dict.fromkeys([
            *identity_from_schedule(schedule).keys,
            *([schedule["identity_key"]] if schedule.get("identity_key") else []),
            *stored,
        ]))
        for key in keys:
            current = index.get(key)
            if current is None:
                index[key] = schedule
                continue
            if current.get("id") == schedule.get("id"):
                continue
            preferred = choose_preferred_schedule(current, schedule)
            collisions.record(
                key,
                existing_id=str(current.get("id") or ""),
                incoming_id=str(schedule.get("id") or ""),
                preferred_id=str(preferred.get("id") or ""),
            )
            index[key] = preferred

    return index, collisions


def resolve_identity_match(
    keys: list[str], index: dict[str, dict[str, Any]]
) -> tuple[dict[str, Any] | None, str | None]:
    """First key (strongest first) with an indexed schedule wins."""
    for key in keys:
        schedule = index.get(key)
        if schedule is not None:
            return schedule, key
    return None, None


def merge_identity_keys(existing: Iterable[str] | None, incoming: Iterable[str] | None) -> list[str]:
    return list(dict.fromkeys(k for k in [*(existing or []), *(incoming or [])] if k))


# ─── Batch Deduplication ──────────────────────────────────────

def batch_claim_keys(identity: ScheduleIdentity, existing_id: str | None = None) -> list[str]:
    """
    Keys a row holds within one batch: its primary key, every clss, crn
    and section key, and the stored schedule it matched.

    Composite keys below the primary are left out; distinct sections can
    share a room and meeting time.
    """
    keys = [
        identity.primary_key,
        *(k for k in identity.keys if identity_strength(k) >= IDENTITY_STRENGTH["section"]),
    ]
    if existing_id:
        keys.append(f"existing:{existing_id}")
    return list(dict.fromkeys(k for k in keys if k))


class BatchKeyRegistry:
    """
    First-seen owner of each claimed key within one batch.

    The owner is whatever the first row produced: a change id, or the
    matched schedule id when that row turned out unchanged.
    """

    def __init__(self) -> None:
        self._owners: dict[str, str] = {}

    def owner_of(self, key: str) -> str | None:
        return self._owners.get(key)

    def find(self, keys: Iterable[str]) -> tuple[str, str] | None:
        """First already-claimed key and its owner."""
        for key in keys:
            owner = self._owners.get(key)
            if owner is not None:
                return key, owner
        return None

    def claim(self, keys: str | Iterable[str], owner: str) -> None:
        for key in [keys] if isinstance(keys, str) else keys:
            self._owners.setdefault(key, owner)

    def __contains__(self, key: str) -> bool:
        return key in self._owners
