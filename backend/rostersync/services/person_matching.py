"""
Person matching for instructor and directory references.

The matcher is a replaceable strategy: anything implementing
PersonMatcher.match(query, people) can be passed to the preview.
The default NameSimilarityMatcher tries strong identifiers first and
falls back to fuzzy name similarity.

Match statuses:
  exact      one person matched a strong identifier, the exact name or a
             name linked to them by an earlier review
  ambiguous  several people matched the same identifier
  review     no exact match, similar names found
  none       nothing close enough
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from thefuzz import fuzz

from rostersync.core.config import settings
from rostersync.schemas.imports import MatchCandidate
from rostersync.services.names import (
    NICKNAME_MAP,
    make_name_key,
    normalize_first_name,
    normalize_last_name,
    normalize_name_token,
)
from rostersync.services.normalization import clean_text, normalize_baylor_id, normalize_email

LAST_NAME_FLOOR = 0.8
LAST_NAME_WEIGHT = 0.6
FIRST_NAME_WEIGHT = 0.4
NICKNAME_SCORE = 0.95


@dataclass
class PersonQuery:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    baylor_id: str = ""
    clss_instructor_id: str = ""


@dataclass
class MatchResult:
    status: str
    person: dict[str, Any] | None = None
    match_type: str | None = None
    candidates: list[MatchCandidate] = field(default_factory=list)
    reason: str = ""

    @property
    def is_exact(self) -> bool:
        return self.status == "exact" and self.person is not None


class PersonMatcher(Protocol):
    def match(self, query: PersonQuery, people: list[dict[str, Any]]) -> MatchResult:
        ...


# ─── Similarity ───────────────────────────────────────────────

def part_similarity(a: str, b: str) -> float:
    left, right = normalize_name_token(a), normalize_name_token(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    canonical_left = NICKNAME_MAP.get(normalize_first_name(left), normalize_first_name(left))
    canonical_right = NICKNAME_MAP.get(normalize_first_name(right), normalize_first_name(right))
    if canonical_left and canonical_left == canonical_right:
        return NICKNAME_SCORE
    return fuzz.ratio(left, right) / 100


def name_similarity(first_a: str, last_a: str, first_b: str, last_b: str) -> float:
    """
    Weighted first/last name similarity in [0, 1].

    Last names below LAST_NAME_FLOOR rule the pair out entirely.
    """
    last_a, last_b = normalize_last_name(last_a), normalize_last_name(last_b)
    if not last_a or not last_b:
        return 0.0
    last_score = part_similarity(last_a, last_b)
    if last_score < LAST_NAME_FLOOR:
        return 0.0
    return last_score * LAST_NAME_WEIGHT + part_similarity(first_a, first_b) * FIRST_NAME_WEIGHT


def summarize_candidate(person: dict[str, Any], score: float, reason: str) -> MatchCandidate:
    summary = {
        key: person.get(key) or ""
        for key in ("id", "first_name", "last_name", "email", "baylor_id", "job_title", "department")
    }
    return MatchCandidate(person=summary, score=round(min(max(score, 0.0), 1.0), 4), reason=reason)


# ─── Default Strategy ─────────────────────────────────────────

class NameSimilarityMatcher:
    """Strong identifiers, then exact or linked name, then fuzzy name similarity."""

    def __init__(self, min_score: float | None = None, max_candidates: int | None = None):
        self.min_score = settings.MATCH_MIN_SCORE if min_score is None else min_score
        self.max_candidates = settings.MATCH_MAX_CANDIDATES if max_candidates is None else max_candidates

    def _exact_matches(
        self, query: PersonQuery, people: list[dict[str, Any]]
    ) -> tuple[list[dict[str, Any]], str | None]:
        baylor_id = normalize_baylor_id(query.baylor_id)
        if baylor_id:
            hits = [p for p in people if normalize_baylor_id(p.get("baylor_id")) == baylor_id]
            if hits:
                return hits, "baylor_id"

        email = normalize_email(query.email)
        if email:
            hits = [p for p in people if normalize_email(p.get("email")) == email]
            if hits:
                return hits, "email"
            hits = [
                p for p in people
                if any(normalize_email(e) == email for e in (p.get("external_ids") or {}).get("emails") or [])
            ]
            if hits:
                return hits, "external_email"

        clss_id = clean_text(query.clss_instructor_id)
        if clss_id:
            hits = [
                p for p in people
                if clean_text((p.get("external_ids") or {}).get("clss_instructor_id")) == clss_id
            ]
            if hits:
                return hits, "clss_instructor_id"

        first, last = normalize_first_name(query.first_name), normalize_last_name(query.last_name)
        if first and last:
            hits = [
                p for p in people
                if normalize_first_name(p.get("first_name")) == first
                and normalize_last_name(p.get("last_name")) == last
            ]
            if hits:
                return hits, "exact_name"

            name_key = make_name_key(first, last)
            hits = [p for p in people if name_key in ((p.get("external_ids") or {}).get("name_keys") or [])]
            if hits:
                return hits, "name_alias"

        return [], None

    def match(self, query: PersonQuery, people: list[dict[str, Any]]) -> MatchResult:
        hits, match_type = self._exact_matches(query, people)
        if len(hits) == 1:
            return MatchResult(status="exact", person=hits[0], match_type=match_type)
        if hits:
            return MatchResult(
                status="ambiguous",
                match_type=match_type,
                candidates=[summarize_candidate(p, 1.0, f"Duplicate {match_type}") for p in hits],
                reason=f"Multiple {match_type} matches",
            )

        first, last = normalize_first_name(query.first_name), normalize_last_name(query.last_name)
        if not first or not last:
            return MatchResult(status="none", reason="Missing name data")

        scored = [
            (name_similarity(first, last, p.get("first_name") or "", p.get("last_name") or ""), p)
            for p in people
            if p.get("first_name") and p.get("last_name")
        ]
        scored = [(score, p) for score, p in scored if score >= self.min_score]
        scored.sort(key=lambda item: (-item[0], str(item[1].get("id") or "")))
        candidates = [
            summarize_candidate(p, score, "Similar name")
            for score, p in scored[: self.max_candidates]
        ]
        if candidates:
            return MatchResult(
                status="review",
                candidates=candidates,
                reason="No exact match; similar names found",
            )
        return MatchResult(status="none", reason="No match found")
