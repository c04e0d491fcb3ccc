"""
Term label and term code handling.

Term codes are six digits: four-digit year followed by a two-digit
season code ('202530' is Fall 2025). Labels are 'Season YYYY'.
"""

import re
from typing import Any

from rostersync.services.normalization import clean_text

CODE_TO_SEASON: dict[str, str] = {
    "10": "Winter",
    "30": "Fall",
    "40": "Spring",
    "50": "Summer",
}
SEASON_TO_CODE: dict[str, str] = {season.lower(): code for code, season in CODE_TO_SEASON.items()}
SEASON_ORDER = ["Winter", "Spring", "Summer", "Fall"]
TWO_DIGIT_YEAR_BASE = 2000

_TERM_LABEL_PATTERN = re.compile(r"^([A-Za-z]+)[\s-]*(\d{2}|\d{4})$")
_TERM_CODE_PATTERN = re.compile(r"^\d{6}$")


def parse_term_label(value: Any) -> tuple[str, int] | None:
    """
    'fall 2025' → ('Fall', 2025), 'Spring-26' → ('Spring', 2026)

    Returns None when the value is not a season/year label.
    """
    text = clean_text(value)
    m = _TERM_LABEL_PATTERN.match(text)
    if not m:
        return None
    year_token = m.group(2)
    year = int(year_token)
    if len(year_token) == 2:
        year += TWO_DIGIT_YEAR_BASE
    season = m.group(1)
    canonical = next((s for s in SEASON_ORDER if s.lower() == season.lower()), None)
    return (canonical or season.capitalize(), year)


def parse_term_code(value: Any) -> tuple[str, int] | None:
    text = clean_text(value)
    if not _TERM_CODE_PATTERN.match(text):
        return None
    season = CODE_TO_SEASON.get(text[4:])
    if not season:
        return None
    return season, int(text[:4])


def term_label_from_code(value: Any) -> str:
    """'202530' → 'Fall 2025'"""
    parsed = parse_term_code(value)
    return f"{parsed[0]} {parsed[1]}" if parsed else ""


def normalize_term_label(value: Any) -> str:
    """
    Canonical 'Season YYYY' label.

    Accepts labels in any case or with two-digit years, or a term code.
    Unrecognized values are returned cleaned but otherwise unchanged.
    """
    text = clean_text(value)
    if not text:
        return ""
    parsed = parse_term_label(text)
    if parsed:
        return f"{parsed[0]} {parsed[1]}"
    return term_label_from_code(text) or text


def term_code_from_label(value: Any) -> str:
    """'Fall 2025' → '202530'; a six-digit code passes through."""
    text = clean_text(value)
    if not text:
        return ""
    if _TERM_CODE_PATTERN.match(text):
        return text
    parsed = parse_term_label(text)
    if not parsed:
        return ""
    code = SEASON_TO_CODE.get(parsed[0].lower())
    return f"{parsed[1]}{code}" if code else ""


def resolve_term(term: Any, term_code: Any = "") -> tuple[str, str]:
    """
    Normalize a (label, code) pair, filling whichever side is missing.

    Returns (term_label, term_code); either may be '' when underivable.
    """
    label = normalize_term_label(term)
    code = term_code_from_label(term_code) or term_code_from_label(label)
    if not label and code:
        label = term_label_from_code(code)
    return label, code


def academic_year(term: str) -> int | None:
    m = re.search(r"(\d{4})", term or "")
    return int(m.group(1)) if m else None
