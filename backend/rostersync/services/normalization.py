"""
Identifier and value normalization utilities.

Used for projection, identity keys and diff equivalence.
Normalizations are composable: each is a small function
that can be chained.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any


def normalize_whitespace(value: str) -> str:
    """Collapse whitespace and strip."""
    return re.sub(r"\s+", " ", value.strip())


def normalize_case(value: str) -> str:
    """Lowercase for case-insensitive comparison."""
    return value.lower()


def normalize_identifier(value: str) -> str:
    """
    Standard identifier normalization chain.
    'ANT  1301' → 'ant 1301'
    '  Draper   201  ' → 'draper 201'
    """
    return normalize_case(normalize_whitespace(value))


def clean_text(value: Any) -> str:
    """Coerce a loosely-typed cell to a stripped string ('' for None)."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return normalize_whitespace(str(value))


def is_empty(value: Any) -> bool:
    """None, blank strings and empty containers count as empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


# ─── Keys and Slugs ───────────────────────────────────────────

def normalize_key_part(value: Any) -> str:
    """
    Normalize one component of an identity key.
    'ANT 1301' → 'ANT_1301', ' 01 ' → '01'
    """
    return re.sub(r"[^A-Za-z0-9]+", "_", clean_text(value)).strip("_")


def slugify(value: str) -> str:
    """'Baylor Sciences Building' → 'baylor_sciences_building'"""
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def digits_only(value: Any) -> str:
    return re.sub(r"\D", "", clean_text(value))


# ─── Domain Identifiers ───────────────────────────────────────

_CRN_PATTERN = re.compile(r"^\d{5,6}$")
_EMBEDDED_CRN_PATTERN = re.compile(r"(\d{5,6})")
_COURSE_CODE_PATTERN = re.compile(r"^([A-Z]{2,5})\s*(\d{3,4}[A-Z]?)$")


def normalize_crn(value: Any) -> str:
    """Digits only; anything that is not a 5-6 digit CRN becomes ''."""
    crn = digits_only(value)
    return crn if _CRN_PATTERN.match(crn) else ""


def extract_crn_from_section(value: Any) -> str:
    """'01 (33038)' → '33038'"""
    m = _EMBEDDED_CRN_PATTERN.search(clean_text(value))
    return m.group(1) if m else ""


def normalize_section(value: Any) -> str:
    """
    Strip parenthesized text and keep the first token.
    '01 (33038)' → '01', ' 2a ' → '2A'
    """
    text = re.sub(r"\([^)]*\)", " ", clean_text(value)).strip()
    if not text:
        return ""
    return text.split()[0].upper()


def normalize_course_code(value: Any) -> str:
    """
    Uppercase and separate subject from catalog number.
    'ant1301' → 'ANT 1301', 'ANT  1301' → 'ANT 1301'
    """
    text = clean_text(value).upper()
    if not text:
        return ""
    m = _COURSE_CODE_PATTERN.match(text)
    if m:
        return f"{m.group(1)} {m.group(2)}"
    return text


def split_course_code(course_code: str) -> tuple[str, str]:
    """'ANT 1301' → ('ANT', '1301')"""
    m = _COURSE_CODE_PATTERN.match(normalize_course_code(course_code))
    if not m:
        return "", ""
    return m.group(1), m.group(2)


def normalize_email(value: Any) -> str:
    return clean_text(value).lower()


def normalize_phone(value: Any) -> str:
    return digits_only(value)


def normalize_baylor_id(value: Any) -> str:
    """Institution ids are compared as digits only: 'B123' → '123'."""
    return digits_only(value)


def normalize_numeric(value: Any) -> str:
    """
    Normalize numeric strings for comparison.
    Strips trailing zeros and normalizes representation.
    """
    text = clean_text(value)
    try:
        return str(Decimal(text).normalize())
    except InvalidOperation:
        return text


def parse_number(value: Any) -> float | int | None:
    """'3' → 3, '1.5' → 1.5, '' → None"""
    text = clean_text(value)
    if not text:
        return None
    try:
        d = Decimal(text)
    except InvalidOperation:
        return None
    return int(d) if d == d.to_integral_value() else float(d)


# ─── Value Comparison ─────────────────────────────────────────

def values_match(val_a: Any, val_b: Any) -> bool:
    """
    Compare two scalar values with normalization.

    Numeric comparison when both parse as numbers, case- and
    whitespace-insensitive comparison otherwise.
    """
    if is_empty(val_a) and is_empty(val_b):
        return True
    if is_empty(val_a) or is_empty(val_b):
        return False

    a = clean_text(val_a)
    b = clean_text(val_b)

    try:
        return Decimal(a) == Decimal(b)
    except InvalidOperation:
        pass

    return normalize_identifier(a) == normalize_identifier(b)
