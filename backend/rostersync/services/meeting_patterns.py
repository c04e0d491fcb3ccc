"""
Meeting pattern parsing.

'MWF 9:00 am - 9:50 am' becomes one pattern per day:
  {"day": "M", "start_time": "9:00 AM", "end_time": "9:50 AM", "mode": None, "raw": ...}

Segments without a day/time pair are kept with day=None: online
('Online', 'Asynchronous') and arranged ('TBA', 'Arranged',
'Independent study') segments carry a mode, anything else only its raw
text.
"""

import re
from typing import Any

DAY_CODES = "MTWRFSU"
DAY_NAMES = {
    "M": "Monday",
    "T": "Tuesday",
    "W": "Wednesday",
    "R": "Thursday",
    "F": "Friday",
    "S": "Saturday",
    "U": "Sunday",
}

_SEGMENT_SPLIT = re.compile(r";|\n")
_DAY_PREFIX = re.compile(r"^([MTWRFSU]+)\s+", re.IGNORECASE)
_TIME_RANGE_SPLIT = re.compile(r"\s*(?:-|to)\s*", re.IGNORECASE)
_TIME_TOKEN = re.compile(r"(\d{1,2}(?::\d{2})?\s*(?:am|pm)|\d{3,4})", re.IGNORECASE)
_TIME_PATTERN = re.compile(r"^(\d{1,2})(?::?(\d{2}))?(am|pm)?$")
_CANONICAL_TIME = re.compile(r"^(\d{1,2}):(\d{2}) (AM|PM)$")


# ─── Times ────────────────────────────────────────────────────

def normalize_time(value: Any) -> str:
    """
    Canonical 'H:MM AM|PM' form.
    '9:00 am' → '9:00 AM', '1330' → '1:30 PM', '13:30' → '1:30 PM'

    Unparseable input is returned stripped and unchanged.
    """
    if value is None:
        return ""
    raw = str(value).strip()
    cleaned = re.sub(r"[^0-9apm:]", "", raw.lower())
    if not cleaned:
        return ""
    m = _TIME_PATTERN.match(cleaned)
    if not m:
        return raw
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    suffix = m.group(3)
    if minute > 59:
        return raw
    if not suffix:
        if hour > 23:
            return raw
        suffix = "pm" if hour >= 12 else "am"
    display_hour = 12 if hour == 0 else hour - 12 if hour > 12 else hour
    return f"{display_hour}:{minute:02d} {suffix.upper()}"


def time_to_minutes(value: Any) -> int | None:
    """'9:30 AM' → 570; None for anything not in canonical form."""
    m = _CANONICAL_TIME.match(normalize_time(value))
    if not m:
        return None
    hour = int(m.group(1)) % 12
    if m.group(3) == "PM":
        hour += 12
    return hour * 60 + int(m.group(2))


def format_minutes(minutes: int) -> str:
    """570 → '9:30 AM'"""
    hour, minute = divmod(minutes, 60)
    suffix = "PM" if hour >= 12 else "AM"
    display_hour = 12 if hour % 12 == 0 else hour % 12
    return f"{display_hour}:{minute:02d} {suffix}"


# ─── Segments ─────────────────────────────────────────────────

def _segments(raw: str) -> list[str]:
    parts = _SEGMENT_SPLIT.split((raw or "").replace("\r", "\n"))
    return [p.strip() for p in parts if p.strip()]


def _dedupe(segments: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for segment in segments:
        key = segment.lower()
        if key not in seen:
            seen.add(key)
            result.append(segment)
    return result


def _extract_time_token(value: str) -> str:
    m = _TIME_TOKEN.search(value or "")
    return m.group(0) if m else (value or "").strip()


def _timed_patterns(days: str, start_token: str, end_token: str, raw: str) -> list[dict]:
    start = normalize_time(start_token)
    end = normalize_time(end_token)
    if time_to_minutes(start) is None or time_to_minutes(end) is None:
        return []
    return [
        {"day": char, "start_time": start, "end_time": end, "mode": None, "raw": raw}
        for char in days.upper()
        if char in DAY_CODES
    ]


def _parse_segment(segment: str) -> list[dict]:
    normalized = re.sub(r"\s+", " ", segment).strip()
    day_match = _DAY_PREFIX.match(normalized)
    if day_match:
        days = day_match.group(1)
        remainder = normalized[day_match.end():].strip()
        pieces = _TIME_RANGE_SPLIT.split(remainder)
        if len(pieces) >= 2:
            patterns = _timed_patterns(
                days, _extract_time_token(pieces[0]), _extract_time_token(pieces[1]), normalized
            )
            if patterns:
                return patterns
        tokens = _TIME_TOKEN.findall(normalized)
        if len(tokens) >= 2:
            patterns = _timed_patterns(days, tokens[0], tokens[1], normalized)
            if patterns:
                return patterns

    lowered = normalized.lower()
    mode = None
    if "online" in lowered or "asynch" in lowered:
        mode = "online"
    elif "arranged" in lowered or "tba" in lowered or "independent" in lowered:
        mode = "arranged"
    return [{"day": None, "start_time": "", "end_time": "", "mode": mode, "raw": normalized}]


def parse_meeting_patterns(meeting_pattern: str = "", meetings: str = "") -> list[dict]:
    """
    Parse the export's meeting columns.

    The detailed 'Meetings' column wins over 'Meeting Pattern' when it
    has any non-exam segment. Segments are deduplicated
    case-insensitively and 'Does Not Meet' segments are ignored.
    """
    meeting_segments = _dedupe(
        [s for s in _segments(meetings) if not re.search(r"final|exam", s, re.IGNORECASE)]
    )
    segments = meeting_segments or _dedupe(_segments(meeting_pattern))

    patterns: list[dict] = []
    for segment in segments:
        if re.search(r"does not meet", segment, re.IGNORECASE):
            continue
        patterns.extend(_parse_segment(segment))
    return patterns


def is_timed(pattern: dict) -> bool:
    return bool(
        pattern.get("day")
        and time_to_minutes(pattern.get("start_time")) is not None
        and time_to_minutes(pattern.get("end_time")) is not None
    )


def has_valid_meeting_pattern(patterns: list[dict] | None) -> bool:
    """At least one day/time pattern or an online/arranged marker."""
    return any(is_timed(p) or p.get("mode") in ("online", "arranged") for p in patterns or [])


def meeting_pattern_token(pattern: dict) -> str:
    """Comparison token: 'M|9:00 AM|9:50 AM|'"""
    return "|".join([
        pattern.get("day") or "",
        normalize_time(pattern.get("start_time")),
        normalize_time(pattern.get("end_time")),
        pattern.get("mode") or "",
    ])


def format_meeting_patterns(patterns: list[dict] | None) -> str:
    """Display form: 'M 9:00 AM-9:50 AM; W 9:00 AM-9:50 AM'"""
    parts = []
    for p in patterns or []:
        if p.get("day") and p.get("start_time") and p.get("end_time"):
            parts.append(f"{p['day']} {p['start_time']}-{p['end_time']}")
        elif p.get("raw"):
            parts.append(p["raw"])
    return "; ".join(parts)
