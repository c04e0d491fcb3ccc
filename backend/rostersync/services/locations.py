"""
Room and location parsing.

Room cells come in many shapes:
  'Draper 201'                 → one room, space key DRAPER:201
  'Goebel 101; Goebel 109'     → two rooms
  'Goebel 101/109'             → two rooms sharing a building
  'FCS 211 and FCS 213'        → two rooms
  'Online', 'Zoom'             → virtual, no room
  'TBA', 'No Room Needed'      → no room
"""

import re
from dataclasses import dataclass, field
from typing import Any

from rostersync.services.normalization import clean_text, normalize_identifier, normalize_whitespace, slugify

LOCATION_ROOM = "room"
LOCATION_NO_ROOM = "no_room"
LOCATION_VIRTUAL = "virtual"

_VIRTUAL_PATTERNS = [
    re.compile(r"\bonline\b", re.IGNORECASE),
    re.compile(r"\bzoom\b", re.IGNORECASE),
    re.compile(r"\bvirtual\b", re.IGNORECASE),
    re.compile(r"^asynchronous$", re.IGNORECASE),
    re.compile(r"^remote$", re.IGNORECASE),
]

_NO_ROOM_PATTERNS = [
    re.compile(r"^tba$", re.IGNORECASE),
    re.compile(r"^to\s+be\s+(announced|assigned)$", re.IGNORECASE),
    re.compile(r"^no\s+room\s+needed$", re.IGNORECASE),
    re.compile(r"^no\s+room$", re.IGNORECASE),
    re.compile(r"^\(?none\s+assigned\)?$", re.IGNORECASE),
    re.compile(r"^n/?a$", re.IGNORECASE),
    re.compile(r"^general\s+assignment", re.IGNORECASE),
    re.compile(r"^off\s+campus$", re.IGNORECASE),
    re.compile(r"^arranged$", re.IGNORECASE),
]

_MULTI_ROOM_SEPARATORS = re.compile(r"\s*[;,\n]\s*|\s*/\s*(?=\D)|\s+and\s+", re.IGNORECASE)
_DECIMAL_NUMBER = re.compile(r"(\d{2,4}\.\d{1,3}[A-Za-z]?)\s*$")
_SIMPLE_NUMBER = re.compile(r"(\d{2,4}[A-Za-z]?(?:-[A-Za-z])?)\s*$")
_TRAILING_TOKEN = re.compile(r"([\w./-]+)\s*$")


@dataclass(frozen=True)
class ParsedRoom:
    """One physical room parsed from a label."""
    raw: str
    building_code: str
    building_display_name: str
    space_number: str
    space_key: str
    display_name: str


@dataclass
class ParsedLocation:
    """Everything a room cell says about where a section meets."""
    raw: str
    location_type: str
    rooms: list[ParsedRoom] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def space_keys(self) -> list[str]:
        return [r.space_key for r in self.rooms]

    @property
    def display_names(self) -> list[str]:
        return [r.display_name for r in self.rooms]


def detect_location_type(raw: Any) -> str:
    text = clean_text(raw)
    if not text:
        return LOCATION_NO_ROOM
    if any(p.search(text) for p in _VIRTUAL_PATTERNS):
        return LOCATION_VIRTUAL
    if any(p.search(text) for p in _NO_ROOM_PATTERNS):
        return LOCATION_NO_ROOM
    return LOCATION_ROOM


def normalize_space_number(value: str) -> str:
    return re.sub(r"\s+", "", value or "").upper()


def build_space_key(building_code: str, space_number: str) -> str:
    code = (building_code or "").strip().upper()
    number = normalize_space_number(space_number)
    if not code or not number:
        return ""
    return f"{code}:{number}"


def _expand_shared_room_numbers(label: str) -> list[str]:
    """'Goebel 101/109' → ['Goebel 101', 'Goebel 109']"""
    if "/" not in label:
        return [label]
    m = re.search(r"\d", label)
    if not m:
        return [label]
    prefix = label[:m.start()].strip()
    suffix = label[m.start():].strip()
    tokens = [t.strip() for t in suffix.split("/") if t.strip()]
    if len(tokens) < 2 or not all(re.search(r"\d", t) for t in tokens):
        return [label]
    lead = f"{prefix} " if prefix else ""
    return [f"{lead}{t}" for t in tokens]


def split_multi_room(value: Any) -> list[str]:
    text = "" if value is None else str(value)
    parts = [normalize_whitespace(p) for p in _MULTI_ROOM_SEPARATORS.split(text) if p.strip()]
    expanded: list[str] = []
    for part in parts:
        for label in _expand_shared_room_numbers(part):
            if label not in expanded:
                expanded.append(label)
    return expanded


def extract_space_number(label: str) -> str:
    text = re.sub(r"\s+", " ", label or "").strip()
    if not text:
        return ""
    if re.match(r"^\d+[A-Za-z]?$", text):
        return normalize_space_number(text)
    for pattern in (_DECIMAL_NUMBER, _SIMPLE_NUMBER):
        m = pattern.search(text)
        if m:
            return normalize_space_number(m.group(1))
    m = _TRAILING_TOKEN.search(text)
    if m and re.search(r"\d", m.group(1)):
        return normalize_space_number(m.group(1))
    return ""


def extract_building_name(label: str) -> str:
    """Words before the room number: 'Baylor Sciences Building E231' → 'Baylor Sciences Building'"""
    text = re.sub(r"\([^)]*\)", " ", label or "")
    words = []
    for word in text.split():
        if re.match(r"^\d", word) or re.match(r"^[A-Z]-?\d+$", word, re.IGNORECASE):
            break
        words.append(word)
    return " ".join(words).strip()


def parse_room_label(label: Any) -> ParsedRoom | None:
    """
    Parse one physical room label.

    Returns None for virtual/no-room labels and for labels missing a
    building or a room number.
    """
    raw = clean_text(label)
    if not raw or detect_location_type(raw) != LOCATION_ROOM:
        return None
    building = extract_building_name(raw)
    number = extract_space_number(raw)
    if not building or not number:
        return None
    code = slugify(building).upper()
    return ParsedRoom(
        raw=raw,
        building_code=code,
        building_display_name=building,
        space_number=number,
        space_key=build_space_key(code, number),
        display_name=f"{building} {number}",
    )


def parse_location(value: Any) -> ParsedLocation:
    """
    Parse a full room cell, which may list several rooms.

    A blank cell is no_room; a cell that is entirely a virtual or
    no-room marker carries that type and no rooms.
    """
    raw = clean_text(value)
    whole = detect_location_type(raw)
    if whole != LOCATION_ROOM:
        return ParsedLocation(raw=raw, location_type=whole)

    location = ParsedLocation(raw=raw, location_type=LOCATION_ROOM)
    for part in split_multi_room(value):
        if detect_location_type(part) != LOCATION_ROOM:
            continue
        room = parse_room_label(part)
        if room is None:
            location.errors.append(part)
        elif room.space_key not in location.space_keys:
            location.rooms.append(room)
    return location


def room_name_keys(room: dict) -> set[str]:
    """Lookup keys for matching a stored room by name."""
    keys = set()
    for candidate in (
        room.get("display_name"),
        room.get("name"),
        f"{room.get('building_display_name') or ''} {room.get('space_number') or ''}",
    ):
        key = normalize_identifier(candidate or "")
        if key:
            keys.add(key)
    return keys
