"""
Person name handling: instructor cells, name keys and nicknames.

Instructor cells look like:
  'Smith, Jane'
  'Smith, Jane (123456789) [Primary, 100%]'
  'Smith, Jane (123456789) [Primary, 60%]; Doe, John (987654321) [Secondary, 40%]'
  'Jane Smith'
  'Staff'
"""

import re
from dataclasses import dataclass
from typing import Any

from rostersync.services.normalization import clean_text

NICKNAME_MAP: dict[str, str] = {
    "bob": "robert", "bobby": "robert", "rob": "robert", "robbie": "robert",
    "bill": "william", "billy": "william", "will": "william", "willie": "william",
    "jim": "james", "jimmy": "james", "jamie": "james",
    "mike": "michael", "mickey": "michael", "mick": "michael",
    "dave": "david", "davey": "david",
    "steve": "steven", "stevie": "steven",
    "chris": "christopher",
    "matt": "matthew",
    "dan": "daniel", "danny": "daniel",
    "tom": "thomas", "tommy": "thomas",
    "joe": "joseph", "joey": "joseph",
    "tony": "anthony",
    "liz": "elizabeth", "beth": "elizabeth", "betty": "elizabeth",
    "sue": "susan", "susie": "susan",
    "katie": "katherine", "kate": "katherine", "kathy": "katherine",
    "patty": "patricia", "pat": "patricia", "trish": "patricia",
    "nick": "nicholas",
    "andy": "andrew", "drew": "andrew",
    "alex": "alexander",
    "jon": "jonathan", "jonny": "jonathan",
    "johnny": "john", "jack": "john",
    "ben": "benjamin", "benny": "benjamin",
    "greg": "gregory",
    "jeff": "jeffrey",
    "tim": "timothy",
    "josh": "joshua",
    "nate": "nathan",
    "zach": "zachary",
    "phil": "philip",
    "rick": "richard", "rich": "richard", "dick": "richard",
    "ron": "ronald", "ronnie": "ronald",
    "don": "donald", "donnie": "donald",
    "ken": "kenneth", "kenny": "kenneth",
    "larry": "lawrence",
    "ed": "edward", "eddie": "edward", "ted": "edward",
    "charlie": "charles", "chuck": "charles",
    "jen": "jennifer", "jenny": "jennifer",
    "becky": "rebecca",
    "meg": "margaret", "maggie": "margaret", "peggy": "margaret",
    "cathy": "catherine",
    "abby": "abigail",
    "vicky": "victoria",
    "mandy": "amanda",
}

_TITLES = {"dr", "dr.", "mr", "mr.", "mrs", "mrs.", "ms", "ms.", "miss", "prof", "professor"}

_INSTRUCTOR_PATTERN = re.compile(
    r"^(?P<last>[^,]+),\s*(?P<first>[^(\[]+?)\s*"
    r"(?:\((?P<id>[^)]+)\))?\s*"
    r"(?:\[(?P<role>[^,\]]+),\s*(?P<pct>\d+)%\])?\s*$"
)


@dataclass
class ParsedInstructor:
    """One instructor entry from an instructor cell."""
    first_name: str = ""
    last_name: str = ""
    title: str = ""
    instructor_id: str = ""
    percentage: int = 100
    is_primary: bool = False
    is_staff: bool = False

    @property
    def display_name(self) -> str:
        """'Smith, Jane'"""
        if self.first_name and self.last_name:
            return f"{self.last_name}, {self.first_name}"
        return self.last_name or self.first_name


# ─── Name Tokens ──────────────────────────────────────────────

def normalize_name_token(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", " ", clean_text(value).lower()).strip()


def normalize_first_name(value: Any) -> str:
    tokens = normalize_name_token(value).split(" ")
    return tokens[0] if tokens else ""


def normalize_last_name(value: Any) -> str:
    return " ".join(t for t in normalize_name_token(value).split(" ") if t)


def canonical_first_name(value: Any) -> str:
    first = normalize_first_name(value)
    return NICKNAME_MAP.get(first, first)


def make_name_key(first_name: Any, last_name: Any) -> str:
    """('Jane', 'Smith') → 'jane smith'"""
    parts = [normalize_first_name(first_name), normalize_last_name(last_name)]
    return " ".join(p for p in parts if p)


def format_person_name(person: dict) -> str:
    first = clean_text(person.get("first_name"))
    last = clean_text(person.get("last_name"))
    if first and last:
        return f"{first} {last}"
    return last or first or clean_text(person.get("name"))


# ─── Parsing ──────────────────────────────────────────────────

def parse_full_name(value: Any) -> tuple[str, str, str]:
    """'Dr. Jane Ann Smith' → ('Dr.', 'Jane', 'Ann Smith'), returned as (title, first, last)."""
    parts = clean_text(value).split()
    title = ""
    if len(parts) > 1 and parts[0].lower() in _TITLES:
        title, parts = parts[0], parts[1:]
    if not parts:
        return title, "", ""
    if len(parts) == 1:
        return title, "", parts[0]
    return title, parts[0], " ".join(parts[1:])


def parse_instructor_entry(value: Any) -> ParsedInstructor | None:
    text = clean_text(value)
    if not text:
        return None
    if "staff" in text.lower():
        return ParsedInstructor(last_name="Staff", is_staff=True)

    m = _INSTRUCTOR_PATTERN.match(text)
    if m:
        role = (m.group("role") or "").lower()
        return ParsedInstructor(
            first_name=m.group("first").strip(),
            last_name=m.group("last").strip(),
            instructor_id=(m.group("id") or "").strip(),
            percentage=int(m.group("pct")) if m.group("pct") else 100,
            is_primary="primary" in role,
        )

    title, first, last = parse_full_name(text)
    return ParsedInstructor(first_name=first, last_name=last, title=title)


def parse_instructor_field(value: Any) -> list[ParsedInstructor]:
    """
    Parse every instructor in a cell, separated by ';'.

    The first entry becomes primary when no entry is marked primary.
    """
    entries = [parse_instructor_entry(part) for part in clean_text(value).split(";")]
    parsed = [e for e in entries if e is not None]
    if parsed and not any(p.is_primary for p in parsed):
        parsed[0].is_primary = True
    return parsed
