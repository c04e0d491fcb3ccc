"""
Row projector: raw export rows → typed projected entities.

Raw rows are `dict[str, Any]` keyed by whatever headers the export used.
Each row is first canonicalized through the header alias tables, then
projected into a ScheduleEntity (schedule exports) or a PersonEntity
(directory exports). Projection is pure: no store access, no ids.

Key flow:
  1. detect_import_type(headers) → 'schedule' | 'directory'
  2. canonicalize_row(row, aliases) → logical field → cell value
  3. project_schedule_row / project_person_row → entity or None
"""

import hashlib
import json
import re
from typing import Any, Iterable

from rostersync.core.errors import UnknownImportTypeError
from rostersync.schemas.entities import InstructorRef, PersonEntity, RoomEntity, ScheduleEntity
from rostersync.services.locations import (
    LOCATION_NO_ROOM,
    LOCATION_ROOM,
    LOCATION_VIRTUAL,
    parse_location,
    parse_room_label,
    split_multi_room,
)
from rostersync.services.meeting_patterns import has_valid_meeting_pattern, is_timed, parse_meeting_patterns
from rostersync.services.names import parse_instructor_field
from rostersync.services.normalization import (
    clean_text,
    digits_only,
    extract_crn_from_section,
    normalize_course_code,
    normalize_crn,
    normalize_email,
    normalize_phone,
    normalize_section,
    parse_number,
    split_course_code,
)
from rostersync.services.terms import academic_year, resolve_term


# ─── Header Aliases ───────────────────────────────────────────

SCHEDULE_HEADER_ALIASES: dict[str, list[str]] = {
    "crn": ["CRN"],
    "section": ["Section #", "Section"],
    "course": ["Course", "Course Code"],
    "course_title": ["Course Title", "Title", "Long Title"],
    "instructor": ["Instructor", "Instructors"],
    "room": ["Room", "Rooms", "Location"],
    "meeting_pattern": ["Meeting Pattern", "Meeting Patterns"],
    "meetings": ["Meetings"],
    "semester": ["Semester", "Term"],
    "term_code": ["Semester Code", "Term Code"],
    "credits": ["Credit Hrs", "Credits", "Credit Hours"],
    "status": ["Status"],
    "instruction_method": ["Inst. Method", "Instruction Method"],
    "clss_id": ["CLSS ID"],
    "schedule_type": ["Schedule Type"],
    "cross_listings": ["Cross-listings", "Cross-list CRNs"],
    "enrollment": ["Enrollment"],
    "max_enrollment": ["Maximum Enrollment"],
    "department_code": ["Department Code"],
    "part_of_term": ["Part of Semester", "Part of Term"],
}

DIRECTORY_HEADER_ALIASES: dict[str, list[str]] = {
    "first_name": ["First Name"],
    "last_name": ["Last Name"],
    "email": ["E-mail Address"],
    "phone": ["Phone", "Business Phone", "Home Phone"],
    "office": ["Office", "Office Location"],
    "job_title": ["Title", "Job Title"],
    "department": ["Department"],
}

DEFAULT_SCHEDULE_TYPE = "Class Instruction"
DEFAULT_STATUS = "Active"


def _header_key(header: Any) -> str:
    return clean_text(header).lower()


def detect_import_type(headers: Iterable[Any]) -> str:
    """
    Decide the import type from the batch's header signature.

    Raises UnknownImportTypeError when neither signature matches.
    """
    present = {_header_key(h) for h in headers}

    def has(aliases: list[str]) -> bool:
        return any(a.lower() in present for a in aliases)

    if has(SCHEDULE_HEADER_ALIASES["course"]) and (
        has(SCHEDULE_HEADER_ALIASES["section"]) or has(SCHEDULE_HEADER_ALIASES["crn"])
    ):
        return "schedule"
    if all(has(DIRECTORY_HEADER_ALIASES[f]) for f in ("first_name", "last_name", "email")):
        return "directory"
    raise UnknownImportTypeError(
        "Unrecognized export format: expected Course + Section #/CRN columns "
        "(schedule) or First Name + Last Name + E-mail Address (directory)"
    )


def canonicalize_row(row: dict[str, Any], aliases: dict[str, list[str]]) -> dict[str, Any]:
    """
    Map a raw row onto logical field names.

    Header matching ignores case and surrounding whitespace. When several
    aliases are present the first non-empty one wins.
    """
    by_header: dict[str, Any] = {}
    for header, value in row.items():
        if isinstance(header, str) and header.startswith("_"):
            continue
        by_header.setdefault(_header_key(header), value)

    canonical: dict[str, Any] = {}
    for logical, names in aliases.items():
        value = None
        for name in names:
            candidate = by_header.get(name.lower())
            if clean_text(candidate):
                value = candidate
                break
        canonical[logical] = value
    return canonical


def row_hash(row: dict[str, Any]) -> str:
    """SHA-1 over the row's cells; bookkeeping keys ('_row_number', ...) are excluded."""
    payload = {str(k): v for k, v in row.items() if not str(k).startswith("_")}
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha1(encoded).hexdigest()


# ─── Schedule Rows ────────────────────────────────────────────

def _parse_int(value: Any) -> int | None:
    digits = re.sub(r"[^0-9-]", "", clean_text(value))
    if not digits or digits == "-":
        return None
    try:
        return int(digits)
    except ValueError:
        return None


def _cell_text(value: Any) -> str:
    """Cell as text with line breaks kept; multi-line cells list one item per line."""
    return "" if value is None else str(value).strip()


def _credits(raw: Any, catalog_number: str) -> float | int | None:
    """Explicit credit hours win; otherwise the catalog number's second digit."""
    parsed = parse_number(raw)
    if parsed is not None:
        return parsed
    if len(catalog_number) >= 2 and catalog_number[1].isdigit():
        return int(catalog_number[1])
    return None


def _cross_list_crns(value: Any, own_crn: str) -> list[str]:
    found = re.findall(r"\b(\d{5,6})\b", clean_text(value))
    return [crn for crn in dict.fromkeys(found) if crn != own_crn]


def project_schedule_row(row: dict[str, Any], fallback_term: str = "") -> ScheduleEntity | None:
    """
    Project one schedule export row.

    Returns None when the row has no room, no valid meeting pattern and
    no online/no-room marker: there is nothing to schedule. Rows missing
    required fields are still projected; the validator rejects them.
    """
    fields = canonicalize_row(row, SCHEDULE_HEADER_ALIASES)

    course_code = normalize_course_code(fields["course"])
    subject_code, catalog_number = split_course_code(course_code)
    section_raw = clean_text(fields["section"])
    section = normalize_section(section_raw)
    crn = normalize_crn(fields["crn"]) or normalize_crn(extract_crn_from_section(section_raw))

    term, term_code = resolve_term(fields["semester"] or fallback_term, fields["term_code"])

    instructor_field = clean_text(fields["instructor"])
    parsed_instructors = parse_instructor_field(instructor_field)
    primary = next((p for p in parsed_instructors if p.is_primary), None)
    if len(parsed_instructors) > 1:
        instructor_name = "; ".join(p.display_name for p in parsed_instructors if p.display_name)
    else:
        instructor_name = (primary.display_name if primary else "") or instructor_field

    patterns = parse_meeting_patterns(
        meeting_pattern=_cell_text(fields["meeting_pattern"]),
        meetings=_cell_text(fields["meetings"]),
    )
    instruction_method = clean_text(fields["instruction_method"])

    room_raw = clean_text(fields["room"])
    location = parse_location(fields["room"])
    is_online = (
        location.location_type == LOCATION_VIRTUAL
        or "ONLINE" in room_raw.upper()
        or "online" in instruction_method.lower()
    )
    unparsed_names = location.errors if location.location_type == LOCATION_ROOM else []
    is_physical = location.location_type == LOCATION_ROOM and bool(location.rooms or unparsed_names)
    location_type = LOCATION_ROOM if is_physical else LOCATION_NO_ROOM

    has_marker = is_online or (bool(room_raw) and location.location_type != LOCATION_ROOM)
    if not is_physical and not has_valid_meeting_pattern(patterns) and not has_marker:
        return None

    if is_online:
        location_label = "Online"
    elif location_type == LOCATION_NO_ROOM:
        location_label = room_raw or "No Room Needed"
    else:
        location_label = ""

    if is_physical:
        space_ids = list(dict.fromkeys(location.space_keys))
        space_display_names = location.display_names or split_multi_room(fields["room"])
    else:
        space_ids, space_display_names = [], []

    online_mode = None
    if is_online:
        online_mode = "synchronous" if any(is_timed(p) for p in patterns) else "asynchronous"

    return ScheduleEntity(
        course_code=course_code,
        course_title=clean_text(fields["course_title"]),
        subject_code=subject_code,
        catalog_number=catalog_number,
        department_code=clean_text(fields["department_code"]).upper(),
        course_level=int(catalog_number[0]) if catalog_number[:1].isdigit() else 0,
        section=section,
        crn=crn,
        clss_id=clean_text(fields["clss_id"]),
        term=term,
        term_code=term_code,
        academic_year=academic_year(term) if term else None,
        credits=_credits(fields["credits"], catalog_number),
        enrollment=_parse_int(fields["enrollment"]),
        max_enrollment=_parse_int(fields["max_enrollment"]),
        schedule_type=clean_text(fields["schedule_type"]) or DEFAULT_SCHEDULE_TYPE,
        instruction_method=instruction_method,
        status=clean_text(fields["status"]) or DEFAULT_STATUS,
        part_of_term=clean_text(fields["part_of_term"]),
        is_online=is_online,
        online_mode=online_mode,
        location_type=location_type,
        location_label=location_label,
        space_ids=space_ids,
        space_display_names=space_display_names,
        meeting_patterns=patterns,
        cross_list_crns=_cross_list_crns(fields["cross_listings"], crn),
        instructor_field=instructor_field,
        instructor_name=instructor_name,
        row_hash=row_hash(row),
        instructors=[
            InstructorRef(
                first_name=p.first_name,
                last_name=p.last_name,
                instructor_id=p.instructor_id,
                percentage=p.percentage,
                is_primary=p.is_primary,
                is_staff=p.is_staff,
            )
            for p in parsed_instructors
        ],
        rooms=[
            RoomEntity(
                space_key=r.space_key,
                display_name=r.display_name,
                building_code=r.building_code,
                building_display_name=r.building_display_name,
                space_number=r.space_number,
            )
            for r in location.rooms
        ] if is_physical else [],
    )


# ─── Directory Rows ───────────────────────────────────────────

def project_person_row(row: dict[str, Any]) -> PersonEntity | None:
    """
    Project one directory export row.

    Returns None for rows with no first name, last name or email.
    """
    fields = canonicalize_row(row, DIRECTORY_HEADER_ALIASES)
    first_name = clean_text(fields["first_name"])
    last_name = clean_text(fields["last_name"])
    email = normalize_email(fields["email"])
    if not (first_name or last_name or email):
        return None

    office = clean_text(fields["office"])
    office_room = None
    parsed_office = parse_room_label(office) if office else None
    if parsed_office:
        office_room = RoomEntity(
            space_key=parsed_office.space_key,
            display_name=parsed_office.display_name,
            building_code=parsed_office.building_code,
            building_display_name=parsed_office.building_display_name,
            space_number=parsed_office.space_number,
            type="Office",
        )

    return PersonEntity(
        first_name=first_name,
        last_name=last_name,
        name=f"{first_name} {last_name}".strip(),
        email=email,
        phone=normalize_phone(fields["phone"]),
        job_title=clean_text(fields["job_title"]),
        department=clean_text(fields["department"]),
        office=office,
        office_space_id=office_room.space_key if office_room else "",
        roles=["faculty"],
        office_room=office_room,
    )


def row_index(row: dict[str, Any], position: int) -> int:
    """Spreadsheet row number when the parser recorded one, else the 1-based position."""
    number = row.get("_row_number")
    if isinstance(number, int):
        return number
    digits = digits_only(number)
    return int(digits) if digits else position


def batch_term_codes(rows: Iterable[dict[str, Any]], fallback_term: str = "") -> set[str]:
    """Term codes a schedule batch touches, without a full projection."""
    codes = set()
    for row in rows:
        fields = canonicalize_row(row, {k: SCHEDULE_HEADER_ALIASES[k] for k in ("semester", "term_code")})
        _, code = resolve_term(fields["semester"] or fallback_term, fields["term_code"])
        if code:
            codes.add(code)
    return codes
