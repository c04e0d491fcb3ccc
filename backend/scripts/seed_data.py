"""
Seed data script — creates a realistic department for import testing.

Seeds the document store with:
  - 12 faculty people (with emails and Baylor ids)
  - 8 classrooms across 3 buildings
  - 20 Fall 2025 schedules assigned to those people and rooms
  - the Fall 2025 term document

Usage:
  python -m scripts.seed_data

Alternatively, import and call seed_store() with any DocumentStore.
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rostersync.core.config import settings
from rostersync.core.logging import configure_logging
from rostersync.services.identity import build_schedule_doc_id, derive_schedule_identity
from rostersync.services.locations import build_space_key
from rostersync.services.store import DocumentStore, SqlDocumentStore


# ─── Generators ────────────────────────────────────────────────

FIRST_NAMES = ["Jane", "Robert", "Maria", "David", "Emily", "James",
               "Sarah", "Michael", "Laura", "Thomas", "Anna", "Daniel"]
LAST_NAMES = ["Smith", "Johnson", "Garcia", "Lee", "Brown", "Miller",
              "Davis", "Wilson", "Moore", "Taylor", "Clark", "Lewis"]

BUILDINGS = [
    ("DRAPER", "Draper", [201, 202, 234]),
    ("GOEBEL", "Goebel", [101, 109, 111]),
    ("BAYLOR_SCIENCES_BUILDING", "Baylor Sciences Building", [231, 301]),
]

COURSES = [
    ("ANT 1301", "Introduction to Anthropology", 3),
    ("ANT 2302", "Cultural Anthropology", 3),
    ("SOC 1305", "Introduction to Sociology", 3),
    ("SOC 3316", "Social Theory", 3),
    ("GEO 1404", "Physical Geography", 4),
]

PATTERNS = [
    ("MWF", "9:00 AM", "9:50 AM"),
    ("MWF", "10:10 AM", "11:00 AM"),
    ("MWF", "11:15 AM", "12:05 PM"),
    ("TR", "9:30 AM", "10:45 AM"),
    ("TR", "11:00 AM", "12:15 PM"),
    ("TR", "2:00 PM", "3:15 PM"),
]

TERM, TERM_CODE = "Fall 2025", "202530"


def make_people() -> list[dict[str, Any]]:
    people = []
    for idx, (first, last) in enumerate(zip(FIRST_NAMES, LAST_NAMES)):
        people.append({
            "id": f"person_{idx + 1:03d}",
            "first_name": first,
            "last_name": last,
            "name": f"{first} {last}",
            "email": f"{first}_{last}@baylor.edu".lower(),
            "baylor_id": f"{100000001 + idx:09d}",
            "roles": ["faculty"],
            "external_ids": {},
            "is_active": True,
        })
    return people


def make_rooms() -> list[dict[str, Any]]:
    rooms = []
    for code, building_name, numbers in BUILDINGS:
        for number in numbers:
            key = build_space_key(code, str(number))
            rooms.append({
                "id": key,
                "space_key": key,
                "display_name": f"{building_name} {number}",
                "building_code": code,
                "building_display_name": building_name,
                "space_number": str(number),
                "type": "Classroom",
                "capacity": random.choice([24, 36, 48, 60]),
                "is_active": True,
            })
    return rooms


def make_schedule(idx: int, person: dict[str, Any], room: dict[str, Any]) -> dict[str, Any]:
    """Generate one schedule document with a stored identity."""
    random.seed(idx)  # Reproducible
    course_code, title, credits = COURSES[idx % len(COURSES)]
    days, start, end = PATTERNS[idx % len(PATTERNS)]
    section = f"{idx // len(COURSES) + 1:02d}"
    crn = str(30001 + idx)
    patterns = [
        {"day": day, "start_time": start, "end_time": end, "mode": None, "raw": f"{days} {start} - {end}"}
        for day in days
    ]
    identity = derive_schedule_identity(
        course_code=course_code,
        section=section,
        term=TERM,
        term_code=TERM_CODE,
        clss_id="",
        crn=crn,
        meeting_patterns=patterns,
        space_ids=[room["space_key"]],
        room_names=[room["display_name"]],
    )
    subject, catalog = course_code.split()
    return {
        "id": build_schedule_doc_id(identity.primary_key),
        "course_code": course_code,
        "course_title": title,
        "subject_code": subject,
        "catalog_number": catalog,
        "course_level": int(catalog[0]),
        "section": section,
        "crn": crn,
        "term": TERM,
        "term_code": TERM_CODE,
        "credits": credits,
        "enrollment": random.randint(10, 40),
        "schedule_type": "Class Instruction",
        "status": "Active",
        "location_type": "room",
        "space_ids": [room["space_key"]],
        "space_display_names": [room["display_name"]],
        "meeting_patterns": patterns,
        "instructor_id": person["id"],
        "instructor_ids": [person["id"]],
        "instructor_assignments": [{"person_id": person["id"], "is_primary": True, "percentage": 100}],
        "instructor_name": f"{person['last_name']}, {person['first_name']}",
        "identity_key": identity.primary_key,
        "identity_keys": identity.keys,
        "identity_source": identity.source,
    }


# ─── Seed function ─────────────────────────────────────────────

async def seed_store(store: DocumentStore, schedule_count: int = 20) -> dict[str, int]:
    """
    Seed people, rooms, schedules and the term.
    Returns counts per collection.
    """
    random.seed(0)
    timestamp = datetime.now(timezone.utc).isoformat()
    people = make_people()
    rooms = make_rooms()

    for person in people:
        await store.put("people", person["id"], {**person, "created_at": timestamp})
    for room in rooms:
        await store.put("rooms", room["id"], {**room, "created_at": timestamp})

    schedules = []
    for idx in range(schedule_count):
        # No room or instructor repeats on the same pattern within 20 schedules
        schedule = make_schedule(idx, people[idx % 10], rooms[idx % len(rooms)])
        schedules.append(schedule)
        await store.put("schedules", schedule["id"], {**schedule, "created_at": timestamp})

    await store.put("terms", TERM_CODE, {
        "term_code": TERM_CODE,
        "term": TERM,
        "status": "active",
        "locked": False,
        "created_at": timestamp,
    })

    return {"people": len(people), "rooms": len(rooms), "schedules": len(schedules), "terms": 1}


# ─── CLI entry point ───────────────────────────────────────────

async def main():
    configure_logging()
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        async with session.begin():
            counts = await seed_store(SqlDocumentStore(session))

    await engine.dispose()
    print("Seeded department:")
    for collection, count in counts.items():
        print(f"  {collection:<10} {count}")


if __name__ == "__main__":
    asyncio.run(main())
