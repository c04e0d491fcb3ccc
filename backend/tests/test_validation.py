"""Tests for the validator passes."""

import pytest

from rostersync.schemas.entities import PersonEntity, RoomEntity
from rostersync.schemas.imports import DiffEntry, ImportTransaction
from rostersync.services.projection import project_schedule_row
from rostersync.services.store import StoreSnapshot
from rostersync.services.validation import (
    check_modifications,
    check_references,
    find_teaching_conflicts,
    person_structural_error,
    room_structural_error,
    schedule_structural_error,
    validate_transaction,
)
from tests.fixtures.records import FIXED_NOW, person_doc, room_doc, schedule_doc, schedule_row, timed

JANE = person_doc()
DRAPER_201 = room_doc("Draper", "201")
DRAPER_202 = room_doc("Draper", "202")


def _transaction() -> ImportTransaction:
    return ImportTransaction(id="import_test", import_type="schedule", created_at=FIXED_NOW)


class TestStructural:
    def test_valid_row(self):
        assert schedule_structural_error(project_schedule_row(schedule_row())) is None

    @pytest.mark.parametrize("overrides,expected", [
        ({"Course": ""}, "missing_course"),
        ({"Section #": ""}, "missing_section"),
        ({"Semester": ""}, "missing_term"),
        ({"Instructor": ""}, "missing_instructor"),
        ({"CRN": "12", "Section #": "01"}, "invalid_crn"),
        ({"Meeting Pattern": "see department"}, "invalid_meeting_pattern"),
    ])
    def test_schedule_errors(self, overrides, expected):
        entity = project_schedule_row(schedule_row(**overrides))
        error_type, message = schedule_structural_error(entity)
        assert error_type == expected
        assert message

    def test_online_without_pattern_is_valid(self):
        entity = project_schedule_row(schedule_row(Room="Online", **{"Meeting Pattern": "Online"}))
        assert schedule_structural_error(entity) is None

    def test_person(self):
        assert person_structural_error(PersonEntity()) == ("invalid_person", "Person has no email, id or name")
        assert person_structural_error(PersonEntity(email="a@x.edu")) is None

    def test_room(self):
        assert room_structural_error(RoomEntity(space_key="", display_name="Somewhere"))[0] == "invalid_room"
        assert room_structural_error(RoomEntity(space_key="DRAPER:201", display_name="Draper 201")) is None


class TestReferences:
    def test_unknown_room_and_instructor(self):
        tx = _transaction()
        tx.add_change("schedules", "add", {
            "term_code": "202530",
            "space_ids": ["NOWHERE:1"],
            "instructor_id": "ghost",
            "instructor_ids": ["ghost"],
        })
        report = tx.validation
        check_references(tx, StoreSnapshot(), report)
        orphans = report.warnings_of("orphaned_reference")
        assert {w.details["field"] for w in orphans} == {"space_ids", "instructor_ids"}
        assert all(w.change_id == "change_0001" for w in orphans)
        assert report.summary["orphaned_references"] == 2

    def test_references_resolved_by_store_or_batch(self):
        tx = _transaction()
        tx.add_change("rooms", "add", DRAPER_202)
        tx.add_change("schedules", "add", {
            "space_ids": ["DRAPER:201", "DRAPER:202"],
            "instructor_ids": ["person_jane"],
        })
        snapshot = StoreSnapshot(people=[JANE], rooms=[DRAPER_201])
        check_references(tx, snapshot, tx.validation)
        assert tx.validation.warnings == []


class TestTeachingConflicts:
    def _existing(self):
        return schedule_doc(instructor=JANE, room=DRAPER_201)

    def _incoming(self, start="9:30 AM", end="10:20 AM", instructor=JANE):
        return schedule_doc(
            course_code="SOC 1305",
            section="02",
            crn="33040",
            instructor=instructor,
            room=DRAPER_202,
            patterns=timed("MWF", start, end),
        )

    def test_overlap_with_existing_schedule(self):
        tx = _transaction()
        tx.add_change("schedules", "add", self._incoming())
        snapshot = StoreSnapshot(schedules=[self._existing()], people=[JANE])
        find_teaching_conflicts(tx, snapshot, tx.validation)

        [warning] = tx.validation.warnings_of("potential_teaching_conflict")
        assert warning.change_id == "change_0001"
        assert warning.details["days"] == ["M", "W", "F"]
        assert warning.details["overlap_start"] == "9:30 AM"
        assert warning.details["overlap_end"] == "9:50 AM"
        assert warning.details["instructor_name"] == "Jane Smith"
        assert set(warning.details["sections"]) == {"ANT 1301-01", "SOC 1305-02"}
        assert "Jane Smith" in warning.message

    def test_back_to_back_is_not_a_conflict(self):
        tx = _transaction()
        tx.add_change("schedules", "add", self._incoming(start="9:50 AM", end="10:40 AM"))
        snapshot = StoreSnapshot(schedules=[self._existing()], people=[JANE])
        find_teaching_conflicts(tx, snapshot, tx.validation)
        assert tx.validation.warnings == []

    def test_different_instructor(self):
        other = person_doc("person_robert", "Robert", "Lee")
        tx = _transaction()
        tx.add_change("schedules", "add", self._incoming(instructor=other))
        snapshot = StoreSnapshot(schedules=[self._existing()], people=[JANE, other])
        find_teaching_conflicts(tx, snapshot, tx.validation)
        assert tx.validation.warnings == []

    def test_other_term_is_ignored(self):
        tx = _transaction()
        tx.add_change("schedules", "add", self._incoming())
        existing = {**self._existing(), "term": "Spring 2026", "term_code": "202640"}
        find_teaching_conflicts(tx, StoreSnapshot(schedules=[existing], people=[JANE]), tx.validation)
        assert tx.validation.warnings == []

    def test_existing_pairs_are_not_reported(self):
        clash = {**self._incoming(), "id": "sched_other"}
        tx = _transaction()
        snapshot = StoreSnapshot(schedules=[self._existing(), clash], people=[JANE])
        find_teaching_conflicts(tx, snapshot, tx.validation)
        assert tx.validation.warnings == []

    def test_modify_replaces_stored_version(self):
        existing = self._existing()
        tx = _transaction()
        tx.add_change(
            "schedules", "modify",
            {"meeting_patterns": timed("TR", "9:00 AM", "9:50 AM")},
            original_data=existing,
        )
        incoming_clash = self._incoming(start="9:00 AM", end="9:50 AM")
        tx.add_change("schedules", "add", incoming_clash)
        find_teaching_conflicts(tx, StoreSnapshot(schedules=[existing], people=[JANE]), tx.validation)
        assert tx.validation.warnings == []

    def test_unresolved_instructor_is_compared_by_issue(self):
        assignment = [{"match_issue_id": "match_0001", "is_primary": True, "percentage": 100}]
        a = {**self._incoming(instructor=None), "instructor_assignments": assignment}
        b = {
            **schedule_doc(crn="33041", section="03", instructor=None),
            "instructor_assignments": assignment,
            "instructor_name": "Smith, Jan",
        }
        tx = _transaction()
        tx.add_change("schedules", "add", a)
        tx.add_change("schedules", "add", b)
        find_teaching_conflicts(tx, StoreSnapshot(), tx.validation)
        [warning] = tx.validation.warnings
        assert warning.details["instructor"] == "match:match_0001"


class TestModifications:
    def test_identity_and_instructor_changes(self):
        tx = _transaction()
        tx.add_change(
            "schedules", "modify",
            {"crn": "33099", "instructor_ids": ["person_robert"]},
            original_data={"id": "sched_1", "crn": "33038", "instructor_ids": ["person_jane"]},
            diff=[
                DiffEntry(key="crn", from_="33038", to="33099"),
                DiffEntry(key="instructor_ids", from_=["person_jane"], to=["person_robert"]),
            ],
        )
        check_modifications(tx, tx.validation)
        [identity] = tx.validation.warnings_of("identity_change")
        assert identity.details["field"] == "crn"
        assert "'33038' to '33099'" in identity.message
        [instructor] = tx.validation.warnings_of("instructor_change")
        assert instructor.details == {"from": ["person_jane"], "to": ["person_robert"]}

    def test_validate_transaction_runs_every_pass(self):
        tx = _transaction()
        clash = schedule_doc(
            course_code="SOC 1305", section="02", crn="33040", instructor=JANE,
            patterns=timed("MWF", "9:30 AM", "10:20 AM"), space_ids=["NOWHERE:1"],
        )
        tx.add_change("schedules", "add", clash)
        snapshot = StoreSnapshot(schedules=[schedule_doc(instructor=JANE, room=DRAPER_201)], people=[JANE])
        report = validate_transaction(tx, snapshot)
        assert report is tx.validation
        assert report.summary["orphaned_references"] == 1
        assert report.summary["potential_conflicts"] == 1
