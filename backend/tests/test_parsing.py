"""Tests for term, meeting pattern, room and instructor cell parsing."""

import pytest

from rostersync.services.locations import (
    LOCATION_NO_ROOM,
    LOCATION_ROOM,
    LOCATION_VIRTUAL,
    build_space_key,
    parse_location,
    parse_room_label,
    split_multi_room,
)
from rostersync.services.meeting_patterns import (
    format_meeting_patterns,
    format_minutes,
    has_valid_meeting_pattern,
    normalize_time,
    parse_meeting_patterns,
    time_to_minutes,
)
from rostersync.services.names import (
    canonical_first_name,
    make_name_key,
    parse_full_name,
    parse_instructor_field,
)
from rostersync.services.terms import (
    normalize_term_label,
    parse_term_code,
    resolve_term,
    term_code_from_label,
)


class TestTerms:
    def test_label_case_insensitive(self):
        assert normalize_term_label("fall 2025") == "Fall 2025"

    def test_two_digit_year(self):
        assert term_code_from_label("Spring-26") == "202640"

    def test_label_from_code(self):
        assert normalize_term_label("202530") == "Fall 2025"

    def test_resolve_fills_code(self):
        assert resolve_term("Fall 2025") == ("Fall 2025", "202530")

    def test_resolve_fills_label(self):
        assert resolve_term("", "202530") == ("Fall 2025", "202530")

    def test_unknown_season_code(self):
        assert parse_term_code("202599") is None

    def test_unrecognized_label_passes_through(self):
        assert normalize_term_label("Maymester") == "Maymester"
        assert term_code_from_label("Maymester") == ""


class TestTimes:
    @pytest.mark.parametrize("raw,expected", [
        ("9:00 am", "9:00 AM"),
        ("9:00AM", "9:00 AM"),
        ("1330", "1:30 PM"),
        ("13:30", "1:30 PM"),
        ("12:00 pm", "12:00 PM"),
        ("", ""),
    ])
    def test_normalize_time(self, raw, expected):
        assert normalize_time(raw) == expected

    def test_minutes_round_trip(self):
        assert time_to_minutes("9:30 am") == 570
        assert format_minutes(570) == "9:30 AM"
        assert format_minutes(720) == "12:00 PM"

    def test_unparseable_minutes(self):
        assert time_to_minutes("noonish") is None


class TestMeetingPatterns:
    def test_one_pattern_per_day(self):
        patterns = parse_meeting_patterns("MWF 9:00 am - 9:50 am")
        assert [p["day"] for p in patterns] == ["M", "W", "F"]
        assert all(p["start_time"] == "9:00 AM" for p in patterns)
        assert all(p["end_time"] == "9:50 AM" for p in patterns)

    def test_newline_separated_segments(self):
        patterns = parse_meeting_patterns("TR 9:30 am - 10:45 am\nF 1:00 pm - 1:50 pm")
        assert [p["day"] for p in patterns] == ["T", "R", "F"]
        assert patterns[-1]["start_time"] == "1:00 PM"

    def test_meetings_column_wins_and_skips_exams(self):
        patterns = parse_meeting_patterns(
            meeting_pattern="MWF 9:00 am - 9:50 am",
            meetings="TR 11:00 am - 12:15 pm; Final Exam R 2:00 pm - 4:00 pm",
        )
        assert [p["day"] for p in patterns] == ["T", "R"]
        assert patterns[0]["start_time"] == "11:00 AM"

    def test_online(self):
        patterns = parse_meeting_patterns("Online")
        assert len(patterns) == 1
        assert patterns[0]["day"] is None
        assert patterns[0]["mode"] == "online"
        assert has_valid_meeting_pattern(patterns) is True

    def test_arranged(self):
        patterns = parse_meeting_patterns("TBA")
        assert patterns[0]["mode"] == "arranged"

    def test_does_not_meet_is_ignored(self):
        assert parse_meeting_patterns("Does Not Meet") == []

    def test_unparseable_keeps_raw(self):
        patterns = parse_meeting_patterns("see department")
        assert patterns[0]["raw"] == "see department"
        assert has_valid_meeting_pattern(patterns) is False

    def test_duplicate_segments_collapse(self):
        patterns = parse_meeting_patterns("M 9:00 am - 9:50 am; m 9:00 AM - 9:50 AM")
        assert len(patterns) == 1

    def test_format(self):
        patterns = parse_meeting_patterns("MW 9:00 am - 9:50 am")
        assert format_meeting_patterns(patterns) == "M 9:00 AM-9:50 AM; W 9:00 AM-9:50 AM"


class TestLocations:
    def test_single_room(self):
        location = parse_location("Draper 201")
        assert location.location_type == LOCATION_ROOM
        assert location.space_keys == ["DRAPER:201"]
        assert location.display_names == ["Draper 201"]

    def test_multi_word_building(self):
        room = parse_room_label("Baylor Sciences Building 301")
        assert room.building_code == "BAYLOR_SCIENCES_BUILDING"
        assert room.space_key == "BAYLOR_SCIENCES_BUILDING:301"

    def test_semicolon_separated(self):
        location = parse_location("Goebel 101; Goebel 109")
        assert location.space_keys == ["GOEBEL:101", "GOEBEL:109"]

    def test_shared_building_slash(self):
        assert split_multi_room("Goebel 101/109") == ["Goebel 101", "Goebel 109"]

    def test_and_separated(self):
        location = parse_location("Draper 201 and Draper 202")
        assert location.space_keys == ["DRAPER:201", "DRAPER:202"]

    def test_duplicate_rooms_collapse(self):
        location = parse_location("Draper 201; Draper 201")
        assert location.space_keys == ["DRAPER:201"]

    @pytest.mark.parametrize("raw", ["Online", "Zoom", "virtual section"])
    def test_virtual(self, raw):
        location = parse_location(raw)
        assert location.location_type == LOCATION_VIRTUAL
        assert location.rooms == []

    @pytest.mark.parametrize("raw", ["", None, "TBA", "No Room Needed", "N/A"])
    def test_no_room(self, raw):
        location = parse_location(raw)
        assert location.location_type == LOCATION_NO_ROOM
        assert location.rooms == []

    def test_unparseable_part_is_reported(self):
        location = parse_location("Draper 201; Somewhere")
        assert location.space_keys == ["DRAPER:201"]
        assert location.errors == ["Somewhere"]

    def test_space_key_requires_both_parts(self):
        assert build_space_key("", "201") == ""
        assert build_space_key("draper", " 201 ") == "DRAPER:201"


class TestInstructorCells:
    def test_last_first(self):
        [entry] = parse_instructor_field("Smith, Jane")
        assert (entry.first_name, entry.last_name) == ("Jane", "Smith")
        assert entry.is_primary is True
        assert entry.percentage == 100

    def test_full_export_format(self):
        entries = parse_instructor_field(
            "Smith, Jane (123456789) [Primary, 60%]; Doe, John (987654321) [Secondary, 40%]"
        )
        assert [e.last_name for e in entries] == ["Smith", "Doe"]
        assert entries[0].instructor_id == "123456789"
        assert entries[0].is_primary is True
        assert entries[1].is_primary is False
        assert entries[1].percentage == 40

    def test_first_last(self):
        [entry] = parse_instructor_field("Jane Smith")
        assert (entry.first_name, entry.last_name) == ("Jane", "Smith")

    def test_staff(self):
        [entry] = parse_instructor_field("Staff")
        assert entry.is_staff is True

    def test_empty(self):
        assert parse_instructor_field("") == []

    def test_title_is_split_off(self):
        assert parse_full_name("Dr. Jane Ann Smith") == ("Dr.", "Jane", "Ann Smith")


class TestNameKeys:
    def test_name_key(self):
        assert make_name_key("Jane", "Smith") == "jane smith"
        assert make_name_key(" JANE ", "O'Neil") == "jane o neil"

    def test_nickname(self):
        assert canonical_first_name("Bob") == "robert"
        assert canonical_first_name("Jane") == "jane"
