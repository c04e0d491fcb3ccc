"""Tests for schedule identity keys, the existing-data index and batch dedup."""

from rostersync.services.identity import (
    BatchKeyRegistry,
    batch_claim_keys,
    build_schedule_doc_id,
    build_schedule_identity_index,
    choose_preferred_schedule,
    derive_schedule_identity,
    identity_from_schedule,
    identity_strength,
    merge_identity_keys,
    resolve_identity_match,
)
from tests.fixtures.records import room_doc, schedule_doc, timed

DRAPER_201 = room_doc("Draper", "201")


def _identity(**overrides):
    fields = dict(
        course_code="ANT 1301",
        section="01",
        term="Fall 2025",
        crn="33038",
        meeting_patterns=timed("MWF", "9:00 AM", "9:50 AM"),
        space_ids=["DRAPER:201"],
        room_names=["Draper 201"],
    )
    fields.update(overrides)
    return derive_schedule_identity(**fields)


class TestDeriveIdentity:
    def test_key_order(self):
        identity = _identity(clss_id="90817")
        prefixes = [k.split(":", 1)[0] for k in identity.keys]
        assert prefixes == ["clss", "crn", "section", "composite"]
        assert identity.primary_key == "clss:202530:90817"
        assert identity.source == "clss"

    def test_crn_primary_without_clss(self):
        identity = _identity()
        assert identity.primary_key == "crn:202530:33038"
        assert "section:202530_ANT_1301_01" in identity.keys

    def test_term_code_from_label(self):
        assert _identity(term="fall 2025").primary_key == _identity(term="Fall 2025").primary_key

    def test_section_with_embedded_crn(self):
        identity = _identity(crn="", section="01 (33038)")
        assert identity.primary_key == "section:202530_ANT_1301_01"

    def test_composite_only(self):
        identity = _identity(crn="", section="")
        assert identity.source == "composite"
        assert identity.primary_key.startswith("composite:ANT_1301:202530:")

    def test_composite_ignores_pattern_order(self):
        a = _identity(crn="", section="", meeting_patterns=timed("MWF", "9:00 AM", "9:50 AM"))
        b = _identity(
            crn="", section="",
            meeting_patterns=list(reversed(timed("MWF", "9:00 am", "9:50 am"))),
        )
        assert a.primary_key == b.primary_key

    def test_composite_uses_room_names_without_space_ids(self):
        identity = _identity(crn="", section="", space_ids=[], room_names=["Draper  201"])
        assert identity.primary_key.endswith(":draper_201")

    def test_composite_distinguishes_untimed_patterns(self):
        online = [{"day": None, "start_time": "", "end_time": "", "mode": "online", "raw": "Online"}]
        arranged = [{"day": None, "start_time": "", "end_time": "", "mode": "arranged", "raw": "TBA"}]
        a = _identity(crn="", section="", meeting_patterns=online)
        b = _identity(crn="", section="", meeting_patterns=arranged)
        assert a.primary_key != b.primary_key

    def test_no_keys_without_term(self):
        identity = _identity(term="")
        assert identity.keys == []
        assert identity.primary_key == ""
        assert identity.source == ""

    def test_strength(self):
        assert identity_strength("clss:x") > identity_strength("crn:x")
        assert identity_strength("crn:x") > identity_strength("section:x")
        assert identity_strength("section:x") > identity_strength("composite:x")
        assert identity_strength(None) == 0


class TestDocId:
    def test_doc_id(self):
        assert build_schedule_doc_id("crn:202530:33038") == "sched_crn_202530_33038"

    def test_empty(self):
        assert build_schedule_doc_id("") == ""

    def test_stored_schedule_round_trip(self):
        doc = schedule_doc(room=DRAPER_201)
        assert identity_from_schedule(doc).keys == doc["identity_keys"]
        assert doc["id"] == "sched_crn_202530_33038"


class TestIdentityIndex:
    def test_indexed_under_every_key(self):
        doc = schedule_doc(room=DRAPER_201)
        index, collisions = build_schedule_identity_index([doc])
        assert all(index[k] is doc for k in doc["identity_keys"])
        assert collisions.total == 0

    def test_legacy_stored_key_is_indexed(self):
        doc = schedule_doc(room=DRAPER_201, identity_keys=["crn:FALL_2025:33038"])
        index, _ = build_schedule_identity_index([doc])
        assert index["crn:FALL_2025:33038"] is doc
        assert index["crn:202530:33038"] is doc

    def test_collision_prefers_stronger_record(self):
        strong = schedule_doc(room=DRAPER_201)
        weak = {**schedule_doc(room=DRAPER_201), "id": "legacy_1", "identity_key": None, "identity_keys": []}
        index, collisions = build_schedule_identity_index([weak, strong])
        assert index["crn:202530:33038"]["id"] == strong["id"]
        assert collisions.total == len(strong["identity_keys"])
        assert collisions.by_type["crn"] == 1
        assert collisions.examples[0].preferred_id == strong["id"]

    def test_tie_breaks_on_id(self):
        a = {"id": "sched_a", "crn": "1"}
        b = {"id": "sched_b", "crn": "1"}
        assert choose_preferred_schedule(a, b) is a
        assert choose_preferred_schedule(b, a) is a

    def test_resolve_strongest_key_first(self):
        doc = schedule_doc(room=DRAPER_201)
        other = {"id": "other"}
        index = {"crn:202530:33038": doc, "section:202530_ANT_1301_01": other}
        found, key = resolve_identity_match(["crn:202530:33038", "section:202530_ANT_1301_01"], index)
        assert found is doc
        assert key == "crn:202530:33038"

    def test_resolve_falls_back_to_weaker_key(self):
        doc = schedule_doc(room=DRAPER_201)
        index = {"section:202530_ANT_1301_01": doc}
        found, key = resolve_identity_match(["crn:202530:99999", "section:202530_ANT_1301_01"], index)
        assert found is doc
        assert key.startswith("section:")

    def test_resolve_miss(self):
        assert resolve_identity_match(["crn:202530:1"], {}) == (None, None)

    def test_merge_keys_keeps_order(self):
        assert merge_identity_keys(["a", "b"], ["b", "c", ""]) == ["a", "b", "c"]


class TestBatchKeyRegistry:
    def test_first_claim_wins(self):
        registry = BatchKeyRegistry()
        registry.claim("crn:202530:33038", "change_0001")
        registry.claim("crn:202530:33038", "change_0005")
        assert registry.owner_of("crn:202530:33038") == "change_0001"
        assert "crn:202530:33038" in registry

    def test_unknown_key(self):
        registry = BatchKeyRegistry()
        assert registry.owner_of("crn:x") is None
        assert "crn:x" not in registry

    def test_find_returns_first_claimed(self):
        registry = BatchKeyRegistry()
        registry.claim(["clss:202530:777", "crn:202530:33038"], "change_0001")
        assert registry.find(["crn:202530:33038", "clss:202530:777"]) == ("crn:202530:33038", "change_0001")
        assert registry.find(["crn:202530:33039"]) is None


class TestBatchClaimKeys:
    def test_strong_keys_and_stored_match(self):
        identity = _identity(clss_id="777")
        keys = batch_claim_keys(identity, "sched_crn_202530_33038")
        assert keys[:3] == ["clss:202530:777", "crn:202530:33038", "section:202530_ANT_1301_01"]
        assert keys[-1] == "existing:sched_crn_202530_33038"
        assert not any(k.startswith("composite:") for k in keys)

    def test_composite_only_identity_claims_its_primary(self):
        identity = _identity(crn="", section="", clss_id="")
        [key] = batch_claim_keys(identity)
        assert key.startswith("composite:")
