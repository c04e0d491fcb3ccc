"""
Tests for the import API.

Covers:
  - Preview of parsed rows and of uploaded Excel/CSV files
  - Import type detection and upload errors
  - Transaction history, review and discard
  - Commit with the default selection, explicit selection and resolutions
  - Matching gate (422), term locks (423), double commit (409)
  - Commit audit records
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient

from tests.fixtures.excel_factory import (
    SCHEDULE_HEADERS,
    make_csv,
    make_directory_csv,
    make_excel,
    make_schedule_excel,
)
from tests.fixtures.records import directory_row, person_doc, room_doc, schedule_row

SCHEDULE_ID = "sched_crn_202530_33038"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ─── Helpers ──────────────────────────────────────────────────


@pytest_asyncio.fixture
async def department(sql_store):
    """Jane Smith and Draper 201 in the store."""
    await sql_store.put("people", "person_jane", person_doc())
    await sql_store.put("rooms", "DRAPER:201", room_doc("Draper", "201"))
    return sql_store


async def preview_rows(client: AsyncClient, rows: list[dict], **fields) -> dict:
    resp = await client.post("/api/v1/imports/preview/rows", json={"rows": rows, **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()


# ─── Preview ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_preview_rows(client: AsyncClient, department):
    """A new section against a known instructor and room is one schedule add."""
    tx = await preview_rows(client, [schedule_row()])

    assert tx["id"].startswith("import_")
    assert tx["import_type"] == "schedule"
    assert tx["status"] == "preview"
    assert tx["semester"] == "202530"
    assert tx["stats"]["total_changes"] == 1
    assert tx["stats"]["schedules_added"] == 1

    [change] = tx["changes"]["schedules"]["added"]
    assert change["new_data"]["instructor_id"] == "person_jane"
    assert change["new_data"]["space_ids"] == ["DRAPER:201"]
    assert tx["matching_issues"] == []


@pytest.mark.asyncio
async def test_preview_detects_import_type(client: AsyncClient, department):
    """Without import_type, the header signature decides."""
    tx = await preview_rows(client, [directory_row()])
    assert tx["import_type"] == "directory"


@pytest.mark.asyncio
async def test_preview_writes_nothing(client: AsyncClient, department):
    """Preview persists the transaction but never touches the store."""
    await preview_rows(client, [schedule_row(Room="Draper 202")])
    assert await department.get("schedules", SCHEDULE_ID) is None
    assert await department.get("rooms", "DRAPER:202") is None


@pytest.mark.asyncio
async def test_preview_unknown_format(client: AsyncClient):
    resp = await client.post("/api/v1/imports/preview/rows", json={"rows": [{"Budget": "100"}]})
    assert resp.status_code == 400
    assert "Unrecognized export format" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_preview_no_rows(client: AsyncClient):
    resp = await client.post("/api/v1/imports/preview/rows", json={"rows": [], "import_type": "schedule"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_preview_rows_rejects_bad_type(client: AsyncClient):
    resp = await client.post("/api/v1/imports/preview/rows", json={"rows": [schedule_row()], "import_type": "budget"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_preview_excel_upload(client: AsyncClient):
    """Ten sections by unknown instructors: ten adds, each waiting on a match issue."""
    resp = await client.post(
        "/api/v1/imports/preview",
        files={"file": ("fall.xlsx", make_schedule_excel(10), XLSX)},
        data={"description": "Fall export"},
    )
    assert resp.status_code == 201, resp.text
    tx = resp.json()

    assert tx["description"] == "Fall export"
    assert tx["preview_summary"]["rows_total"] == 10
    assert tx["preview_summary"]["schedules_added"] == 10
    assert tx["preview_summary"]["match_issues"] == 10
    assert tx["import_metadata"]["file_name"] == "fall.xlsx"
    lineage_rows = [entry["row_index"] for entry in tx["row_lineage"]]
    assert lineage_rows == list(range(2, 12))


@pytest.mark.asyncio
async def test_preview_csv_directory_upload(client: AsyncClient, department):
    """A directory CSV (with BOM) updates the matched person."""
    resp = await client.post(
        "/api/v1/imports/preview",
        files={"file": ("directory.csv", make_directory_csv([directory_row()]), "text/csv")},
    )
    assert resp.status_code == 201, resp.text
    tx = resp.json()

    assert tx["import_type"] == "directory"
    [change] = tx["changes"]["people"]["modified"]
    assert change["original_data"]["id"] == "person_jane"
    assert change["new_data"]["phone"] == "2547101234"


@pytest.mark.asyncio
async def test_preview_csv_skips_blank_lines(client: AsyncClient, department):
    rows = [schedule_row(), {h: "" for h in SCHEDULE_HEADERS}]
    resp = await client.post(
        "/api/v1/imports/preview",
        files={"file": ("fall.csv", make_csv(rows, SCHEDULE_HEADERS), "text/csv")},
        data={"import_type": "schedule"},
    )
    assert resp.status_code == 201
    assert resp.json()["preview_summary"]["rows_total"] == 1


@pytest.mark.asyncio
async def test_preview_unsupported_file(client: AsyncClient):
    resp = await client.post(
        "/api/v1/imports/preview",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 400
    assert "Unsupported file type" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_preview_empty_file(client: AsyncClient):
    resp = await client.post(
        "/api/v1/imports/preview",
        files={"file": ("empty.xlsx", b"", XLSX)},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Empty file uploaded"


@pytest.mark.asyncio
async def test_preview_header_only_file(client: AsyncClient):
    resp = await client.post(
        "/api/v1/imports/preview",
        files={"file": ("fall.xlsx", make_excel([], SCHEDULE_HEADERS), XLSX)},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No data rows found"


# ─── History / Review ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_transaction_and_changes(client: AsyncClient, department):
    tx = await preview_rows(client, [schedule_row(Room="Draper 202")])

    resp = await client.get(f"/api/v1/imports/{tx['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == tx["id"]
    assert resp.json()["changes"] == tx["changes"]

    resp = await client.get(f"/api/v1/imports/{tx['id']}/changes")
    assert resp.status_code == 200
    changes = resp.json()
    assert [c["id"] for c in changes] == ["change_0001", "change_0002"]
    assert {c["collection"] for c in changes} == {"rooms", "schedules"}


@pytest.mark.asyncio
async def test_list_imports(client: AsyncClient, department):
    first = await preview_rows(client, [schedule_row()])
    second = await preview_rows(client, [directory_row()])

    resp = await client.get("/api/v1/imports")
    assert resp.status_code == 200
    history = resp.json()
    assert {h["id"] for h in history} == {first["id"], second["id"]}
    assert all(h["status"] == "preview" for h in history)

    resp = await client.get("/api/v1/imports", params={"limit": 1})
    assert len(resp.json()) == 1


@pytest.mark.asyncio
async def test_unknown_transaction(client: AsyncClient):
    assert (await client.get("/api/v1/imports/import_missing")).status_code == 404
    assert (await client.get("/api/v1/imports/import_missing/changes")).status_code == 404
    assert (await client.delete("/api/v1/imports/import_missing")).status_code == 404
    assert (await client.post("/api/v1/imports/import_missing/commit")).status_code == 404
    assert (await client.get("/api/v1/imports/import_missing/audit")).status_code == 404


@pytest.mark.asyncio
async def test_discard_preview(client: AsyncClient, department):
    tx = await preview_rows(client, [schedule_row()])

    resp = await client.delete(f"/api/v1/imports/{tx['id']}")
    assert resp.status_code == 204
    assert (await client.get(f"/api/v1/imports/{tx['id']}")).status_code == 404


# ─── Commit ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_commit_default_selection(client: AsyncClient, department):
    """No body commits every ungated change and writes an audit row."""
    tx = await preview_rows(client, [schedule_row(Room="Draper 202")], actor="registrar")

    resp = await client.post(f"/api/v1/imports/{tx['id']}/commit")
    assert resp.status_code == 200, resp.text
    result = resp.json()
    assert result["status"] == "committed"
    assert result["stats"]["schedules_added"] == 1
    assert result["stats"]["rooms_added"] == 1
    assert result["term_codes"] == ["202530"]

    schedule = await department.get("schedules", SCHEDULE_ID)
    assert schedule["instructor_id"] == "person_jane"
    assert (await department.get("terms", "202530"))["locked"] is False

    resp = await client.get(f"/api/v1/imports/{tx['id']}")
    assert resp.json()["status"] == "committed"
    assert resp.json()["commit_result"]["document_ids"]

    resp = await client.get(f"/api/v1/imports/{tx['id']}/audit")
    assert resp.status_code == 200
    audit = resp.json()
    assert audit["actor"] == "system"
    assert audit["status"] == "committed"
    assert audit["term"] == "202530"
    assert audit["applied_change_ids"] == result["applied_change_ids"]
    assert audit["selection"]["change_ids"] == ["change_0001", "change_0002"]


@pytest.mark.asyncio
async def test_commit_selected_changes(client: AsyncClient, department):
    """Only the selected room add is written."""
    tx = await preview_rows(client, [schedule_row(Room="Draper 202")])
    [room] = tx["changes"]["rooms"]["added"]

    resp = await client.post(
        f"/api/v1/imports/{tx['id']}/commit",
        json={"selected_change_ids": [room["id"]], "actor": "registrar"},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["stats"]["total_changes"] == 1
    assert await department.get("rooms", "DRAPER:202") is not None
    assert await department.get("schedules", SCHEDULE_ID) is None

    audit = (await client.get(f"/api/v1/imports/{tx['id']}/audit")).json()
    assert audit["actor"] == "registrar"


@pytest.mark.asyncio
async def test_commit_field_map(client: AsyncClient, department):
    await preview_and_commit(client, [schedule_row(Enrollment="20")])
    tx = await preview_rows(client, [schedule_row(Enrollment="25", **{"Course Title": "Cultural Anthropology"})])
    [change] = tx["changes"]["schedules"]["modified"]

    resp = await client.post(
        f"/api/v1/imports/{tx['id']}/commit",
        json={"field_map": {change["id"]: ["enrollment"]}},
    )
    assert resp.status_code == 200, resp.text
    schedule = await department.get("schedules", SCHEDULE_ID)
    assert schedule["enrollment"] == 25
    assert schedule["course_title"] == "Introduction to Anthropology"


async def preview_and_commit(client: AsyncClient, rows: list[dict]) -> dict:
    tx = await preview_rows(client, rows)
    resp = await client.post(f"/api/v1/imports/{tx['id']}/commit")
    assert resp.status_code == 200, resp.text
    return tx


@pytest.mark.asyncio
async def test_commit_twice(client: AsyncClient, department):
    tx = await preview_and_commit(client, [schedule_row()])

    resp = await client.post(f"/api/v1/imports/{tx['id']}/commit")
    assert resp.status_code == 409
    assert (await client.delete(f"/api/v1/imports/{tx['id']}")).status_code == 409


@pytest.mark.asyncio
async def test_commit_gated_change(client: AsyncClient, department):
    """Selecting a change that waits on an unresolved match is rejected whole."""
    tx = await preview_rows(client, [schedule_row(Instructor="Smith, Jan")])
    [schedule] = tx["changes"]["schedules"]["added"]

    resp = await client.post(
        f"/api/v1/imports/{tx['id']}/commit",
        json={"selected_change_ids": [schedule["id"]]},
    )
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["error"] == "unresolved_match"
    assert detail["issue_ids"] == ["match_0001"]
    assert detail["change_ids"] == [schedule["id"]]

    assert await department.get("schedules", SCHEDULE_ID) is None
    assert (await client.get(f"/api/v1/imports/{tx['id']}")).json()["status"] == "preview"


@pytest.mark.asyncio
async def test_commit_with_link_resolution(client: AsyncClient, department):
    tx = await preview_rows(client, [schedule_row(Instructor="Smith, Jan")])

    resp = await client.post(
        f"/api/v1/imports/{tx['id']}/commit",
        json={"match_resolutions": {"match_0001": {"action": "link", "person_id": "person_jane"}}},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["stats"]["schedules_added"] == 1
    assert (await department.get("schedules", SCHEDULE_ID))["instructor_id"] == "person_jane"

    stored = (await client.get(f"/api/v1/imports/{tx['id']}")).json()
    assert stored["matching_issues"][0]["resolution"] == {"action": "link", "person_id": "person_jane"}


@pytest.mark.asyncio
async def test_commit_with_create_resolution(client: AsyncClient, department):
    tx = await preview_rows(client, [schedule_row(Instructor="Smith, Jan")])

    resp = await client.post(
        f"/api/v1/imports/{tx['id']}/commit",
        json={"match_resolutions": {"match_0001": {"action": "create"}}},
    )
    assert resp.status_code == 200, resp.text
    result = resp.json()
    assert result["stats"]["people_added"] == 1

    schedule = await department.get("schedules", SCHEDULE_ID)
    person = await department.get("people", schedule["instructor_id"])
    assert person["first_name"] == "Jan"
    assert person["last_name"] == "Smith"


@pytest.mark.asyncio
async def test_commit_invalid_resolution(client: AsyncClient, department):
    tx = await preview_rows(client, [schedule_row(Instructor="Smith, Jan")])

    resp = await client.post(
        f"/api/v1/imports/{tx['id']}/commit",
        json={"match_resolutions": {"match_0001": {"action": "link", "person_id": "person_ghost"}}},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"] == "invalid_resolution"


@pytest.mark.asyncio
async def test_commit_locked_term(client: AsyncClient, department):
    resp = await client.put("/api/v1/terms/202530/lock")
    assert resp.status_code == 200

    tx = await preview_rows(client, [schedule_row()])
    resp = await client.post(f"/api/v1/imports/{tx['id']}/commit")
    assert resp.status_code == 423
    detail = resp.json()["detail"]
    assert detail["error"] == "term_locked"
    assert detail["term_code"] == "202530"
    assert await department.get("schedules", SCHEDULE_ID) is None


@pytest.mark.asyncio
async def test_reimport_is_unchanged(client: AsyncClient, department):
    """Committing then previewing the same rows again yields nothing to do."""
    rows = [schedule_row(), schedule_row(CRN="33039", **{"Section #": "02 (33039)", "Meeting Pattern": "TR 9:30 am - 10:45 am"})]
    await preview_and_commit(client, rows)

    again = await preview_rows(client, rows)
    assert again["stats"]["total_changes"] == 0
    assert again["preview_summary"]["schedules_unchanged"] == 2
    assert {entry["action"] for entry in again["row_lineage"]} == {"unchanged"}
