"""Tests for the term API: listing and the lock/archive flags."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_lock_creates_term(client: AsyncClient):
    """Locking an unknown term creates its document."""
    resp = await client.put("/api/v1/terms/202530/lock")
    assert resp.status_code == 200
    term = resp.json()
    assert term["id"] == "202530"
    assert term["term"] == "Fall 2025"
    assert term["locked"] is True
    assert term["status"] == "active"


@pytest.mark.asyncio
async def test_unlock(client: AsyncClient):
    await client.put("/api/v1/terms/202530/lock")
    resp = await client.put("/api/v1/terms/202530/lock", json={"locked": False})
    assert resp.status_code == 200
    assert resp.json()["locked"] is False


@pytest.mark.asyncio
async def test_archive_and_restore(client: AsyncClient):
    resp = await client.put("/api/v1/terms/202640/archive")
    assert resp.json()["status"] == "archived"
    assert resp.json()["term"] == "Spring 2026"

    resp = await client.put("/api/v1/terms/202640/archive", json={"archived": False})
    assert resp.json()["status"] == "active"


@pytest.mark.asyncio
async def test_keeps_existing_fields(client: AsyncClient, sql_store):
    await sql_store.put("terms", "202530", {"term_code": "202530", "term": "Fall 2025", "note": "keep"})
    resp = await client.put("/api/v1/terms/202530/lock")
    assert resp.json()["note"] == "keep"
    assert (await sql_store.get("terms", "202530"))["locked"] is True


@pytest.mark.asyncio
async def test_list_terms_newest_first(client: AsyncClient):
    await client.put("/api/v1/terms/202530/lock")
    await client.put("/api/v1/terms/202640/archive")

    resp = await client.get("/api/v1/terms")
    assert resp.status_code == 200
    assert [t["term_code"] for t in resp.json()] == ["202640", "202530"]


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["fall", "202599", "2025"])
async def test_invalid_term_code(client: AsyncClient, code):
    resp = await client.put(f"/api/v1/terms/{code}/lock")
    assert resp.status_code == 400
    assert "Invalid term code" in resp.json()["detail"]
