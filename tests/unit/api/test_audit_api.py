"""Tests for the /audit router: access control, search, detail, verification, export, digests."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from ehr_audit.api.dependencies import get_integrity_verifier
from ehr_audit.application.exceptions import PersistenceError
from ehr_audit.domain.models.audit_event import AuditAction, RequestContext, ResourceSnapshot
from ehr_audit.domain.models.audit_query import AuditSearchFilters


@pytest.mark.asyncio
async def test_missing_actor_is_401(async_client: AsyncClient):
    r = await async_client.get("/audit/events")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_clinician_cannot_read_audit_log(async_client: AsyncClient, clinician_headers):
    r = await async_client.get("/audit/events", headers=clinician_headers)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_unknown_role_is_403(async_client: AsyncClient):
    r = await async_client.get("/audit/events", headers={"X-Actor-ID": "x", "X-Actor-Role": "JANITOR"})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_search_events(async_client: AsyncClient, auditor_headers, seed):
    await seed(4)

    r = await async_client.get("/audit/events", params={"limit": 3}, headers=auditor_headers)

    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 4
    assert data["total_pages"] == 2
    assert [item["sequence"] for item in data["items"]] == [4, 3, 2]
    assert "old_value" not in data["items"][0]
    assert len(data["items"][0]["record_hash"]) == 64


@pytest.mark.asyncio
async def test_search_filters_by_actor(async_client: AsyncClient, auditor_headers, seed):
    await seed(2, actor_id="u-1")
    await seed(1, actor_id="u-2")
    r = await async_client.get("/audit/events", params={"actor_id": "u-2", "sort": "asc"}, headers=auditor_headers)
    assert r.json()["total"] == 1


@pytest.mark.asyncio
async def test_search_limit_capped(async_client: AsyncClient, auditor_headers):
    r = await async_client.get("/audit/events", params={"limit": 101}, headers=auditor_headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_search_inverted_window_is_422(async_client: AsyncClient, auditor_headers):
    r = await async_client.get(
        "/audit/events",
        params={"date_from": "2026-03-02T00:00:00Z", "date_to": "2026-03-01T00:00:00Z"},
        headers=auditor_headers,
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_event_detail_unseals_and_is_audited(async_client: AsyncClient, auditor_headers, recorder, repository):
    event = await recorder.record_event(
        "dr-1",
        AuditAction.UPDATE,
        "Patient",
        "p-1",
        RequestContext(method="PUT", status_code=200),
        new_value=ResourceSnapshot(resource_type="Patient", fields={"status": "active"}),
    )

    r = await async_client.get(f"/audit/events/{event.id}", headers=auditor_headers)

    assert r.status_code == 200
    data = r.json()
    assert data["new_value"] == {
        "kind": "resource",
        "resource_type": "Patient",
        "fields": {"status": "active"},
        "schema_version": None,
        "content_type": None,
        "data": None,
    }
    assert data["old_value"] is None
    assert data["snapshots_readable"] is True
    audit_reads = await repository.search(AuditSearchFilters(resource_type="AuditLog"), page=1, limit=10)
    assert audit_reads.total == 1
    assert audit_reads.items[0].resource_id == event.id
    assert audit_reads.items[0].actor_id == "auditor-1"
    assert audit_reads.items[0].session_id == "sess-a"


@pytest.mark.asyncio
async def test_event_detail_not_found(async_client: AsyncClient, auditor_headers):
    r = await async_client.get("/audit/events/missing", headers=auditor_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_verify_intact_chain(async_client: AsyncClient, auditor_headers, seed):
    await seed(3)

    r = await async_client.get("/audit/verify-integrity", headers=auditor_headers)

    assert r.status_code == 200
    data = r.json()
    assert data["valid"] is True
    assert data["anchor"] == "genesis"
    assert data["anchored"] is True
    assert data["checked_records"] == 3


@pytest.mark.asyncio
async def test_verify_reports_tampering_as_200(async_client: AsyncClient, auditor_headers, seed, tamper):
    events = await seed(3)
    await tamper("UPDATE audit_events SET actor_id = 'nobody' WHERE sequence = 2")

    r = await async_client.get("/audit/verify-integrity", headers=auditor_headers)

    assert r.status_code == 200
    data = r.json()
    assert data["valid"] is False
    assert data["first_divergence_id"] == events[1].id
    assert data["divergence_reason"] == "hash_mismatch"


@pytest.mark.asyncio
async def test_verify_with_trusted_hash(async_client: AsyncClient, auditor_headers, seed, clock_start):
    events = await seed(4)
    params = {
        "range_start": (clock_start + timedelta(seconds=2)).isoformat(),
        "trusted_previous_hash": events[1].record_hash,
    }

    r = await async_client.get("/audit/verify-integrity", params=params, headers=auditor_headers)

    assert r.json()["anchor"] == "trusted_hash"
    assert r.json()["valid"] is True


@pytest.mark.asyncio
async def test_verify_rejects_malformed_trusted_hash(async_client: AsyncClient, auditor_headers):
    r = await async_client.get(
        "/audit/verify-integrity", params={"trusted_previous_hash": "XYZ"}, headers=auditor_headers
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_verify_storage_failure_is_503(app_with_overrides, async_client: AsyncClient, auditor_headers):
    verifier = AsyncMock()
    verifier.verify = AsyncMock(side_effect=PersistenceError("connection reset"))
    app_with_overrides.dependency_overrides[get_integrity_verifier] = lambda: verifier

    r = await async_client.get("/audit/verify-integrity", headers=auditor_headers)

    assert r.status_code == 503
    assert r.json()["code"] == "VERIFICATION_UNAVAILABLE"


@pytest.mark.asyncio
async def test_export_csv_is_attachment_and_audited(async_client: AsyncClient, auditor_headers, seed, repository):
    await seed(2)

    r = await async_client.get("/audit/export", params={"format": "csv"}, headers=auditor_headers)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert r.headers["content-disposition"].startswith("attachment;")
    assert len(r.text.strip().splitlines()) == 3
    exports = await repository.search(AuditSearchFilters(action=AuditAction.EXPORT), page=1, limit=10)
    assert exports.total == 1


@pytest.mark.asyncio
async def test_export_fhir(async_client: AsyncClient, auditor_headers, seed):
    await seed(1)
    r = await async_client.get("/audit/export", params={"format": "fhir"}, headers=auditor_headers)
    assert json.loads(r.text)["resourceType"] == "Bundle"


@pytest.mark.asyncio
async def test_export_unknown_format_is_422(async_client: AsyncClient, auditor_headers):
    r = await async_client.get("/audit/export", params={"format": "xml"}, headers=auditor_headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_digest_lifecycle(async_client: AsyncClient, admin_headers, seed, clock_start):
    await seed(3)
    body = {
        "period_start": clock_start.isoformat(),
        "period_end": (clock_start + timedelta(seconds=2)).isoformat(),
    }

    created = await async_client.post("/audit/digests", json=body, headers=admin_headers)
    assert created.status_code == 201
    digest = created.json()
    assert digest["record_count"] == 3
    assert digest["generated_by"] == "admin-1"
    assert digest["algorithm"] == "hmac-sha256"

    listed = await async_client.get("/audit/digests", headers=admin_headers)
    assert [d["id"] for d in listed.json()] == [digest["id"]]

    fetched = await async_client.get(f"/audit/digests/{digest['id']}", headers=admin_headers)
    assert fetched.json()["digest_hash"] == digest["digest_hash"]

    confirmed = await async_client.get(f"/audit/digests/{digest['id']}/confirm", headers=admin_headers)
    assert confirmed.json()["matches"] is True

    verified = await async_client.get(
        "/audit/verify-integrity", params={"digest_id": digest["id"]}, headers=admin_headers
    )
    assert verified.json()["valid"] is True


@pytest.mark.asyncio
async def test_auditor_cannot_generate_digest(async_client: AsyncClient, auditor_headers, clock_start):
    body = {"period_start": clock_start.isoformat(), "period_end": clock_start.isoformat()}
    r = await async_client.post("/audit/digests", json=body, headers=auditor_headers)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_empty_period_digest_is_404(async_client: AsyncClient, admin_headers, clock_start):
    body = {"period_start": clock_start.isoformat(), "period_end": (clock_start + timedelta(days=1)).isoformat()}
    r = await async_client.post("/audit/digests", json=body, headers=admin_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_inverted_digest_period_is_422(async_client: AsyncClient, admin_headers, clock_start):
    body = {"period_start": clock_start.isoformat(), "period_end": (clock_start - timedelta(days=1)).isoformat()}
    r = await async_client.post("/audit/digests", json=body, headers=admin_headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_digest_algorithm_is_422(async_client: AsyncClient, admin_headers, seed, clock_start):
    await seed(1)
    body = {"period_start": clock_start.isoformat(), "period_end": clock_start.isoformat(), "algorithm": "md5"}
    r = await async_client.post("/audit/digests", json=body, headers=admin_headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_digest_is_404(async_client: AsyncClient, auditor_headers):
    r = await async_client.get("/audit/digests/missing/confirm", headers=auditor_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_anomalies_endpoint(async_client: AsyncClient, auditor_headers):
    r = await async_client.get("/audit/anomalies", params={"hours": 24}, headers=auditor_headers)
    assert r.status_code == 200
    assert r.json() == []
