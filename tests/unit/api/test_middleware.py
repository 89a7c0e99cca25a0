"""Tests for API middleware: correlation ID, actor context, audit trail recording and failure modes."""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from ehr_audit.api.dependencies import get_audit_recorder, get_metrics
from ehr_audit.api.middleware import (
    FAIL_CLOSED,
    FAIL_OPEN,
    ActorContextMiddleware,
    AuditTrailMiddleware,
    CorrelationIdMiddleware,
    resolve_resource,
)
from ehr_audit.application.audit_recorder import AuditRecorder
from ehr_audit.application.exceptions import PersistenceError
from ehr_audit.domain.models.audit_event import AuditAction
from ehr_audit.domain.models.audit_query import AuditSearchFilters
from ehr_audit.main import lifespan
from ehr_audit.observability.metrics import AUDIT_FAIL_OPEN_PASSTHROUGH


def _clinical_app(recorder, metrics, failure_mode=FAIL_CLOSED) -> FastAPI:
    api = FastAPI()
    api.add_middleware(AuditTrailMiddleware, failure_mode=failure_mode)
    api.add_middleware(ActorContextMiddleware)
    api.add_middleware(CorrelationIdMiddleware)

    @api.get("/api/v1/patients/{patient_id}")
    async def read_patient(patient_id: str):
        return {"id": patient_id}

    @api.post("/api/v1/encounters", status_code=201)
    async def create_encounter():
        return {"id": "enc-1"}

    @api.get("/internal/ping")
    async def ping():
        return {"ok": True}

    api.state.audit_recorder = recorder
    api.state.metrics = metrics
    return api


async def _call(api: FastAPI, method: str, path: str, **kwargs):
    transport = ASGITransport(app=api)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, path, **kwargs)


def _failing_recorder():
    recorder = AsyncMock()
    recorder.record_event = AsyncMock(side_effect=PersistenceError("database unavailable"))
    return recorder


@pytest.mark.asyncio
async def test_correlation_id_generated(async_client: AsyncClient):
    """When X-Correlation-ID is not sent, response has a generated correlation ID."""
    r = await async_client.get("/health")
    assert r.status_code == 200
    assert len(r.headers["X-Correlation-ID"]) > 0


@pytest.mark.asyncio
async def test_correlation_id_preserved_when_passed(async_client: AsyncClient):
    r = await async_client.get("/health", headers={"X-Correlation-ID": "my-correlation-123"})
    assert r.headers.get("X-Correlation-ID") == "my-correlation-123"
    assert r.json()["correlation_id"] == "my-correlation-123"


@pytest.mark.asyncio
async def test_clinical_read_is_recorded(recorder, repository, metrics):
    api = _clinical_app(recorder, metrics)

    r = await _call(
        api,
        "GET",
        "/api/v1/patients/p-42",
        headers={"X-Actor-ID": "dr-1", "X-Actor-Role": "CLINICIAN", "X-Session-ID": "s-9", "User-Agent": "ehr-ui"},
    )

    assert r.status_code == 200
    page = await repository.search(AuditSearchFilters(), page=1, limit=10)
    assert page.total == 1
    event = page.items[0]
    assert event.action == AuditAction.READ
    assert event.resource_type == "Patient"
    assert event.resource_id == "p-42"
    assert event.actor_id == "dr-1"
    assert event.actor_role == "CLINICIAN"
    assert event.session_id == "s-9"
    assert event.user_agent == "ehr-ui"
    assert event.method == "GET"
    assert event.endpoint == "/api/v1/patients/p-42"
    assert event.status_code == 200


@pytest.mark.asyncio
async def test_clinical_create_is_recorded(recorder, repository, metrics):
    r = await _call(_clinical_app(recorder, metrics), "POST", "/api/v1/encounters")

    assert r.status_code == 201
    event = (await repository.search(AuditSearchFilters(), page=1, limit=10)).items[0]
    assert event.action == AuditAction.CREATE
    assert event.resource_type == "Encounter"
    assert event.resource_id is None
    assert event.actor_id is None


@pytest.mark.asyncio
async def test_non_clinical_path_not_recorded(recorder, repository, metrics):
    r = await _call(_clinical_app(recorder, metrics), "GET", "/internal/ping")
    assert r.status_code == 200
    assert (await repository.get_tail()).sequence == 0


@pytest.mark.asyncio
async def test_fail_closed_replaces_response(metrics):
    api = _clinical_app(_failing_recorder(), metrics, failure_mode=FAIL_CLOSED)

    r = await _call(api, "GET", "/api/v1/patients/p-1")

    assert r.status_code == 503
    assert "detail" in r.json()


@pytest.mark.asyncio
async def test_fail_open_passes_response_and_counts(metrics):
    api = _clinical_app(_failing_recorder(), metrics, failure_mode=FAIL_OPEN)

    r = await _call(api, "GET", "/api/v1/patients/p-1")

    assert r.status_code == 200
    assert r.json() == {"id": "p-1"}
    assert metrics.get_counter(AUDIT_FAIL_OPEN_PASSTHROUGH, category="Patient") == 1


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/api/v1/patients/p-1", ("Patient", "p-1")),
        ("/api/v2/allergies", ("AllergyIntolerance", None)),
        ("/api/v1/widgets/7/parts", ("widgets", "7")),
        ("/audit/events", (None, None)),
        ("/health", (None, None)),
    ],
)
def test_resolve_resource(path, expected):
    assert resolve_resource(path) == expected


@pytest.mark.asyncio
async def test_lifespan_puts_recorder_and_metrics_on_app_state():
    api = FastAPI()
    async with lifespan(api):
        assert isinstance(api.state.audit_recorder, AuditRecorder)
        assert api.state.audit_recorder is get_audit_recorder()
        assert api.state.metrics is get_metrics()
