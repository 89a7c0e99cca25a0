"""Fixtures for API unit tests: SQLite-backed repository and recorder, AsyncClient, actor headers."""

import pytest
from httpx import ASGITransport, AsyncClient

from ehr_audit.api import dependencies
from ehr_audit.main import app


@pytest.fixture
def app_with_overrides(repository, recorder, encryption, signer, metrics):
    """App wired to the per-test SQLite chain instead of the configured database."""
    app.dependency_overrides[dependencies.get_audit_repository] = lambda: repository
    app.dependency_overrides[dependencies.get_audit_recorder] = lambda: recorder
    app.dependency_overrides[dependencies.get_encryption_service] = lambda: encryption
    app.dependency_overrides[dependencies.get_digest_signer] = lambda: signer
    app.dependency_overrides[dependencies.get_metrics] = lambda: metrics
    app.state.audit_recorder = recorder
    app.state.metrics = metrics
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app_with_overrides):
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auditor_headers():
    return {"X-Actor-ID": "auditor-1", "X-Actor-Role": "AUDITOR", "X-Session-ID": "sess-a"}


@pytest.fixture
def admin_headers():
    return {"X-Actor-ID": "admin-1", "X-Actor-Role": "ADMIN"}


@pytest.fixture
def clinician_headers():
    return {"X-Actor-ID": "dr-1", "X-Actor-Role": "CLINICIAN"}
