"""Shared fixtures: file-backed SQLite per test, deterministic clock, real sealing and signing."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from ehr_audit.application.audit_recorder import AuditRecorder
from ehr_audit.domain.models.audit_event import AuditAction, RequestContext
from ehr_audit.governance.digest_signer import DigestSigner
from ehr_audit.infrastructure.database.audit_repository_db import SqlAlchemyAuditRepository
from ehr_audit.infrastructure.database.session import (
    build_engine,
    build_session_factory,
    create_schema,
)
from ehr_audit.observability.metrics import MetricsCollector
from ehr_audit.security.encryption import EncryptionService

TEST_DIGEST_KEY = "test-digest-key-0123456789abcdef-0123"
TEST_ENCRYPTION_KEY = "test-encryption-key-0123456789abcdef"
CLOCK_START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class StepClock:
    """Returns start, start+step, start+2*step, ... on successive calls."""

    def __init__(self, start: datetime = CLOCK_START, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.now
        self.now = self.now + self.step
        return value


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory):
    return SqlAlchemyAuditRepository(session_factory)


@pytest.fixture(scope="session")
def encryption():
    return EncryptionService(TEST_ENCRYPTION_KEY)


@pytest.fixture
def signer():
    return DigestSigner(TEST_DIGEST_KEY)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def recorder(repository, encryption, metrics, clock):
    return AuditRecorder(
        repository,
        encryption,
        metrics=metrics,
        clock=clock,
        retry_backoff_ms=0,
    )


class FakeRedisLockBackend:
    """In-memory SET NX EX store standing in for Redis."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttl: dict[str, int] = {}

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool:
        if key in self._store:
            return False
        self._store[key] = value
        self._ttl[key] = ttl
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def delete_if_value(self, key: str, value: str) -> bool:
        if self._store.get(key) == value:
            del self._store[key]
            self._ttl.pop(key, None)
            return True
        return False


@pytest.fixture
def backend():
    return FakeRedisLockBackend()


@pytest.fixture
def seed(recorder):
    """Append `count` READ events for actor u-1, one clock step apart."""

    async def _seed(count: int, *, actor_id: str = "u-1", resource_type: str = "Patient"):
        events = []
        for i in range(count):
            events.append(
                await recorder.record_event(
                    actor_id,
                    AuditAction.READ,
                    resource_type,
                    f"p-{i + 1}",
                    RequestContext(method="GET", endpoint=f"/api/v1/patients/p-{i + 1}", status_code=200),
                    actor_role="CLINICIAN",
                )
            )
        return events

    return _seed


@pytest.fixture
def tamper(engine):
    """Run raw SQL below the ORM, the way an attacker with table access would."""

    async def _tamper(statement: str, **params):
        async with engine.begin() as conn:
            await conn.execute(text(statement), params)

    return _tamper


@pytest.fixture
def clock_start():
    """Timestamp of the first event appended through the `recorder` fixture."""
    return CLOCK_START
