"""SqlAlchemyAuditRepository on SQLite: tail compare-and-swap, append-only guard, streaming."""

from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy import select

from ehr_audit.application.exceptions import ConcurrencyConflictError, PersistenceError
from ehr_audit.domain.models.audit_digest import AuditDigest
from ehr_audit.domain.models.audit_event import AuditAction, AuditEvent, ChainTail
from ehr_audit.domain.models.audit_query import AuditSearchFilters
from ehr_audit.governance.canonical import GENESIS_HASH, recompute_event_hash
from ehr_audit.infrastructure.database.models import AuditDigestRow, AuditEventRow


def _builder(event_id: str, timestamp, *, tail_override: ChainTail | None = None):
    def build(tail: ChainTail) -> AuditEvent:
        base = tail_override or tail
        event = AuditEvent(
            id=event_id,
            sequence=base.sequence + 1,
            timestamp=timestamp,
            action=AuditAction.LOGIN,
            resource_type="Session",
            resource_id=None,
            actor_id="u-1",
            actor_role="ADMIN",
            ip_address=None,
            method="POST",
            endpoint="/api/v1/auth/login",
            status_code=200,
            user_agent="pytest",
            session_id="s-1",
            clinical_context=None,
            old_value=None,
            new_value=None,
            canonical_version="v1",
            previous_hash=base.record_hash,
            record_hash="",
        )
        return replace(event, record_hash=recompute_event_hash(event))

    return build


@pytest.mark.asyncio
async def test_empty_tail_is_genesis(repository):
    tail = await repository.get_tail()
    assert tail.is_genesis
    assert tail.record_hash == GENESIS_HASH


@pytest.mark.asyncio
async def test_append_advances_tail_and_round_trips(repository, clock_start):
    event = await repository.append(_builder("a-1", clock_start))

    tail = await repository.get_tail()
    assert tail.sequence == 1
    assert tail.record_hash == event.record_hash
    assert tail.record_id == "a-1"
    assert tail.timestamp == clock_start
    assert await repository.get_event("a-1") == event
    assert await repository.get_event("missing") is None


@pytest.mark.asyncio
async def test_fork_from_stale_tail_is_conflict(repository, clock_start):
    await repository.append(_builder("a-1", clock_start))
    stale = ChainTail(sequence=0, record_hash=GENESIS_HASH)

    with pytest.raises(ConcurrencyConflictError):
        await repository.append(_builder("a-2", clock_start, tail_override=stale))

    assert (await repository.get_tail()).sequence == 1
    assert await repository.get_event("a-2") is None


@pytest.mark.asyncio
async def test_orm_update_refused(repository, session_factory, clock_start):
    await repository.append(_builder("a-1", clock_start))

    with pytest.raises(PersistenceError):
        async with session_factory() as session:
            async with session.begin():
                row = await session.get(AuditEventRow, "a-1")
                row.actor_id = "someone-else"

    assert (await repository.get_event("a-1")).actor_id == "u-1"


@pytest.mark.asyncio
async def test_orm_delete_refused(repository, session_factory, clock_start):
    await repository.append(_builder("a-1", clock_start))

    with pytest.raises(PersistenceError):
        async with session_factory() as session:
            async with session.begin():
                row = await session.get(AuditEventRow, "a-1")
                await session.delete(row)

    assert await repository.get_event("a-1") is not None


@pytest.mark.asyncio
async def test_stream_windows_and_sequence_bound(seed, repository, clock_start):
    events = await seed(7)

    everything = [e async for e in repository.iter_events(page_size=3)]
    bounded = [e async for e in repository.iter_events(max_sequence=4, page_size=3)]
    window = [
        e
        async for e in repository.iter_events(
            range_start=clock_start + timedelta(seconds=2),
            range_end=clock_start + timedelta(seconds=5),
            page_size=2,
        )
    ]

    assert [e.id for e in everything] == [e.id for e in events]
    assert [e.sequence for e in bounded] == [1, 2, 3, 4]
    assert [e.sequence for e in window] == [3, 4, 5, 6]
    assert await repository.count_events(range_start=clock_start + timedelta(seconds=2)) == 5
    assert await repository.count_events(max_sequence=2) == 2


@pytest.mark.asyncio
async def test_filtered_stream(seed, repository):
    await seed(3, actor_id="u-1")
    await seed(2, actor_id="u-2")
    found = [e async for e in repository.iter_filtered(AuditSearchFilters(actor_id="u-2"), page_size=1)]
    assert [e.sequence for e in found] == [4, 5]


def _digest(digest_id: str, start, end, created_at) -> AuditDigest:
    return AuditDigest(
        id=digest_id,
        period_start=start,
        period_end=end,
        record_count=1,
        digest_hash="d" * 64,
        algorithm="hmac-sha256",
        first_record_hash="a" * 64,
        last_record_hash="a" * 64,
        generated_by=None,
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_digests_saved_and_found(repository, session_factory, clock_start):
    day_end = clock_start + timedelta(days=1)
    first = await repository.save_digest(_digest("d-1", clock_start, day_end, clock_start))
    second = await repository.save_digest(
        _digest("d-2", clock_start, day_end, clock_start + timedelta(hours=1))
    )

    assert await repository.get_digest("d-1") == first
    assert await repository.find_digest(clock_start, day_end) == second
    assert await repository.find_digest(clock_start, clock_start) is None
    assert [d.id for d in await repository.list_digests()] == ["d-2", "d-1"]

    with pytest.raises(PersistenceError):
        async with session_factory() as session:
            async with session.begin():
                row = (await session.execute(select(AuditDigestRow))).scalars().first()
                row.record_count = 99
