"""DB-backed audit repository. Append-only hash chain over audit_events, digests in audit_digests."""

from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ehr_audit.application.audit_repository import EventBuilder
from ehr_audit.application.exceptions import ConcurrencyConflictError, PersistenceError
from ehr_audit.domain.models.audit_digest import AuditDigest
from ehr_audit.domain.models.audit_event import AuditAction, AuditEvent, ChainTail
from ehr_audit.domain.models.audit_query import AuditSearchFilters, Page, SortOrder
from ehr_audit.governance.canonical import GENESIS_HASH
from ehr_audit.infrastructure.database.models import (
    CHAIN_TAIL_ROW_ID,
    AuditDigestRow,
    AuditEventRow,
    ChainTailRow,
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_event(row: AuditEventRow) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        sequence=row.sequence,
        timestamp=_as_utc(row.timestamp),
        action=AuditAction(row.action),
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        actor_id=row.actor_id,
        actor_role=row.actor_role,
        ip_address=row.ip_address,
        method=row.method,
        endpoint=row.endpoint,
        status_code=row.status_code,
        user_agent=row.user_agent,
        session_id=row.session_id,
        clinical_context=row.clinical_context,
        old_value=row.old_value,
        new_value=row.new_value,
        canonical_version=row.canonical_version,
        previous_hash=row.previous_hash,
        record_hash=row.record_hash,
    )


def _event_to_row(event: AuditEvent) -> AuditEventRow:
    return AuditEventRow(
        id=event.id,
        sequence=event.sequence,
        timestamp=_as_utc(event.timestamp),
        action=event.action.value,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        ip_address=event.ip_address,
        method=event.method,
        endpoint=event.endpoint,
        status_code=event.status_code,
        user_agent=event.user_agent,
        session_id=event.session_id,
        clinical_context=event.clinical_context,
        old_value=event.old_value,
        new_value=event.new_value,
        canonical_version=event.canonical_version,
        previous_hash=event.previous_hash,
        record_hash=event.record_hash,
    )


def _row_to_digest(row: AuditDigestRow) -> AuditDigest:
    return AuditDigest(
        id=row.id,
        period_start=_as_utc(row.period_start),
        period_end=_as_utc(row.period_end),
        record_count=row.record_count,
        digest_hash=row.digest_hash,
        algorithm=row.algorithm,
        first_record_hash=row.first_record_hash,
        last_record_hash=row.last_record_hash,
        generated_by=row.generated_by,
        created_at=_as_utc(row.created_at),
    )


def _window_conditions(
    range_start: Optional[datetime],
    range_end: Optional[datetime],
    max_sequence: Optional[int],
) -> list:
    conditions = []
    if range_start is not None:
        conditions.append(AuditEventRow.timestamp >= _as_utc(range_start))
    if range_end is not None:
        conditions.append(AuditEventRow.timestamp <= _as_utc(range_end))
    if max_sequence is not None:
        conditions.append(AuditEventRow.sequence <= max_sequence)
    return conditions


def _filter_conditions(filters: AuditSearchFilters) -> list:
    conditions = _window_conditions(filters.date_from, filters.date_to, None)
    if filters.actor_id:
        conditions.append(AuditEventRow.actor_id == filters.actor_id)
    if filters.action is not None:
        conditions.append(AuditEventRow.action == filters.action.value)
    if filters.resource_type:
        conditions.append(AuditEventRow.resource_type == filters.resource_type)
    if filters.resource_id:
        conditions.append(AuditEventRow.resource_id == filters.resource_id)
    return conditions


class SqlAlchemyAuditRepository:
    """
    Implements AuditRepository on SQLAlchemy async sessions. Each operation opens its own
    session from the factory; the repository holds no connection between calls.

    Appends advance the audit_chain_tail row with a compare-and-swap inside the same
    transaction as the insert. Losing the swap, or tripping a unique constraint on
    sequence / previous_hash / record_hash, rolls back and raises ConcurrencyConflictError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, build: EventBuilder) -> AuditEvent:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    tail = await self._lock_tail(session)
                    event = build(tail)
                    session.add(_event_to_row(event))
                    await session.flush()
                    result = await session.execute(
                        update(ChainTailRow)
                        .where(
                            ChainTailRow.id == CHAIN_TAIL_ROW_ID,
                            ChainTailRow.sequence == tail.sequence,
                        )
                        .values(
                            sequence=event.sequence,
                            record_hash=event.record_hash,
                            record_id=event.id,
                            timestamp=_as_utc(event.timestamp),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise ConcurrencyConflictError(
                            f"chain tail moved past sequence {tail.sequence}"
                        )
            return event
        except IntegrityError as e:
            raise ConcurrencyConflictError(f"chain fork rejected: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"audit append failed: {e}") from e

    async def _lock_tail(self, session: AsyncSession) -> ChainTail:
        stmt = select(ChainTailRow).where(ChainTailRow.id == CHAIN_TAIL_ROW_ID).with_for_update()
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            # First append; a concurrent first append collides on the primary key.
            session.add(ChainTailRow(id=CHAIN_TAIL_ROW_ID, sequence=0, record_hash=GENESIS_HASH))
            await session.flush()
            return ChainTail(sequence=0, record_hash=GENESIS_HASH)
        return ChainTail(
            sequence=row.sequence,
            record_hash=row.record_hash,
            timestamp=_as_utc(row.timestamp),
            record_id=row.record_id,
        )

    async def get_tail(self) -> ChainTail:
        try:
            async with self._session_factory() as session:
                row = await session.get(ChainTailRow, CHAIN_TAIL_ROW_ID)
        except SQLAlchemyError as e:
            raise PersistenceError(f"chain tail read failed: {e}") from e
        if row is None:
            return ChainTail(sequence=0, record_hash=GENESIS_HASH)
        return ChainTail(
            sequence=row.sequence,
            record_hash=row.record_hash,
            timestamp=_as_utc(row.timestamp),
            record_id=row.record_id,
        )

    async def _begin_snapshot(self, session: AsyncSession) -> None:
        # Pages of one walk must see one snapshot; SQLite serializes readers anyway.
        if session.bind is not None and session.bind.dialect.name == "postgresql":
            await session.connection(execution_options={"isolation_level": "REPEATABLE READ"})

    async def _stream(self, conditions: list, page_size: int) -> AsyncIterator[AuditEvent]:
        after = 0
        try:
            async with self._session_factory() as session:
                await self._begin_snapshot(session)
                while True:
                    stmt = (
                        select(AuditEventRow)
                        .where(AuditEventRow.sequence > after, *conditions)
                        .order_by(AuditEventRow.sequence.asc())
                        .limit(page_size)
                    )
                    rows = (await session.execute(stmt)).scalars().all()
                    for row in rows:
                        yield _row_to_event(row)
                    if len(rows) < page_size:
                        return
                    after = rows[-1].sequence
        except SQLAlchemyError as e:
            raise PersistenceError(f"audit read failed: {e}") from e

    def iter_events(
        self,
        *,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
        max_sequence: Optional[int] = None,
        page_size: int = 500,
    ) -> AsyncIterator[AuditEvent]:
        return self._stream(_window_conditions(range_start, range_end, max_sequence), page_size)

    def iter_filtered(
        self, filters: AuditSearchFilters, page_size: int = 500
    ) -> AsyncIterator[AuditEvent]:
        return self._stream(_filter_conditions(filters), page_size)

    async def count_events(
        self,
        *,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
        max_sequence: Optional[int] = None,
    ) -> int:
        stmt = select(func.count()).select_from(AuditEventRow).where(
            *_window_conditions(range_start, range_end, max_sequence)
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"audit count failed: {e}") from e

    async def search(
        self,
        filters: AuditSearchFilters,
        page: int,
        limit: int,
        order: SortOrder = SortOrder.DESC,
    ) -> Page[AuditEvent]:
        conditions = _filter_conditions(filters)
        ordering = (
            AuditEventRow.sequence.asc() if order == SortOrder.ASC else AuditEventRow.sequence.desc()
        )
        count_stmt = select(func.count()).select_from(AuditEventRow).where(*conditions)
        page_stmt = (
            select(AuditEventRow)
            .where(*conditions)
            .order_by(ordering)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_stmt)).scalar_one()
                rows = (await session.execute(page_stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"audit search failed: {e}") from e
        return Page(items=[_row_to_event(r) for r in rows], total=total, page=page, limit=limit)

    async def get_event(self, event_id: str) -> Optional[AuditEvent]:
        try:
            async with self._session_factory() as session:
                row = await session.get(AuditEventRow, event_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"audit read failed: {e}") from e
        return _row_to_event(row) if row is not None else None

    async def save_digest(self, digest: AuditDigest) -> AuditDigest:
        row = AuditDigestRow(
            id=digest.id,
            period_start=_as_utc(digest.period_start),
            period_end=_as_utc(digest.period_end),
            record_count=digest.record_count,
            digest_hash=digest.digest_hash,
            algorithm=digest.algorithm,
            first_record_hash=digest.first_record_hash,
            last_record_hash=digest.last_record_hash,
            generated_by=digest.generated_by,
            created_at=_as_utc(digest.created_at),
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"digest persist failed: {e}") from e
        return digest

    async def get_digest(self, digest_id: str) -> Optional[AuditDigest]:
        try:
            async with self._session_factory() as session:
                row = await session.get(AuditDigestRow, digest_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"digest read failed: {e}") from e
        return _row_to_digest(row) if row is not None else None

    async def find_digest(self, period_start: datetime, period_end: datetime) -> Optional[AuditDigest]:
        stmt = (
            select(AuditDigestRow)
            .where(
                AuditDigestRow.period_start == _as_utc(period_start),
                AuditDigestRow.period_end == _as_utc(period_end),
            )
            .order_by(AuditDigestRow.created_at.desc())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"digest read failed: {e}") from e
        return _row_to_digest(row) if row is not None else None

    async def list_digests(self, limit: int = 50) -> List[AuditDigest]:
        stmt = select(AuditDigestRow).order_by(AuditDigestRow.created_at.desc()).limit(limit)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"digest read failed: {e}") from e
        return [_row_to_digest(r) for r in rows]
