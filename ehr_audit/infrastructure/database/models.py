# ehr_audit/infrastructure/database/models.py

from sqlalchemy import (
    DDL,
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from ehr_audit.application.exceptions import PersistenceError
from ehr_audit.infrastructure.database.session import Base

# SQLite only auto-increments / compares INTEGER; Postgres gets BIGINT.
SequenceType = BigInteger().with_variant(Integer(), "sqlite")

CHAIN_TAIL_ROW_ID = 1


class AuditEventRow(Base):
    """One hash-chained audit record. Append-only."""

    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True)
    sequence = Column(SequenceType, nullable=False, unique=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    action = Column(String(10), nullable=False, index=True)
    resource_type = Column(String(64), nullable=False, index=True)
    resource_id = Column(String(255), nullable=True, index=True)
    actor_id = Column(String(255), nullable=True, index=True)
    actor_role = Column(String(50), nullable=True)

    ip_address = Column(String(45), nullable=True)
    method = Column(String(10), nullable=True)
    endpoint = Column(String(500), nullable=True)
    status_code = Column(Integer, nullable=True)
    user_agent = Column(Text, nullable=True)
    session_id = Column(String(128), nullable=True, index=True)
    clinical_context = Column(Text, nullable=True)

    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    canonical_version = Column(String(16), nullable=False)
    previous_hash = Column(String(64), nullable=False, unique=True)
    record_hash = Column(String(64), nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "action IN ('CREATE','READ','UPDATE','DELETE','LOGIN','LOGOUT','EXPORT','EMERGENCY')",
            name="audit_events_action_check",
        ),
        Index("ix_audit_events_resource", "resource_type", "resource_id"),
    )


class AuditDigestRow(Base):
    """Keyed digest over a closed period of record hashes. Append-only."""

    __tablename__ = "audit_digests"

    id = Column(String(36), primary_key=True)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    record_count = Column(Integer, nullable=False)
    digest_hash = Column(String(128), nullable=False)
    algorithm = Column(String(32), nullable=False)
    first_record_hash = Column(String(64), nullable=False)
    last_record_hash = Column(String(64), nullable=False)
    generated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_audit_digests_period", "period_start", "period_end"),
    )


class ChainTailRow(Base):
    """Single row (id=1) naming the last appended record. Advanced by compare-and-swap."""

    __tablename__ = "audit_chain_tail"

    id = Column(Integer, primary_key=True)
    sequence = Column(SequenceType, nullable=False)
    record_hash = Column(String(64), nullable=False)
    record_id = Column(String(36), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=True)


_APPEND_ONLY_ROWS = (AuditEventRow, AuditDigestRow)


@event.listens_for(Session, "before_flush")
def _reject_audit_mutation(session, flush_context, instances) -> None:
    for obj in session.deleted:
        if isinstance(obj, _APPEND_ONLY_ROWS):
            raise PersistenceError(f"{obj.__tablename__} is append-only; delete refused")
    for obj in session.dirty:
        if isinstance(obj, _APPEND_ONLY_ROWS) and session.is_modified(obj):
            raise PersistenceError(f"{obj.__tablename__} is append-only; update refused")


for _table in ("audit_events", "audit_digests"):
    for _operation in ("UPDATE", "DELETE"):
        event.listen(
            Base.metadata.tables[_table],
            "after_create",
            DDL(
                f"CREATE OR REPLACE RULE {_table}_no_{_operation.lower()} AS "
                f"ON {_operation} TO {_table} DO INSTEAD NOTHING"
            ).execute_if(dialect="postgresql"),
        )
