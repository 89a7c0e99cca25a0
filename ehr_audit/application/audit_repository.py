"""Audit repository protocol. Application layer depends on this; infrastructure implements it."""

from datetime import datetime
from typing import AsyncIterator, Callable, List, Optional, Protocol

from ehr_audit.domain.models.audit_digest import AuditDigest
from ehr_audit.domain.models.audit_event import AuditEvent, ChainTail
from ehr_audit.domain.models.audit_query import AuditSearchFilters, Page, SortOrder

# Builds the new record from the tail read inside the append transaction. Must be pure.
EventBuilder = Callable[[ChainTail], AuditEvent]


class AuditRepository(Protocol):
    """
    Append-only store for audit events and digests. No update or delete operations exist.

    Implementations raise PersistenceError for storage failures and ConcurrencyConflictError
    when the chain tail moved between read and write.
    """

    async def append(self, build: EventBuilder) -> AuditEvent:
        """Read the tail, build the record from it, persist it and advance the tail atomically."""
        ...

    async def get_tail(self) -> ChainTail:
        """Current tail; ChainTail(sequence=0, record_hash=GENESIS_HASH) when empty."""
        ...

    def iter_events(
        self,
        *,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
        max_sequence: Optional[int] = None,
        page_size: int = 500,
    ) -> AsyncIterator[AuditEvent]:
        """Stream events with timestamp in [range_start, range_end] by ascending sequence, paginated."""
        ...

    async def count_events(
        self,
        *,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
        max_sequence: Optional[int] = None,
    ) -> int:
        ...

    def iter_filtered(
        self, filters: AuditSearchFilters, page_size: int = 500
    ) -> AsyncIterator[AuditEvent]:
        """Stream events matching filters by ascending sequence (exports, anomaly scans)."""
        ...

    async def search(
        self,
        filters: AuditSearchFilters,
        page: int,
        limit: int,
        order: SortOrder = SortOrder.DESC,
    ) -> Page[AuditEvent]:
        ...

    async def get_event(self, event_id: str) -> Optional[AuditEvent]:
        ...

    async def save_digest(self, digest: AuditDigest) -> AuditDigest:
        ...

    async def get_digest(self, digest_id: str) -> Optional[AuditDigest]:
        ...

    async def find_digest(self, period_start: datetime, period_end: datetime) -> Optional[AuditDigest]:
        """Most recent digest covering exactly [period_start, period_end], or None."""
        ...

    async def list_digests(self, limit: int = 50) -> List[AuditDigest]:
        """Digests newest first."""
        ...
