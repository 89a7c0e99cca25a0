"""Read-side access to the audit trail: search and detail."""

import logging
from dataclasses import dataclass
from typing import Optional

from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.application.exceptions import NotFoundError
from ehr_audit.domain.exceptions import SnapshotEncodingError
from ehr_audit.domain.models.audit_event import AuditEvent, ChangeSnapshot
from ehr_audit.domain.models.audit_query import AuditSearchFilters, Page, SortOrder
from ehr_audit.domain.validators.audit_validator import validate_pagination, validate_range
from ehr_audit.governance.snapshots import decode_snapshot
from ehr_audit.security.encryption import EncryptionService
from ehr_audit.security.exceptions import EncryptionError


@dataclass(frozen=True)
class AuditEventDetail:
    """A stored event plus its unsealed change snapshots (display only; never re-hashed)."""

    event: AuditEvent
    old_value: Optional[ChangeSnapshot]
    new_value: Optional[ChangeSnapshot]
    snapshots_readable: bool = True


class AuditQueryService:
    def __init__(
        self,
        repository: AuditRepository,
        encryption: EncryptionService,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._encryption = encryption
        self._logger = logger or logging.getLogger(__name__)

    async def search(
        self,
        filters: AuditSearchFilters,
        page: int = 1,
        limit: int = 50,
        order: SortOrder = SortOrder.DESC,
    ) -> Page[AuditEvent]:
        """Filtered, paginated listing. Snapshots stay sealed."""
        validate_pagination(page, limit)
        validate_range(filters.date_from, filters.date_to)
        return await self._repository.search(filters, page, limit, order)

    async def get(self, event_id: str) -> AuditEventDetail:
        event = await self._repository.get_event(event_id)
        if event is None:
            raise NotFoundError(f"audit event {event_id} not found")
        try:
            return AuditEventDetail(
                event=event,
                old_value=self._unseal(event.old_value),
                new_value=self._unseal(event.new_value),
            )
        except (EncryptionError, SnapshotEncodingError) as e:
            self._logger.warning(
                "audit_snapshot_unreadable",
                extra={"audit_event_id": event.id, "error": e.message},
            )
            return AuditEventDetail(event=event, old_value=None, new_value=None, snapshots_readable=False)

    def _unseal(self, sealed: Optional[str]) -> Optional[ChangeSnapshot]:
        if sealed is None:
            return None
        return decode_snapshot(self._encryption.decrypt(sealed))
