"""Search filters, pages and anomaly findings over the audit trail."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from ehr_audit.domain.models.audit_event import AuditAction

T = TypeVar("T")


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class AuditSearchFilters:
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    actor_id: Optional[str] = None
    action: Optional[AuditAction] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


class AnomalyType(str, Enum):
    MASS_DATA_ACCESS = "mass_data_access"
    AFTER_HOURS_ACCESS = "after_hours_access"
    RAPID_SEQUENTIAL_ACCESS = "rapid_sequential_access"


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AuditAnomaly:
    type: AnomalyType
    actor_id: str
    count: int
    window_start: datetime
    window_end: datetime
    severity: AnomalySeverity
