"""Domain models. Pure business entities."""

from ehr_audit.domain.models.audit_digest import AuditDigest, DigestConfirmation
from ehr_audit.domain.models.audit_event import (
    AuditAction,
    AuditEvent,
    AuditEventInput,
    ChainTail,
    ChangeSnapshot,
    OpaqueSnapshot,
    RequestContext,
    ResourceSnapshot,
)
from ehr_audit.domain.models.audit_query import (
    AnomalySeverity,
    AnomalyType,
    AuditAnomaly,
    AuditSearchFilters,
    Page,
    SortOrder,
)
from ehr_audit.domain.models.integrity import AnchorKind, DivergenceReason, IntegrityReport

__all__ = [
    "AnchorKind",
    "AnomalySeverity",
    "AnomalyType",
    "AuditAction",
    "AuditAnomaly",
    "AuditDigest",
    "AuditEvent",
    "AuditEventInput",
    "AuditSearchFilters",
    "ChainTail",
    "ChangeSnapshot",
    "DigestConfirmation",
    "DivergenceReason",
    "IntegrityReport",
    "OpaqueSnapshot",
    "Page",
    "RequestContext",
    "ResourceSnapshot",
    "SortOrder",
]
