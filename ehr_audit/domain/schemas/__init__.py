"""Domain schemas. Request/response and validation."""

from ehr_audit.domain.schemas.audit import (
    AnomalyResponse,
    AuditEventDetailResponse,
    AuditEventPageResponse,
    AuditEventResponse,
    DigestConfirmationResponse,
    DigestCreateRequest,
    DigestResponse,
    IntegrityReportResponse,
    SnapshotResponse,
)

__all__ = [
    "AnomalyResponse",
    "AuditEventDetailResponse",
    "AuditEventPageResponse",
    "AuditEventResponse",
    "DigestConfirmationResponse",
    "DigestCreateRequest",
    "DigestResponse",
    "IntegrityReportResponse",
    "SnapshotResponse",
]
