# Application layer: services that orchestrate domain and infrastructure.

from ehr_audit.application.anomaly_detector import AnomalyDetector
from ehr_audit.application.audit_exporter import AuditExporter, ExportFormat, ExportResult
from ehr_audit.application.audit_query_service import AuditEventDetail, AuditQueryService
from ehr_audit.application.audit_recorder import AuditRecorder
from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.application.digest_generator import DigestGenerator
from ehr_audit.application.exceptions import (
    ApplicationError,
    ConcurrencyConflictError,
    EmptyPeriodError,
    NotFoundError,
    PersistenceError,
)
from ehr_audit.application.integrity_verifier import IntegrityVerifier

__all__ = [
    "AnomalyDetector",
    "ApplicationError",
    "AuditEventDetail",
    "AuditExporter",
    "AuditQueryService",
    "AuditRecorder",
    "AuditRepository",
    "ConcurrencyConflictError",
    "DigestGenerator",
    "EmptyPeriodError",
    "ExportFormat",
    "ExportResult",
    "IntegrityVerifier",
    "NotFoundError",
    "PersistenceError",
]
