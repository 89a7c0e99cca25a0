"""Domain layer: models, schemas, validators, exceptions. Pure business logic only."""

from ehr_audit.domain.exceptions import (
    DomainError,
    DomainValidationError,
    InvalidAuditEventError,
    RangeError,
    SnapshotEncodingError,
    UnknownCanonicalVersionError,
    UnsupportedAlgorithmError,
)
from ehr_audit.domain.models import (
    AuditAction,
    AuditDigest,
    AuditEvent,
    AuditEventInput,
    IntegrityReport,
    OpaqueSnapshot,
    RequestContext,
    ResourceSnapshot,
)
from ehr_audit.domain.validators import validate_event_input, validate_range

__all__ = [
    "AuditAction",
    "AuditDigest",
    "AuditEvent",
    "AuditEventInput",
    "DomainError",
    "DomainValidationError",
    "IntegrityReport",
    "InvalidAuditEventError",
    "OpaqueSnapshot",
    "RangeError",
    "RequestContext",
    "ResourceSnapshot",
    "SnapshotEncodingError",
    "UnknownCanonicalVersionError",
    "UnsupportedAlgorithmError",
    "validate_event_input",
    "validate_range",
]
