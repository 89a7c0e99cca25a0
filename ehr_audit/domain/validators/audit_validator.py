"""Validators for audit domain rules. Pure functions, no infrastructure or DB access."""

from datetime import datetime
from typing import Optional

from ehr_audit.domain.exceptions import DomainValidationError, InvalidAuditEventError, RangeError
from ehr_audit.domain.models.audit_event import AuditAction, AuditEventInput

# Column widths in audit_events (domain constants; avoid magic numbers)
MAX_RESOURCE_TYPE_LENGTH = 64
MAX_ENDPOINT_LENGTH = 500
MAX_SESSION_ID_LENGTH = 128
MAX_PAGE_LIMIT = 100

ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})


def validate_range(start: Optional[datetime], end: Optional[datetime]) -> None:
    """Closed window check. Raises RangeError if start is after end."""
    if start is not None and end is not None and start > end:
        raise RangeError(f"range start {start.isoformat()} is after range end {end.isoformat()}")


def validate_event_input(candidate: AuditEventInput) -> None:
    """Enforce required fields and column limits. Raises InvalidAuditEventError."""
    if not isinstance(candidate.action, AuditAction):
        raise InvalidAuditEventError(f"unknown audit action {candidate.action!r}")
    if not candidate.resource_type or not candidate.resource_type.strip():
        raise InvalidAuditEventError("resource_type must not be empty")
    if len(candidate.resource_type) > MAX_RESOURCE_TYPE_LENGTH:
        raise InvalidAuditEventError(
            f"resource_type longer than {MAX_RESOURCE_TYPE_LENGTH} characters"
        )
    context = candidate.context
    if context.method is not None and context.method.upper() not in ALLOWED_METHODS:
        raise InvalidAuditEventError(f"unsupported HTTP method {context.method!r}")
    if context.endpoint is not None and len(context.endpoint) > MAX_ENDPOINT_LENGTH:
        raise InvalidAuditEventError(f"endpoint longer than {MAX_ENDPOINT_LENGTH} characters")
    if context.session_id is not None and len(context.session_id) > MAX_SESSION_ID_LENGTH:
        raise InvalidAuditEventError(f"session_id longer than {MAX_SESSION_ID_LENGTH} characters")
    if context.status_code is not None and not (100 <= context.status_code <= 599):
        raise InvalidAuditEventError(f"status_code {context.status_code} out of range")


def validate_pagination(page: int, limit: int) -> None:
    if page < 1:
        raise DomainValidationError("page must be >= 1")
    if not (1 <= limit <= MAX_PAGE_LIMIT):
        raise DomainValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")
