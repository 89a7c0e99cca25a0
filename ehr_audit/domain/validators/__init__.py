"""Domain validators. Pure validation functions."""

from ehr_audit.domain.validators.audit_validator import (
    MAX_PAGE_LIMIT,
    validate_event_input,
    validate_pagination,
    validate_range,
)

__all__ = [
    "MAX_PAGE_LIMIT",
    "validate_event_input",
    "validate_pagination",
    "validate_range",
]
