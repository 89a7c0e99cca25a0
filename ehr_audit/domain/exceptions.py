"""Domain-specific exceptions. Pure domain layer; no infrastructure."""


class DomainError(Exception):
    """Base for all domain-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DomainValidationError(DomainError):
    """Raised when domain validation rules are violated."""


class RangeError(DomainValidationError):
    """Raised when a verification or digest window starts after it ends."""


class InvalidAuditEventError(DomainValidationError):
    """Raised when an audit event candidate is missing required fields or carries invalid values."""


class UnsupportedAlgorithmError(DomainValidationError):
    """Raised when a digest algorithm tag is not registered."""


class UnknownCanonicalVersionError(DomainError):
    """Raised when a record names a canonicalization version this build does not know."""


class SnapshotEncodingError(DomainError):
    """Raised when a change snapshot cannot be serialized canonically (e.g. NaN, unsupported type)."""
