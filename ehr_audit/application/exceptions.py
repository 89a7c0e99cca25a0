"""Application-layer exceptions. Do not reuse domain exceptions."""


class ApplicationError(Exception):
    """Base for all application-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class PersistenceError(ApplicationError):
    """Raised when storage fails to durably write or read audit data. The event is NOT recorded."""


class ConcurrencyConflictError(ApplicationError):
    """Raised when another append moved the chain tail first. Recoverable by re-reading the tail."""


class EmptyPeriodError(ApplicationError):
    """Raised when a digest is requested for a window containing no audit events."""


class NotFoundError(ApplicationError):
    """Raised when an audit event or digest id does not exist."""
