"""Scalability layer: distributed locking for the chain tail. No FastAPI."""

from ehr_audit.scalability.distributed_lock import (
    CHAIN_TAIL_LOCK_KEY,
    DistributedLock,
    LockBackendError,
    LockNotAcquiredError,
)

__all__ = [
    "CHAIN_TAIL_LOCK_KEY",
    "DistributedLock",
    "LockBackendError",
    "LockNotAcquiredError",
]
