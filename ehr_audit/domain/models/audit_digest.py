"""Domain model for periodic audit digests."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class AuditDigest:
    """Keyed attestation over a closed window of audit records. Never modified once stored."""

    id: str
    period_start: datetime
    period_end: datetime
    record_count: int
    digest_hash: str
    algorithm: str
    first_record_hash: str
    last_record_hash: str
    generated_by: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class DigestConfirmation:
    """Result of recomputing a stored digest against the current records."""

    digest: AuditDigest
    matches: bool
    recomputed_hash: Optional[str]
    record_count: int
    first_record_hash: Optional[str]
    last_record_hash: Optional[str]
