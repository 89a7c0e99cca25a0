"""Integrity verification result types."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class AnchorKind(str, Enum):
    """What the first verified record was linked against."""

    GENESIS = "genesis"  # range starts at sequence 1; previous_hash must be the genesis constant
    TRUSTED_HASH = "trusted_hash"  # caller supplied a previously verified previous_hash
    DIGEST = "digest"  # stored digest covering exactly the verified window
    NONE = "none"  # interior slice, internal consistency only


class DivergenceReason(str, Enum):
    HASH_MISMATCH = "hash_mismatch"
    LINK_BROKEN = "link_broken"
    SEQUENCE_GAP = "sequence_gap"
    GENESIS_MISMATCH = "genesis_mismatch"
    ANCHOR_MISMATCH = "anchor_mismatch"
    DIGEST_MISMATCH = "digest_mismatch"
    UNKNOWN_CANONICAL_VERSION = "unknown_canonical_version"
    TAIL_MISMATCH = "tail_mismatch"  # last record walked is not the one the chain tail names


@dataclass(frozen=True)
class IntegrityReport:
    """
    Outcome of a verification run. valid is True iff no divergence was found, and
    invalid_records is at least 1 whenever valid is False.

    first_divergence_id names the first record whose own fields or whose link to its
    predecessor fail to verify: an edited field is reported at the edited record,
    a deleted or re-hashed record at the record that follows it. Records removed from
    the end of the chain are reported at the last record still present (TAIL_MISMATCH);
    when none remain, at the record the chain tail names.
    """

    valid: bool
    total_records: int
    checked_records: int
    invalid_records: int
    anchor: AnchorKind
    range_start: Optional[datetime]
    range_end: Optional[datetime]
    verified_at: datetime
    first_divergence_id: Optional[str] = None
    first_divergence_sequence: Optional[int] = None
    divergence_reason: Optional[DivergenceReason] = None
    digest_id: Optional[str] = None

    @property
    def anchored(self) -> bool:
        return self.anchor is not AnchorKind.NONE
