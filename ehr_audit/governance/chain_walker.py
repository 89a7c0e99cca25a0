"""Pure hash-chain walk. Fed records in sequence order; no I/O, no storage."""

from dataclasses import dataclass
from typing import Optional

from ehr_audit.domain.models.audit_event import AuditEvent
from ehr_audit.domain.models.integrity import DivergenceReason
from ehr_audit.governance.canonical import GENESIS_HASH, is_known_version, recompute_event_hash


@dataclass(frozen=True)
class Divergence:
    record_id: Optional[str]
    sequence: Optional[int]
    reason: DivergenceReason


class ChainWalker:
    """
    Checks each record against its own fields and against the record before it.

    from_genesis: the first record fed must be sequence 1 with the genesis previous_hash.
    anchor_hash: otherwise, a trusted previous_hash the first record must link to (optional).
    """

    def __init__(self, *, from_genesis: bool = False, anchor_hash: Optional[str] = None) -> None:
        self._from_genesis = from_genesis
        self._anchor_hash = anchor_hash
        self._previous: Optional[AuditEvent] = None
        self._previous_invalid = False
        self._first_invalid_id: Optional[str] = None
        self._marked: set[str] = set()
        self.checked = 0
        self.invalid = 0
        self.first_divergence: Optional[Divergence] = None

    @property
    def valid(self) -> bool:
        return self.first_divergence is None

    @property
    def last(self) -> Optional[AuditEvent]:
        """Most recent record fed."""
        return self._previous

    def feed(self, event: AuditEvent) -> Optional[DivergenceReason]:
        """Check one record; returns the divergence reason or None."""
        reason = self._check(event)
        if reason is not None:
            self.invalid += 1
            if self.first_divergence is None:
                self.first_divergence = Divergence(event.id, event.sequence, reason)
            if self.checked == 0:
                self._first_invalid_id = event.id
        self.checked += 1
        self._previous = event
        self._previous_invalid = reason is not None
        return reason

    def mark(
        self,
        reason: DivergenceReason,
        record_id: Optional[str] = None,
        sequence: Optional[int] = None,
    ) -> None:
        """
        Record a divergence found outside the walk (digest boundary or chain tail).

        Counts toward `invalid` unless the record already diverged during the walk
        or was marked before.
        """
        if not self._already_counted(record_id):
            self.invalid += 1
            if record_id is not None:
                self._marked.add(record_id)
        if self.first_divergence is None:
            self.first_divergence = Divergence(record_id, sequence, reason)

    def _already_counted(self, record_id: Optional[str]) -> bool:
        if record_id is None:
            return False
        if record_id in self._marked or record_id == self._first_invalid_id:
            return True
        previous = self._previous
        return previous is not None and previous.id == record_id and self._previous_invalid

    def _check(self, event: AuditEvent) -> Optional[DivergenceReason]:
        if not is_known_version(event.canonical_version):
            return DivergenceReason.UNKNOWN_CANONICAL_VERSION

        previous = self._previous
        if previous is None:
            if self._from_genesis:
                if event.sequence != 1 or event.previous_hash != GENESIS_HASH:
                    return DivergenceReason.GENESIS_MISMATCH
            elif self._anchor_hash is not None and event.previous_hash != self._anchor_hash:
                return DivergenceReason.ANCHOR_MISMATCH
        else:
            if event.sequence != previous.sequence + 1:
                return DivergenceReason.SEQUENCE_GAP
            if event.previous_hash != previous.record_hash:
                return DivergenceReason.LINK_BROKEN

        if recompute_event_hash(event) != event.record_hash:
            return DivergenceReason.HASH_MISMATCH
        return None
