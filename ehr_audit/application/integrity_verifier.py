"""Integrity verification over the stored hash chain. Read-only; stores nothing."""

import logging
import time
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Callable, Optional

from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.application.exceptions import NotFoundError
from ehr_audit.domain.exceptions import DomainValidationError
from ehr_audit.domain.models.audit_digest import AuditDigest
from ehr_audit.domain.models.audit_event import AuditEvent, ChainTail
from ehr_audit.domain.models.integrity import AnchorKind, DivergenceReason, IntegrityReport
from ehr_audit.domain.validators.audit_validator import validate_range
from ehr_audit.governance.chain_walker import ChainWalker
from ehr_audit.governance.digest_signer import DigestAccumulator, DigestSigner
from ehr_audit.observability.metrics import (
    INTEGRITY_VERIFICATIONS,
    INTEGRITY_VERIFY_LATENCY,
    MetricsCollector,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Anchoring:
    """Decides the anchor from the first record in range and applies digest boundary checks."""

    def __init__(
        self,
        range_start: Optional[datetime],
        trusted_previous_hash: Optional[str],
        digest: Optional[AuditDigest],
        signer: DigestSigner,
    ) -> None:
        self._range_start = range_start
        self._trusted = trusted_previous_hash
        self.digest = digest
        self.accumulator: Optional[DigestAccumulator] = (
            signer.begin(digest.algorithm) if digest is not None else None
        )

    def genesis_applies(self, first: Optional[AuditEvent]) -> bool:
        return self._range_start is None or (first is not None and first.sequence == 1)

    def kind(self, first: Optional[AuditEvent]) -> AnchorKind:
        if self.genesis_applies(first):
            return AnchorKind.GENESIS
        if self._trusted is not None:
            return AnchorKind.TRUSTED_HASH
        if self.digest is not None:
            return AnchorKind.DIGEST
        return AnchorKind.NONE

    def walker_for(self, first: Optional[AuditEvent]) -> ChainWalker:
        return ChainWalker(from_genesis=self.genesis_applies(first), anchor_hash=self._trusted)

    def digest_divergence(self, complete: bool) -> Optional[DivergenceReason]:
        """Compare the walked window with the stored digest; None when it matches."""
        if self.digest is None or self.accumulator is None:
            return None
        acc, digest = self.accumulator, self.digest
        if acc.first_record_hash != digest.first_record_hash:
            return DivergenceReason.ANCHOR_MISMATCH
        if not complete:
            # Truncated walk: only the entry boundary can be confirmed.
            return None
        if (
            acc.count != digest.record_count
            or acc.last_record_hash != digest.last_record_hash
            or acc.hexdigest() != digest.digest_hash
        ):
            return DivergenceReason.DIGEST_MISMATCH
        return None


class IntegrityVerifier:
    """
    Walks the chain in sequence order and reports the first divergence.

    The walk is bounded above by the tail sequence read when verification starts, so
    concurrent appends are not observed. Ranges that do not start at genesis are anchored
    by a trusted previous hash or a stored digest (named by id, or found for exactly the
    requested window); otherwise the report is unanchored and only states internal
    consistency. A walk with no upper bound must end on the record the tail row names,
    so records deleted from the end of the chain are detected.

    Storage failures propagate as PersistenceError. A broken chain is a report with
    valid=False, never an exception.
    """

    def __init__(
        self,
        repository: AuditRepository,
        signer: DigestSigner,
        *,
        metrics: Optional[MetricsCollector] = None,
        page_size: int = 500,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._signer = signer
        self._metrics = metrics or MetricsCollector()
        self._page_size = page_size
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    async def verify(
        self,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
        *,
        trusted_previous_hash: Optional[str] = None,
        digest_id: Optional[str] = None,
        max_records: Optional[int] = None,
    ) -> IntegrityReport:
        validate_range(range_start, range_end)
        if max_records is not None and max_records < 1:
            raise DomainValidationError("max_records must be >= 1")

        digest = None
        if digest_id is not None:
            digest = await self._repository.get_digest(digest_id)
            if digest is None:
                raise NotFoundError(f"digest {digest_id} not found")
            range_start, range_end = self._digest_window(digest, range_start, range_end)
        elif range_start is not None and range_end is not None and trusted_previous_hash is None:
            # A bounded slice is anchored by a stored digest of exactly that window, if any.
            digest = await self._repository.find_digest(range_start, range_end)

        started = time.perf_counter()
        tail = await self._repository.get_tail()
        total = await self._repository.count_events(
            range_start=range_start, range_end=range_end, max_sequence=tail.sequence
        )

        anchoring = _Anchoring(range_start, trusted_previous_hash, digest, self._signer)
        walker: Optional[ChainWalker] = None
        first: Optional[AuditEvent] = None
        truncated = False

        stream = self._repository.iter_events(
            range_start=range_start,
            range_end=range_end,
            max_sequence=tail.sequence,
            page_size=self._page_size,
        )
        async with aclosing(stream) as events:
            async for event in events:
                if walker is None:
                    first = event
                    walker = anchoring.walker_for(event)
                if max_records is not None and walker.checked >= max_records:
                    truncated = True
                    break
                walker.feed(event)
                if anchoring.accumulator is not None:
                    anchoring.accumulator.update(event.record_hash)

        if walker is None:
            walker = anchoring.walker_for(None)

        digest_reason = anchoring.digest_divergence(complete=not truncated)
        if digest_reason is DivergenceReason.ANCHOR_MISMATCH and first is not None:
            walker.mark(digest_reason, first.id, first.sequence)
        elif digest_reason is not None and walker.last is not None:
            walker.mark(digest_reason, walker.last.id, walker.last.sequence)
        elif digest_reason is not None:
            walker.mark(digest_reason)

        if range_end is None and not truncated:
            self._check_tail(walker, tail, range_start)

        divergence = walker.first_divergence
        valid = divergence is None
        report = IntegrityReport(
            valid=valid,
            total_records=total,
            checked_records=walker.checked,
            invalid_records=walker.invalid,
            anchor=anchoring.kind(first),
            range_start=range_start,
            range_end=range_end,
            verified_at=self._clock(),
            first_divergence_id=divergence.record_id if divergence else None,
            first_divergence_sequence=divergence.sequence if divergence else None,
            divergence_reason=divergence.reason if divergence else None,
            digest_id=digest.id if digest is not None else None,
        )

        self._metrics.increment(INTEGRITY_VERIFICATIONS, category="valid" if valid else "invalid")
        self._metrics.observe_latency(INTEGRITY_VERIFY_LATENCY, (time.perf_counter() - started) * 1000)
        log_extra = {
            "valid": report.valid,
            "total_records": report.total_records,
            "checked_records": report.checked_records,
            "invalid_records": report.invalid_records,
            "anchor": report.anchor.value,
        }
        if valid:
            self._logger.info("integrity_verification_completed", extra=log_extra)
        else:
            log_extra.update(
                first_divergence_id=report.first_divergence_id,
                first_divergence_sequence=report.first_divergence_sequence,
                divergence_reason=report.divergence_reason.value if report.divergence_reason else None,
            )
            self._logger.warning("integrity_divergence_detected", extra=log_extra)
        return report

    @staticmethod
    def _check_tail(walker: ChainWalker, tail: ChainTail, range_start: Optional[datetime]) -> None:
        """An open-ended walk must finish on the record the chain tail names."""
        if tail.is_genesis:
            return
        last = walker.last
        if last is not None:
            if last.sequence != tail.sequence or last.record_hash != tail.record_hash:
                walker.mark(DivergenceReason.TAIL_MISMATCH, last.id, last.sequence)
            return
        if range_start is None or (tail.timestamp is not None and tail.timestamp >= range_start):
            walker.mark(DivergenceReason.TAIL_MISMATCH, tail.record_id, tail.sequence)

    @staticmethod
    def _digest_window(
        digest: AuditDigest,
        range_start: Optional[datetime],
        range_end: Optional[datetime],
    ) -> tuple[datetime, datetime]:
        if range_start is None and range_end is None:
            return digest.period_start, digest.period_end
        if range_start != digest.period_start or range_end != digest.period_end:
            raise DomainValidationError(
                f"digest {digest.id} covers {digest.period_start.isoformat()}"
                f" .. {digest.period_end.isoformat()}; requested range differs"
            )
        return range_start, range_end
