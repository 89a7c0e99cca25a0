"""Periodic digest generation and confirmation."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.application.exceptions import EmptyPeriodError, NotFoundError
from ehr_audit.domain.models.audit_digest import AuditDigest, DigestConfirmation
from ehr_audit.domain.validators.audit_validator import validate_range
from ehr_audit.governance.digest_signer import HMAC_SHA256, DigestAccumulator, DigestSigner
from ehr_audit.observability.metrics import AUDIT_DIGESTS_GENERATED, MetricsCollector


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DigestGenerator:
    """
    Signs the ordered record hashes of a closed window [period_start, period_end] with the
    digest key. Records are read under an upper sequence bound taken at the start, so
    appends that land during generation are never part of the digest.
    """

    def __init__(
        self,
        repository: AuditRepository,
        signer: DigestSigner,
        *,
        metrics: Optional[MetricsCollector] = None,
        default_algorithm: str = HMAC_SHA256,
        page_size: int = 500,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._signer = signer
        self._metrics = metrics or MetricsCollector()
        self._default_algorithm = DigestSigner.resolve(default_algorithm)
        self._page_size = page_size
        self._clock = clock
        self._id_factory = id_factory
        self._logger = logger or logging.getLogger(__name__)

    async def generate(
        self,
        period_start: datetime,
        period_end: datetime,
        algorithm: Optional[str] = None,
        generated_by: Optional[str] = None,
    ) -> AuditDigest:
        """
        Digest every record with timestamp in the window. Raises RangeError for an inverted
        window, UnsupportedAlgorithmError for an unknown algorithm and EmptyPeriodError when
        the window holds no records (nothing is stored in that case).
        """
        validate_range(period_start, period_end)
        accumulator = self._signer.begin(algorithm or self._default_algorithm)
        await self._accumulate(accumulator, period_start, period_end)

        if accumulator.count == 0:
            self._logger.info(
                "audit_digest_skipped_empty",
                extra={"period_start": period_start.isoformat(), "period_end": period_end.isoformat()},
            )
            raise EmptyPeriodError(
                f"no audit events between {period_start.isoformat()} and {period_end.isoformat()}"
            )

        digest = AuditDigest(
            id=self._id_factory(),
            period_start=period_start,
            period_end=period_end,
            record_count=accumulator.count,
            digest_hash=accumulator.hexdigest(),
            algorithm=accumulator.algorithm,
            first_record_hash=accumulator.first_record_hash,
            last_record_hash=accumulator.last_record_hash,
            generated_by=generated_by,
            created_at=self._clock(),
        )
        await self._repository.save_digest(digest)

        self._metrics.increment(AUDIT_DIGESTS_GENERATED, category=digest.algorithm)
        self._logger.info(
            "audit_digest_generated",
            extra={
                "digest_id": digest.id,
                "record_count": digest.record_count,
                "algorithm": digest.algorithm,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
            },
        )
        return digest

    async def confirm(self, digest_id: str) -> DigestConfirmation:
        """Recompute a stored digest over the records currently in its window."""
        digest = await self.get(digest_id)
        accumulator = self._signer.begin(digest.algorithm)
        await self._accumulate(accumulator, digest.period_start, digest.period_end)

        recomputed = accumulator.hexdigest() if accumulator.count else None
        matches = (
            recomputed == digest.digest_hash
            and accumulator.count == digest.record_count
            and accumulator.first_record_hash == digest.first_record_hash
            and accumulator.last_record_hash == digest.last_record_hash
        )
        if not matches:
            self._logger.warning(
                "audit_digest_mismatch",
                extra={
                    "digest_id": digest.id,
                    "stored_count": digest.record_count,
                    "current_count": accumulator.count,
                },
            )
        return DigestConfirmation(
            digest=digest,
            matches=matches,
            recomputed_hash=recomputed,
            record_count=accumulator.count,
            first_record_hash=accumulator.first_record_hash,
            last_record_hash=accumulator.last_record_hash,
        )

    async def get(self, digest_id: str) -> AuditDigest:
        digest = await self._repository.get_digest(digest_id)
        if digest is None:
            raise NotFoundError(f"digest {digest_id} not found")
        return digest

    async def list(self, limit: int = 50) -> List[AuditDigest]:
        return await self._repository.list_digests(limit)

    async def _accumulate(
        self, accumulator: DigestAccumulator, period_start: datetime, period_end: datetime
    ) -> None:
        tail = await self._repository.get_tail()
        async for event in self._repository.iter_events(
            range_start=period_start,
            range_end=period_end,
            max_sequence=tail.sequence,
            page_size=self._page_size,
        ):
            accumulator.update(event.record_hash)
