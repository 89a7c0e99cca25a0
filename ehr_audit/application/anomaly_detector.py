"""Access-pattern anomaly detection over a recent window of the audit trail."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.domain.exceptions import DomainValidationError
from ehr_audit.domain.models.audit_event import AuditAction, AuditEvent
from ehr_audit.domain.models.audit_query import (
    AnomalySeverity,
    AnomalyType,
    AuditAnomaly,
    AuditSearchFilters,
)

MASS_ACCESS_THRESHOLD = 100
MASS_ACCESS_CRITICAL = 500
AFTER_HOURS_START = 22  # UTC hour, inclusive
AFTER_HOURS_END = 6  # UTC hour, exclusive
AFTER_HOURS_HIGH = 50
AFTER_HOURS_MEDIUM = 10
RAPID_WINDOW = timedelta(minutes=5)
RAPID_THRESHOLD = 50
RAPID_CRITICAL = 200
MAX_WINDOW_HOURS = 24 * 31


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Span:
    count: int = 0
    first: Optional[datetime] = None
    last: Optional[datetime] = None
    distinct: Set[str] = field(default_factory=set)

    def add(self, timestamp: datetime) -> None:
        self.count += 1
        if self.first is None:
            self.first = timestamp
        self.last = timestamp


def _bucket_start(timestamp: datetime) -> datetime:
    ts = timestamp.astimezone(timezone.utc)
    return ts.replace(minute=ts.minute - ts.minute % 5, second=0, microsecond=0)


def _is_after_hours(timestamp: datetime) -> bool:
    hour = timestamp.astimezone(timezone.utc).hour
    return hour >= AFTER_HOURS_START or hour < AFTER_HOURS_END


class AnomalyDetector:
    """Single pass over the window; events without an actor are system traffic and skipped."""

    def __init__(
        self,
        repository: AuditRepository,
        page_size: int = 500,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._page_size = page_size
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    async def detect(self, hours: int = 24) -> List[AuditAnomaly]:
        if not (1 <= hours <= MAX_WINDOW_HOURS):
            raise DomainValidationError(f"hours must be between 1 and {MAX_WINDOW_HOURS}")
        since = self._clock() - timedelta(hours=hours)

        patient_reads: Dict[str, _Span] = defaultdict(_Span)
        after_hours: Dict[str, _Span] = defaultdict(_Span)
        buckets: Dict[Tuple[str, datetime], int] = defaultdict(int)

        async for event in self._repository.iter_filtered(
            AuditSearchFilters(date_from=since), self._page_size
        ):
            if event.actor_id is None:
                continue
            self._observe(event, patient_reads, after_hours, buckets)

        anomalies: List[AuditAnomaly] = []
        for actor_id, span in patient_reads.items():
            distinct = len(span.distinct)
            if distinct > MASS_ACCESS_THRESHOLD:
                anomalies.append(
                    AuditAnomaly(
                        type=AnomalyType.MASS_DATA_ACCESS,
                        actor_id=actor_id,
                        count=distinct,
                        window_start=span.first,
                        window_end=span.last,
                        severity=AnomalySeverity.CRITICAL
                        if distinct > MASS_ACCESS_CRITICAL
                        else AnomalySeverity.HIGH,
                    )
                )
        for actor_id, span in after_hours.items():
            if span.count > AFTER_HOURS_HIGH:
                severity = AnomalySeverity.HIGH
            elif span.count > AFTER_HOURS_MEDIUM:
                severity = AnomalySeverity.MEDIUM
            else:
                severity = AnomalySeverity.LOW
            anomalies.append(
                AuditAnomaly(
                    type=AnomalyType.AFTER_HOURS_ACCESS,
                    actor_id=actor_id,
                    count=span.count,
                    window_start=span.first,
                    window_end=span.last,
                    severity=severity,
                )
            )
        for (actor_id, start), count in buckets.items():
            if count > RAPID_THRESHOLD:
                anomalies.append(
                    AuditAnomaly(
                        type=AnomalyType.RAPID_SEQUENTIAL_ACCESS,
                        actor_id=actor_id,
                        count=count,
                        window_start=start,
                        window_end=start + RAPID_WINDOW,
                        severity=AnomalySeverity.CRITICAL
                        if count > RAPID_CRITICAL
                        else AnomalySeverity.HIGH,
                    )
                )

        if anomalies:
            self._logger.warning(
                "audit_anomalies_detected",
                extra={"hours": hours, "anomaly_count": len(anomalies)},
            )
        return anomalies

    @staticmethod
    def _observe(
        event: AuditEvent,
        patient_reads: Dict[str, _Span],
        after_hours: Dict[str, _Span],
        buckets: Dict[Tuple[str, datetime], int],
    ) -> None:
        actor_id = event.actor_id
        if (
            event.action == AuditAction.READ
            and event.resource_type == "Patient"
            and event.resource_id is not None
        ):
            span = patient_reads[actor_id]
            span.add(event.timestamp)
            span.distinct.add(event.resource_id)
        if _is_after_hours(event.timestamp):
            after_hours[actor_id].add(event.timestamp)
        buckets[(actor_id, _bucket_start(event.timestamp))] += 1
