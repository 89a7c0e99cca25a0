"""Event recorder: the only writer of the audit hash chain."""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.application.exceptions import ConcurrencyConflictError, PersistenceError
from ehr_audit.domain.models.audit_event import (
    AuditAction,
    AuditEvent,
    AuditEventInput,
    ChainTail,
    ChangeSnapshot,
    RequestContext,
)
from ehr_audit.domain.validators.audit_validator import validate_event_input
from ehr_audit.governance.canonical import CURRENT_CANONICAL_VERSION, recompute_event_hash
from ehr_audit.governance.snapshots import encode_snapshot
from ehr_audit.observability.metrics import (
    AUDIT_APPEND_CONFLICTS,
    AUDIT_APPEND_FAILURES,
    AUDIT_APPEND_LATENCY,
    AUDIT_EVENTS_APPENDED,
    MetricsCollector,
)
from ehr_audit.scalability.distributed_lock import (
    CHAIN_TAIL_LOCK_KEY,
    DistributedLock,
    LockBackendError,
    LockNotAcquiredError,
)
from ehr_audit.security.encryption import EncryptionService


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditRecorder:
    """
    Appends audit events to the hash chain.

    Reading the tail and writing the new record is serialized three ways: an in-process
    asyncio.Lock, an optional Redis lock shared by all nodes, and the repository's
    compare-and-swap on the tail row. A lost compare-and-swap is retried against the new
    tail up to max_attempts times, then surfaced as ConcurrencyConflictError.

    Failures always propagate. Whether the triggering request fails (fail-closed) or
    proceeds (fail-open) is decided by the caller.
    """

    def __init__(
        self,
        repository: AuditRepository,
        encryption: EncryptionService,
        *,
        metrics: Optional[MetricsCollector] = None,
        chain_lock: Optional[DistributedLock] = None,
        max_attempts: int = 5,
        retry_backoff_ms: int = 20,
        lock_ttl: int = 10,
        lock_wait_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._encryption = encryption
        self._metrics = metrics or MetricsCollector()
        self._chain_lock = chain_lock
        self._max_attempts = max(1, max_attempts)
        self._retry_backoff = retry_backoff_ms / 1000.0
        self._lock_ttl = lock_ttl
        self._lock_wait_seconds = lock_wait_seconds
        self._clock = clock
        self._id_factory = id_factory
        self._logger = logger or logging.getLogger(__name__)
        self._write_lock = asyncio.Lock()

    async def append(self, candidate: AuditEventInput) -> AuditEvent:
        """Seal, chain and persist one event. Raises PersistenceError or ConcurrencyConflictError."""
        validate_event_input(candidate)
        sealed_old = self._seal(candidate.old_value)
        sealed_new = self._seal(candidate.new_value)

        started = time.perf_counter()
        async with self._write_lock:
            async with self._hold_chain_lock():
                event = await self._append_with_retry(candidate, sealed_old, sealed_new)

        self._metrics.increment(AUDIT_EVENTS_APPENDED, category=event.action.value)
        self._metrics.observe_latency(AUDIT_APPEND_LATENCY, (time.perf_counter() - started) * 1000)
        self._logger.debug(
            "audit_event_appended",
            extra={
                "audit_event_id": event.id,
                "sequence": event.sequence,
                "action": event.action.value,
                "resource_type": event.resource_type,
                "resource_id": event.resource_id,
            },
        )
        return event

    async def record_event(
        self,
        actor_id: Optional[str],
        action: AuditAction,
        resource_type: str,
        resource_id: Optional[str],
        context: Optional[RequestContext] = None,
        old_value: Optional[ChangeSnapshot] = None,
        new_value: Optional[ChangeSnapshot] = None,
        *,
        actor_role: Optional[str] = None,
    ) -> AuditEvent:
        """Recording interface for services and routes."""
        return await self.append(
            AuditEventInput(
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                actor_id=actor_id,
                actor_role=actor_role,
                context=context or RequestContext(),
                old_value=old_value,
                new_value=new_value,
            )
        )

    async def _append_with_retry(
        self,
        candidate: AuditEventInput,
        sealed_old: Optional[str],
        sealed_new: Optional[str],
    ) -> AuditEvent:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._repository.append(
                    lambda tail: self._build(candidate, sealed_old, sealed_new, tail)
                )
            except ConcurrencyConflictError as e:
                self._metrics.increment(AUDIT_APPEND_CONFLICTS)
                self._logger.warning(
                    "audit_append_conflict",
                    extra={"attempt": attempt, "max_attempts": self._max_attempts, "error": e.message},
                )
                if attempt == self._max_attempts:
                    self._metrics.increment(AUDIT_APPEND_FAILURES, category="conflict")
                    raise
                await asyncio.sleep(self._retry_backoff * attempt)
            except PersistenceError as e:
                self._metrics.increment(AUDIT_APPEND_FAILURES, category="persistence")
                self._logger.error(
                    "audit_append_failed",
                    extra={
                        "action": candidate.action.value,
                        "resource_type": candidate.resource_type,
                        "resource_id": candidate.resource_id,
                        "error": e.message,
                    },
                )
                raise
        raise ConcurrencyConflictError("chain tail append did not complete")  # unreachable with max_attempts >= 1

    def _build(
        self,
        candidate: AuditEventInput,
        sealed_old: Optional[str],
        sealed_new: Optional[str],
        tail: ChainTail,
    ) -> AuditEvent:
        timestamp = self._clock()
        # Insertion order is the authority; never let a skewed clock step backwards.
        if tail.timestamp is not None and timestamp < tail.timestamp:
            timestamp = tail.timestamp
        context = candidate.context
        event = AuditEvent(
            id=self._id_factory(),
            sequence=tail.sequence + 1,
            timestamp=timestamp,
            action=candidate.action,
            resource_type=candidate.resource_type,
            resource_id=candidate.resource_id,
            actor_id=candidate.actor_id,
            actor_role=candidate.actor_role,
            ip_address=context.ip_address,
            method=context.method.upper() if context.method else None,
            endpoint=context.endpoint,
            status_code=context.status_code,
            user_agent=context.user_agent,
            session_id=context.session_id,
            clinical_context=context.clinical_context,
            old_value=sealed_old,
            new_value=sealed_new,
            canonical_version=CURRENT_CANONICAL_VERSION,
            previous_hash=tail.record_hash,
            record_hash="",
        )
        return replace(event, record_hash=recompute_event_hash(event))

    def _seal(self, snapshot: Optional[ChangeSnapshot]) -> Optional[str]:
        if snapshot is None:
            return None
        return self._encryption.encrypt(encode_snapshot(snapshot))

    @asynccontextmanager
    async def _hold_chain_lock(self) -> AsyncIterator[None]:
        if self._chain_lock is None:
            yield
            return
        try:
            lock = self._chain_lock.hold(
                CHAIN_TAIL_LOCK_KEY, ttl=self._lock_ttl, wait_seconds=self._lock_wait_seconds
            )
            await lock.__aenter__()
        except LockNotAcquiredError as e:
            self._metrics.increment(AUDIT_APPEND_FAILURES, category="lock_timeout")
            raise ConcurrencyConflictError(f"chain tail lock busy: {e}") from e
        except LockBackendError as e:
            self._metrics.increment(AUDIT_APPEND_FAILURES, category="lock_unavailable")
            raise PersistenceError(f"chain tail lock unavailable: {e}") from e
        try:
            yield
        finally:
            await lock.__aexit__(None, None, None)
