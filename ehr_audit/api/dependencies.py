"""FastAPI dependency injection: repository, recorder, services, actor identity."""

from dataclasses import dataclass
from typing import Annotated, Callable, Optional

from fastapi import Depends, Request

from ehr_audit.application.anomaly_detector import AnomalyDetector
from ehr_audit.application.audit_exporter import AuditExporter
from ehr_audit.application.audit_query_service import AuditQueryService
from ehr_audit.application.audit_recorder import AuditRecorder
from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.application.digest_generator import DigestGenerator
from ehr_audit.application.integrity_verifier import IntegrityVerifier
from ehr_audit.config.settings import get_settings
from ehr_audit.domain.models.audit_event import RequestContext
from ehr_audit.governance.digest_signer import DigestSigner
from ehr_audit.infrastructure.cache.redis_client import RedisClient
from ehr_audit.infrastructure.database.audit_repository_db import SqlAlchemyAuditRepository
from ehr_audit.infrastructure.database.session import AsyncSessionLocal
from ehr_audit.observability.metrics import MetricsCollector
from ehr_audit.scalability.distributed_lock import DistributedLock
from ehr_audit.security.encryption import EncryptionService
from ehr_audit.security.exceptions import AuthenticationError
from ehr_audit.security.rbac import Permission, RBACService, Role, parse_role

_repository: AuditRepository | None = None
_recorder: AuditRecorder | None = None
_encryption: EncryptionService | None = None
_signer: DigestSigner | None = None
_metrics: MetricsCollector | None = None
_chain_lock: DistributedLock | None = None
_rbac = RBACService()


def get_metrics() -> MetricsCollector:
    """Return singleton metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_encryption_service() -> EncryptionService:
    """Return singleton snapshot sealing service."""
    global _encryption
    if _encryption is None:
        _encryption = EncryptionService(get_settings().audit_encryption_key)
    return _encryption


def get_digest_signer() -> DigestSigner:
    """Return singleton digest signer (digest key, never the encryption key)."""
    global _signer
    if _signer is None:
        _signer = DigestSigner(get_settings().audit_digest_key)
    return _signer


def get_audit_repository() -> AuditRepository:
    """Return singleton SQLAlchemy-backed audit repository."""
    global _repository
    if _repository is None:
        _repository = SqlAlchemyAuditRepository(AsyncSessionLocal)
    return _repository


def get_chain_lock() -> DistributedLock | None:
    """Cross-node chain-tail lock; None when no Redis is configured (single node)."""
    global _chain_lock
    settings = get_settings()
    if _chain_lock is None and settings.redis_url:
        _chain_lock = DistributedLock(RedisClient(settings.redis_url))
    return _chain_lock


def get_audit_recorder() -> AuditRecorder:
    """Return the process-wide recorder. One instance per process: it owns the append lock."""
    global _recorder
    if _recorder is None:
        settings = get_settings()
        _recorder = AuditRecorder(
            repository=get_audit_repository(),
            encryption=get_encryption_service(),
            metrics=get_metrics(),
            chain_lock=get_chain_lock(),
            max_attempts=settings.audit_append_max_attempts,
            retry_backoff_ms=settings.audit_append_retry_backoff_ms,
            lock_ttl=settings.audit_chain_lock_ttl,
            lock_wait_seconds=settings.audit_chain_lock_wait_seconds,
        )
    return _recorder


async def get_integrity_verifier(
    repository: Annotated[AuditRepository, Depends(get_audit_repository)],
    signer: Annotated[DigestSigner, Depends(get_digest_signer)],
    metrics: Annotated[MetricsCollector, Depends(get_metrics)],
) -> IntegrityVerifier:
    return IntegrityVerifier(
        repository, signer, metrics=metrics, page_size=get_settings().audit_verify_page_size
    )


async def get_digest_generator(
    repository: Annotated[AuditRepository, Depends(get_audit_repository)],
    signer: Annotated[DigestSigner, Depends(get_digest_signer)],
    metrics: Annotated[MetricsCollector, Depends(get_metrics)],
) -> DigestGenerator:
    settings = get_settings()
    return DigestGenerator(
        repository,
        signer,
        metrics=metrics,
        default_algorithm=settings.audit_digest_algorithm,
        page_size=settings.audit_verify_page_size,
    )


async def get_query_service(
    repository: Annotated[AuditRepository, Depends(get_audit_repository)],
    encryption: Annotated[EncryptionService, Depends(get_encryption_service)],
) -> AuditQueryService:
    return AuditQueryService(repository, encryption)


async def get_exporter(
    repository: Annotated[AuditRepository, Depends(get_audit_repository)],
) -> AuditExporter:
    return AuditExporter(repository, page_size=get_settings().audit_verify_page_size)


async def get_anomaly_detector(
    repository: Annotated[AuditRepository, Depends(get_audit_repository)],
) -> AnomalyDetector:
    return AnomalyDetector(repository, page_size=get_settings().audit_verify_page_size)


@dataclass(frozen=True)
class AuditActor:
    """Caller identity as asserted by the upstream gateway headers."""

    actor_id: str
    role: Role
    session_id: Optional[str] = None


def get_actor(request: Request) -> AuditActor:
    """Extract actor from request.state (set by ActorContextMiddleware)."""
    actor_id = getattr(request.state, "actor_id", None)
    if not actor_id:
        raise AuthenticationError("X-Actor-ID header is required")
    return AuditActor(
        actor_id=actor_id,
        role=parse_role(getattr(request.state, "actor_role", None)),
        session_id=getattr(request.state, "session_id", None),
    )


def require_permission(permission: Permission) -> Callable[..., AuditActor]:
    """Dependency factory: resolve the actor and enforce one RBAC permission."""

    def dependency(actor: Annotated[AuditActor, Depends(get_actor)]) -> AuditActor:
        _rbac.check_permission(actor.role, permission)
        return actor

    return dependency


def request_context(request: Request, status_code: int, session_id: Optional[str] = None) -> RequestContext:
    """Request metadata recorded alongside an audit event."""
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        method=request.method,
        endpoint=request.url.path[:500],
        status_code=status_code,
        user_agent=request.headers.get("user-agent"),
        session_id=session_id or getattr(request.state, "session_id", None),
    )
