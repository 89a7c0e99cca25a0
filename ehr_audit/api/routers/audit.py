"""Audit API router: search, detail, integrity verification, export, digests, anomalies."""

import logging
from datetime import datetime, timezone
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from ehr_audit.api.dependencies import (
    AuditActor,
    get_anomaly_detector,
    get_audit_recorder,
    get_digest_generator,
    get_exporter,
    get_integrity_verifier,
    get_query_service,
    request_context,
    require_permission,
)
from ehr_audit.application.anomaly_detector import AnomalyDetector
from ehr_audit.application.audit_exporter import AuditExporter, ExportFormat
from ehr_audit.application.audit_query_service import AuditQueryService
from ehr_audit.application.audit_recorder import AuditRecorder
from ehr_audit.application.digest_generator import DigestGenerator
from ehr_audit.application.exceptions import PersistenceError
from ehr_audit.application.integrity_verifier import IntegrityVerifier
from ehr_audit.domain.models.audit_event import AuditAction
from ehr_audit.domain.models.audit_query import AuditSearchFilters, SortOrder
from ehr_audit.domain.schemas.audit import (
    AnomalyResponse,
    AuditEventDetailResponse,
    AuditEventPageResponse,
    AuditEventResponse,
    DigestConfirmationResponse,
    DigestCreateRequest,
    DigestResponse,
    IntegrityReportResponse,
    SnapshotResponse,
)
from ehr_audit.domain.validators.audit_validator import MAX_PAGE_LIMIT
from ehr_audit.security.rbac import Permission

logger = logging.getLogger(__name__)

router = APIRouter()

AUDIT_LOG_RESOURCE = "AuditLog"
HASH_LENGTH = 64


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Query datetimes without an offset are taken as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _filters(
    date_from: Optional[datetime],
    date_to: Optional[datetime],
    actor_id: Optional[str],
    action: Optional[AuditAction],
    resource_type: Optional[str],
    resource_id: Optional[str],
) -> AuditSearchFilters:
    return AuditSearchFilters(
        date_from=_utc(date_from),
        date_to=_utc(date_to),
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
    )


@router.get("/events", response_model=AuditEventPageResponse)
async def search_events(
    actor: Annotated[AuditActor, Depends(require_permission(Permission.VIEW))],
    service: Annotated[AuditQueryService, Depends(get_query_service)],
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    actor_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_LIMIT)] = 25,
    sort: SortOrder = SortOrder.DESC,
):
    """Search audit events. Snapshots are returned sealed."""
    result = await service.search(
        _filters(date_from, date_to, actor_id, action, resource_type, resource_id),
        page=page,
        limit=limit,
        order=sort,
    )
    return AuditEventPageResponse(
        items=[AuditEventResponse.model_validate(e) for e in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/events/{event_id}", response_model=AuditEventDetailResponse)
async def get_event(
    event_id: str,
    request: Request,
    actor: Annotated[AuditActor, Depends(require_permission(Permission.VIEW))],
    service: Annotated[AuditQueryService, Depends(get_query_service)],
    recorder: Annotated[AuditRecorder, Depends(get_audit_recorder)],
):
    """Event detail with unsealed snapshots. The read is itself audited."""
    detail = await service.get(event_id)
    await recorder.record_event(
        actor_id=actor.actor_id,
        action=AuditAction.READ,
        resource_type=AUDIT_LOG_RESOURCE,
        resource_id=event_id,
        context=request_context(request, 200, actor.session_id),
        actor_role=actor.role.value,
    )
    base = AuditEventResponse.model_validate(detail.event).model_dump()
    return AuditEventDetailResponse(
        **base,
        old_value=SnapshotResponse.from_snapshot(detail.old_value),
        new_value=SnapshotResponse.from_snapshot(detail.new_value),
        snapshots_readable=detail.snapshots_readable,
    )


@router.get("/verify-integrity", response_model=IntegrityReportResponse)
async def verify_integrity(
    actor: Annotated[AuditActor, Depends(require_permission(Permission.VERIFY))],
    verifier: Annotated[IntegrityVerifier, Depends(get_integrity_verifier)],
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
    trusted_previous_hash: Annotated[
        Optional[str], Query(min_length=HASH_LENGTH, max_length=HASH_LENGTH, pattern="^[0-9a-f]+$")
    ] = None,
    digest_id: Optional[str] = None,
    max_records: Annotated[Optional[int], Query(ge=1)] = None,
):
    """Walk the hash chain. A broken chain is 200 with valid=false; storage failure is 503."""
    try:
        report = await verifier.verify(
            _utc(range_start),
            _utc(range_end),
            trusted_previous_hash=trusted_previous_hash,
            digest_id=digest_id,
            max_records=max_records,
        )
    except PersistenceError as e:
        logger.error("integrity_verification_unavailable", extra={"error": e.message})
        return JSONResponse(
            status_code=503,
            content={"detail": e.message, "code": "VERIFICATION_UNAVAILABLE"},
        )
    return IntegrityReportResponse.model_validate(report)


@router.get("/export")
async def export_events(
    request: Request,
    actor: Annotated[AuditActor, Depends(require_permission(Permission.EXPORT))],
    exporter: Annotated[AuditExporter, Depends(get_exporter)],
    recorder: Annotated[AuditRecorder, Depends(get_audit_recorder)],
    format: ExportFormat = ExportFormat.CSV,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    actor_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
):
    """Export matching events as csv, json or a FHIR AuditEvent bundle. The export is audited."""
    result = await exporter.export(
        _filters(date_from, date_to, actor_id, action, resource_type, resource_id), format
    )
    await recorder.record_event(
        actor_id=actor.actor_id,
        action=AuditAction.EXPORT,
        resource_type=AUDIT_LOG_RESOURCE,
        resource_id=None,
        context=request_context(request, 200, actor.session_id),
        actor_role=actor.role.value,
    )
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


@router.post("/digests", response_model=DigestResponse, status_code=201)
async def create_digest(
    body: DigestCreateRequest,
    actor: Annotated[AuditActor, Depends(require_permission(Permission.GENERATE_DIGEST))],
    generator: Annotated[DigestGenerator, Depends(get_digest_generator)],
):
    """Sign the record hashes of a closed window. Empty windows are 404; nothing is stored."""
    digest = await generator.generate(
        body.period_start, body.period_end, algorithm=body.algorithm, generated_by=actor.actor_id
    )
    return DigestResponse.model_validate(digest)


@router.get("/digests", response_model=List[DigestResponse])
async def list_digests(
    actor: Annotated[AuditActor, Depends(require_permission(Permission.VIEW))],
    generator: Annotated[DigestGenerator, Depends(get_digest_generator)],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
):
    return [DigestResponse.model_validate(d) for d in await generator.list(limit)]


@router.get("/digests/{digest_id}", response_model=DigestResponse)
async def get_digest(
    digest_id: str,
    actor: Annotated[AuditActor, Depends(require_permission(Permission.VIEW))],
    generator: Annotated[DigestGenerator, Depends(get_digest_generator)],
):
    return DigestResponse.model_validate(await generator.get(digest_id))


@router.get("/digests/{digest_id}/confirm", response_model=DigestConfirmationResponse)
async def confirm_digest(
    digest_id: str,
    actor: Annotated[AuditActor, Depends(require_permission(Permission.VERIFY))],
    generator: Annotated[DigestGenerator, Depends(get_digest_generator)],
):
    """Recompute a stored digest over the current records."""
    return DigestConfirmationResponse.model_validate(await generator.confirm(digest_id))


@router.get("/anomalies", response_model=List[AnomalyResponse])
async def detect_anomalies(
    actor: Annotated[AuditActor, Depends(require_permission(Permission.VIEW))],
    detector: Annotated[AnomalyDetector, Depends(get_anomaly_detector)],
    hours: Annotated[int, Query(ge=1, le=744)] = 24,
):
    return [AnomalyResponse.model_validate(a) for a in await detector.detect(hours)]
