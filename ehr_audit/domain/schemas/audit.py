"""Pydantic schemas for the audit API. Strict validation, no DB or infrastructure."""

import base64
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ehr_audit.domain.models.audit_event import (
    AuditAction,
    ChangeSnapshot,
    OpaqueSnapshot,
    ResourceSnapshot,
)
from ehr_audit.domain.models.audit_query import AnomalySeverity, AnomalyType
from ehr_audit.domain.models.integrity import AnchorKind, DivergenceReason


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return v
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class DigestCreateRequest(BaseModel):
    """Closed window [period_start, period_end]; naive datetimes are taken as UTC."""

    period_start: datetime
    period_end: datetime
    algorithm: Optional[str] = Field(None, min_length=1, description="hmac-sha256 or hmac-sha512")

    @field_validator("period_start", "period_end")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class AuditEventResponse(BaseModel):
    """Stored event as persisted. Snapshots stay sealed."""

    id: str
    sequence: int
    timestamp: datetime
    action: AuditAction
    resource_type: str
    resource_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    ip_address: Optional[str] = None
    method: Optional[str] = None
    endpoint: Optional[str] = None
    status_code: Optional[int] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    clinical_context: Optional[str] = None
    canonical_version: str
    previous_hash: str
    record_hash: str

    model_config = {"from_attributes": True}


class SnapshotResponse(BaseModel):
    kind: str
    resource_type: Optional[str] = None
    fields: Optional[Dict[str, Any]] = None
    schema_version: Optional[str] = None
    content_type: Optional[str] = None
    data: Optional[str] = Field(None, description="Base64 payload of an opaque snapshot")

    @classmethod
    def from_snapshot(cls, snapshot: Optional[ChangeSnapshot]) -> Optional["SnapshotResponse"]:
        if snapshot is None:
            return None
        if isinstance(snapshot, ResourceSnapshot):
            return cls(kind="resource", resource_type=snapshot.resource_type, fields=dict(snapshot.fields))
        if isinstance(snapshot, OpaqueSnapshot):
            return cls(
                kind="opaque",
                schema_version=snapshot.schema_version,
                content_type=snapshot.content_type,
                data=base64.b64encode(snapshot.data).decode("ascii"),
            )
        return None


class AuditEventDetailResponse(AuditEventResponse):
    old_value: Optional[SnapshotResponse] = None
    new_value: Optional[SnapshotResponse] = None
    snapshots_readable: bool = True


class AuditEventPageResponse(BaseModel):
    items: List[AuditEventResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class IntegrityReportResponse(BaseModel):
    valid: bool
    total_records: int
    checked_records: int
    invalid_records: int
    anchor: AnchorKind
    anchored: bool
    range_start: Optional[datetime] = None
    range_end: Optional[datetime] = None
    verified_at: datetime
    first_divergence_id: Optional[str] = None
    first_divergence_sequence: Optional[int] = None
    divergence_reason: Optional[DivergenceReason] = None
    digest_id: Optional[str] = None

    model_config = {"from_attributes": True}


class DigestResponse(BaseModel):
    id: str
    period_start: datetime
    period_end: datetime
    record_count: int
    digest_hash: str
    algorithm: str
    first_record_hash: str
    last_record_hash: str
    generated_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DigestConfirmationResponse(BaseModel):
    digest: DigestResponse
    matches: bool
    recomputed_hash: Optional[str] = None
    record_count: int
    first_record_hash: Optional[str] = None
    last_record_hash: Optional[str] = None

    model_config = {"from_attributes": True}


class AnomalyResponse(BaseModel):
    type: AnomalyType
    actor_id: str
    count: int
    window_start: datetime
    window_end: datetime
    severity: AnomalySeverity

    model_config = {"from_attributes": True}
