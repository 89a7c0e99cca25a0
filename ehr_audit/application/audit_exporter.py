"""Compliance exports of the audit trail: CSV, JSON and FHIR R4 AuditEvent bundles."""

import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List

from ehr_audit.application.audit_repository import AuditRepository
from ehr_audit.domain.exceptions import DomainValidationError
from ehr_audit.domain.models.audit_event import AuditAction, AuditEvent
from ehr_audit.domain.models.audit_query import AuditSearchFilters
from ehr_audit.domain.validators.audit_validator import validate_range
from ehr_audit.governance.canonical import (
    CURRENT_CANONICAL_VERSION,
    GENESIS_HASH,
    HASH_POLICY,
    format_timestamp,
)

CSV_COLUMNS = [
    "id",
    "sequence",
    "timestamp",
    "actor_id",
    "actor_role",
    "ip_address",
    "action",
    "resource_type",
    "resource_id",
    "endpoint",
    "method",
    "status_code",
    "user_agent",
    "session_id",
    "clinical_context",
    "old_value",
    "new_value",
    "canonical_version",
    "previous_hash",
    "record_hash",
]

FHIR_EXTENSION_BASE = "urn:ehr-audit:fhir:extension"
_DCM_SYSTEM = "http://dicom.nema.org/resources/ontology/DCM"
_RESTFUL_SYSTEM = "http://hl7.org/fhir/restful-interaction"
_ENTITY_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/audit-entity-type"
_FHIR_ACTION = {
    AuditAction.CREATE: "C",
    AuditAction.READ: "R",
    AuditAction.UPDATE: "U",
    AuditAction.DELETE: "D",
}


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    FHIR = "fhir"


@dataclass(frozen=True)
class ExportResult:
    content: str
    media_type: str
    filename: str
    record_count: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event_row(event: AuditEvent) -> Dict[str, Any]:
    row = dict(event.hashed_fields())
    row["timestamp"] = format_timestamp(event.timestamp)
    row["action"] = event.action.value
    row["previous_hash"] = event.previous_hash
    row["record_hash"] = event.record_hash
    return row


def _fhir_audit_event(event: AuditEvent) -> Dict[str, Any]:
    is_read = event.action == AuditAction.READ
    resource: Dict[str, Any] = {
        "resourceType": "AuditEvent",
        "id": event.id,
        "type": {
            "system": _DCM_SYSTEM,
            "code": "110110" if is_read else "110111",
            "display": "Patient Record" if is_read else "Procedure Record",
        },
        "subtype": [
            {"system": _RESTFUL_SYSTEM, "code": event.action.value.lower(), "display": event.action.value}
        ],
        "action": _FHIR_ACTION.get(event.action, "E"),
        "recorded": format_timestamp(event.timestamp),
        "outcome": "0" if event.status_code is None or event.status_code < 400 else "8",
        "agent": [
            {
                "who": {"reference": f"Practitioner/{event.actor_id}"} if event.actor_id else {"display": "system"},
                "requestor": event.actor_id is not None,
                **({"network": {"address": event.ip_address, "type": "2"}} if event.ip_address else {}),
            }
        ],
        "source": {"observer": {"display": "EHR Audit Ledger"}},
        "entity": [
            {
                "what": {
                    "reference": f"{event.resource_type}/{event.resource_id}"
                    if event.resource_id
                    else event.resource_type
                },
                "type": {"system": _ENTITY_TYPE_SYSTEM, "code": "2", "display": "System Object"},
            }
        ],
        "extension": [
            {"url": f"{FHIR_EXTENSION_BASE}:sequence", "valueInteger": event.sequence},
            {"url": f"{FHIR_EXTENSION_BASE}:canonical-version", "valueString": event.canonical_version},
            {"url": f"{FHIR_EXTENSION_BASE}:previous-hash", "valueString": event.previous_hash},
            {"url": f"{FHIR_EXTENSION_BASE}:record-hash", "valueString": event.record_hash},
        ],
    }
    return {"fullUrl": f"urn:uuid:{event.id}", "resource": resource}


class AuditExporter:
    """
    Renders matching events in sequence order. Exported rows carry the hashes and the
    canonical version so a third party can re-verify the chain offline.
    """

    def __init__(
        self,
        repository: AuditRepository,
        page_size: int = 500,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._page_size = page_size
        self._clock = clock

    async def export(self, filters: AuditSearchFilters, format: str = ExportFormat.CSV) -> ExportResult:
        try:
            fmt = ExportFormat(format)
        except ValueError as e:
            raise DomainValidationError(
                f"unsupported export format {format!r}; expected one of {[f.value for f in ExportFormat]}"
            ) from e
        validate_range(filters.date_from, filters.date_to)

        events: List[AuditEvent] = [
            event async for event in self._repository.iter_filtered(filters, self._page_size)
        ]
        stamp = self._clock().strftime("%Y%m%dT%H%M%SZ")
        if fmt == ExportFormat.CSV:
            return ExportResult(self._to_csv(events), "text/csv", f"audit-export-{stamp}.csv", len(events))
        if fmt == ExportFormat.JSON:
            return ExportResult(
                self._to_json(events), "application/json", f"audit-export-{stamp}.json", len(events)
            )
        return ExportResult(
            self._to_fhir(events), "application/fhir+json", f"audit-export-{stamp}.fhir.json", len(events)
        )

    @staticmethod
    def _to_csv(events: List[AuditEvent]) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore", lineterminator="\n")
        writer.writeheader()
        for event in events:
            writer.writerow({k: ("" if v is None else v) for k, v in _event_row(event).items()})
        return buffer.getvalue()

    def _to_json(self, events: List[AuditEvent]) -> str:
        document = {
            "generated_at": format_timestamp(self._clock()),
            "canonicalization": {"version": CURRENT_CANONICAL_VERSION, "hash_policy": HASH_POLICY},
            "genesis_hash": GENESIS_HASH,
            "record_count": len(events),
            "events": [_event_row(e) for e in events],
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    @staticmethod
    def _to_fhir(events: List[AuditEvent]) -> str:
        bundle = {
            "resourceType": "Bundle",
            "type": "collection",
            "total": len(events),
            "entry": [_fhir_audit_event(e) for e in events],
        }
        return json.dumps(bundle, indent=2, ensure_ascii=False)

