"""Domain model for audit events. Pure business semantics; no ORM or infrastructure."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Union


class AuditAction(str, Enum):
    """Audited verbs. Mirrors the CHECK constraint on audit_events.action."""

    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    EXPORT = "EXPORT"
    EMERGENCY = "EMERGENCY"


@dataclass(frozen=True)
class ResourceSnapshot:
    """Structured before/after state of a resource (known shape)."""

    resource_type: str
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class OpaqueSnapshot:
    """Fallback snapshot: raw bytes plus the schema version needed to read them later."""

    schema_version: str
    content_type: str
    data: bytes


ChangeSnapshot = Union[ResourceSnapshot, OpaqueSnapshot]


@dataclass(frozen=True)
class RequestContext:
    """Best-effort request context attached to an audit event."""

    ip_address: Optional[str] = None
    method: Optional[str] = None
    endpoint: Optional[str] = None
    status_code: Optional[int] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    clinical_context: Optional[str] = None


@dataclass(frozen=True)
class AuditEventInput:
    """
    Candidate audit event as emitted by services. Everything the recorder does not assign:
    no id, sequence, timestamp or hashes.
    """

    action: AuditAction
    resource_type: str
    resource_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    context: RequestContext = field(default_factory=RequestContext)
    old_value: Optional[ChangeSnapshot] = None
    new_value: Optional[ChangeSnapshot] = None


@dataclass(frozen=True)
class AuditEvent:
    """
    Immutable, chained audit record.

    old_value/new_value hold the sealed snapshot text exactly as stored; that text,
    not a re-derived object, is what the record hash covers.
    """

    id: str
    sequence: int
    timestamp: datetime
    action: AuditAction
    resource_type: str
    resource_id: Optional[str]
    actor_id: Optional[str]
    actor_role: Optional[str]
    ip_address: Optional[str]
    method: Optional[str]
    endpoint: Optional[str]
    status_code: Optional[int]
    user_agent: Optional[str]
    session_id: Optional[str]
    clinical_context: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    canonical_version: str
    previous_hash: str
    record_hash: str

    def hashed_fields(self) -> dict[str, Any]:
        """Fields covered by record_hash (everything except the two hashes)."""
        return {
            "id": self.id,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "ip_address": self.ip_address,
            "method": self.method,
            "endpoint": self.endpoint,
            "status_code": self.status_code,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "clinical_context": self.clinical_context,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "canonical_version": self.canonical_version,
        }


@dataclass(frozen=True)
class ChainTail:
    """Position of the most recently appended record. sequence 0 means the chain is empty."""

    sequence: int
    record_hash: str
    timestamp: Optional[datetime] = None
    record_id: Optional[str] = None

    @property
    def is_genesis(self) -> bool:
        return self.sequence == 0
