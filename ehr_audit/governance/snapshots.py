"""Tagged serialization of change snapshots (old/new values on audit events)."""

import base64
import json

from ehr_audit.domain.exceptions import SnapshotEncodingError
from ehr_audit.domain.models.audit_event import ChangeSnapshot, OpaqueSnapshot, ResourceSnapshot
from ehr_audit.governance.canonical import canonical_json

KIND_RESOURCE = "resource"
KIND_OPAQUE = "opaque"


def encode_snapshot(snapshot: ChangeSnapshot) -> str:
    """Serialize once, canonically. The result (after sealing) is what gets hashed and stored."""
    if isinstance(snapshot, ResourceSnapshot):
        return canonical_json(
            {
                "kind": KIND_RESOURCE,
                "resource_type": snapshot.resource_type,
                "fields": dict(snapshot.fields),
            }
        )
    if isinstance(snapshot, OpaqueSnapshot):
        return canonical_json(
            {
                "kind": KIND_OPAQUE,
                "schema_version": snapshot.schema_version,
                "content_type": snapshot.content_type,
                "data": snapshot.data,
            }
        )
    raise SnapshotEncodingError(f"unsupported snapshot type {type(snapshot).__name__}")


def decode_snapshot(text: str) -> ChangeSnapshot:
    try:
        data = json.loads(text)
        kind = data["kind"]
        if kind == KIND_RESOURCE:
            return ResourceSnapshot(resource_type=data["resource_type"], fields=data["fields"])
        if kind == KIND_OPAQUE:
            return OpaqueSnapshot(
                schema_version=data["schema_version"],
                content_type=data["content_type"],
                data=base64.b64decode(data["data"]),
            )
    except (ValueError, KeyError, TypeError) as e:
        raise SnapshotEncodingError(f"malformed snapshot: {e}") from e
    raise SnapshotEncodingError(f"unknown snapshot kind {kind!r}")
