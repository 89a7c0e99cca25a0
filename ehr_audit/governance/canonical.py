"""
Canonical serialization and record hashing for the audit hash chain.

Every hash over an audit record goes through this module: the recorder uses it to
seal new records and the verifier to recompute them. Rules are versioned; each
record stores the version it was sealed with.

Version v1
----------
  canonical(fields) = JSON object of the hashed fields
                      keys sorted, separators "," and ":", UTF-8, no ASCII escaping,
                      NaN/Infinity rejected, timestamps "YYYY-MM-DDTHH:MM:SS.ffffffZ" (UTC),
                      enums by value, bytes as standard base64
  record_hash       = SHA-256(canonical(fields) || "|" || previous_hash), hex
  genesis           = previous_hash of sequence 1 is "0" * 64

Changing any rule above requires a new version tag, never an in-place edit.
"""

import base64
import hashlib
import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping
from uuid import UUID

from ehr_audit.domain.exceptions import SnapshotEncodingError, UnknownCanonicalVersionError
from ehr_audit.domain.models.audit_event import AuditEvent

GENESIS_HASH = "0" * 64
CANONICAL_VERSION_V1 = "v1"
CURRENT_CANONICAL_VERSION = CANONICAL_VERSION_V1
HASH_POLICY = "SHA-256(canonical_json(fields) || '|' || previous_hash)"

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(value: datetime) -> str:
    """UTC, microsecond precision, trailing Z. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)) and not isinstance(value, Enum):
        return value
    if isinstance(value, Enum):
        return _normalize(value.value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SnapshotEncodingError(f"non-finite number {value!r} cannot be canonicalized")
        return value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        normalized = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SnapshotEncodingError(f"mapping keys must be strings, got {type(key).__name__}")
            normalized[key] = _normalize(item)
        return normalized
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    raise SnapshotEncodingError(f"type {type(value).__name__} cannot be canonicalized")


def canonical_json(value: Any) -> str:
    """Deterministic JSON text for value under the v1 rules."""
    return json.dumps(
        _normalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def _canonicalize_v1(fields: Mapping[str, Any]) -> bytes:
    return canonical_json(fields).encode("utf-8")


_CANONICALIZERS: Dict[str, Callable[[Mapping[str, Any]], bytes]] = {
    CANONICAL_VERSION_V1: _canonicalize_v1,
}


def is_known_version(version: str) -> bool:
    return version in _CANONICALIZERS


def canonicalize(fields: Mapping[str, Any], version: str = CURRENT_CANONICAL_VERSION) -> bytes:
    """Canonical bytes of fields under the given version. Raises UnknownCanonicalVersionError."""
    try:
        canonicalizer = _CANONICALIZERS[version]
    except KeyError:
        raise UnknownCanonicalVersionError(f"unknown canonicalization version {version!r}") from None
    return canonicalizer(fields)


def compute_record_hash(
    fields: Mapping[str, Any],
    previous_hash: str,
    version: str = CURRENT_CANONICAL_VERSION,
) -> str:
    """SHA-256 hex digest chaining fields to previous_hash."""
    payload = canonicalize(fields, version) + b"|" + previous_hash.encode("ascii")
    return hashlib.sha256(payload).hexdigest()


def recompute_event_hash(event: AuditEvent, previous_hash: str | None = None) -> str:
    """Recompute event's hash from its stored fields, chained to previous_hash (default: its own)."""
    return compute_record_hash(
        event.hashed_fields(),
        event.previous_hash if previous_hash is None else previous_hash,
        event.canonical_version,
    )
