"""Governance: canonical hashing, chain walking, digest signing, snapshot encoding. No FastAPI, no I/O."""

from ehr_audit.governance.canonical import (
    CURRENT_CANONICAL_VERSION,
    GENESIS_HASH,
    compute_record_hash,
    recompute_event_hash,
)
from ehr_audit.governance.chain_walker import ChainWalker, Divergence
from ehr_audit.governance.digest_signer import DigestAccumulator, DigestSigner
from ehr_audit.governance.snapshots import decode_snapshot, encode_snapshot

__all__ = [
    "CURRENT_CANONICAL_VERSION",
    "ChainWalker",
    "DigestAccumulator",
    "DigestSigner",
    "Divergence",
    "GENESIS_HASH",
    "compute_record_hash",
    "decode_snapshot",
    "encode_snapshot",
    "recompute_event_hash",
]
