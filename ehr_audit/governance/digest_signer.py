"""Keyed digests over ordered record hashes. The key never touches the audit_events table."""

import hashlib
import hmac
from typing import Callable, Dict, Iterable

from ehr_audit.domain.exceptions import UnsupportedAlgorithmError

HMAC_SHA256 = "hmac-sha256"
HMAC_SHA512 = "hmac-sha512"

DIGEST_ALGORITHMS: Dict[str, Callable] = {
    HMAC_SHA256: hashlib.sha256,
    HMAC_SHA512: hashlib.sha512,
}

_SEPARATOR = b"|"


class DigestAccumulator:
    """Incremental HMAC over record hashes joined by '|'. Equivalent to signing the joined string."""

    def __init__(self, key: bytes, algorithm: str) -> None:
        self.algorithm = algorithm
        self._mac = hmac.new(key, digestmod=DIGEST_ALGORITHMS[algorithm])
        self.count = 0
        self.first_record_hash: str | None = None
        self.last_record_hash: str | None = None

    def update(self, record_hash: str) -> None:
        if self.count:
            self._mac.update(_SEPARATOR)
        self._mac.update(record_hash.encode("ascii"))
        if self.first_record_hash is None:
            self.first_record_hash = record_hash
        self.last_record_hash = record_hash
        self.count += 1

    def hexdigest(self) -> str:
        return self._mac.hexdigest()


class DigestSigner:
    """Holds the digest secret. Distinct from the snapshot encryption key."""

    def __init__(self, key: str) -> None:
        if not key:
            raise ValueError("digest key must not be empty")
        self._key = key.encode("utf-8")

    @staticmethod
    def resolve(algorithm: str) -> str:
        tag = algorithm.strip().lower()
        if tag not in DIGEST_ALGORITHMS:
            raise UnsupportedAlgorithmError(
                f"unsupported digest algorithm {algorithm!r}; expected one of {sorted(DIGEST_ALGORITHMS)}"
            )
        return tag

    def begin(self, algorithm: str) -> DigestAccumulator:
        return DigestAccumulator(self._key, self.resolve(algorithm))

    def sign(self, record_hashes: Iterable[str], algorithm: str) -> str:
        accumulator = self.begin(algorithm)
        for record_hash in record_hashes:
            accumulator.update(record_hash)
        return accumulator.hexdigest()
