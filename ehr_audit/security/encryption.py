"""AES-based sealing of audit change snapshots. Key is injected; fail if key missing. No global state."""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ehr_audit.security.exceptions import EncryptionError

# Fernet uses AES-128-CBC + HMAC-SHA256; we derive its key from the raw secret.
DEFAULT_SALT = b"ehr_audit_snapshot_encryption_v1"


def _derive_key(secret: str, salt: bytes = DEFAULT_SALT) -> bytes:
    """Derive a 32-byte key for Fernet from a variable-length secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class EncryptionService:
    """
    Seals old/new value snapshots before they are hashed and stored; they may carry PHI.
    The sealed text is the stored, hashed form; unsealing is only for display.
    """

    def __init__(self, key: Optional[str]) -> None:
        if not key or not key.strip():
            raise EncryptionError(
                "Encryption key is required. Set AUDIT_ENCRYPTION_KEY in environment."
            )
        self._fernet = Fernet(_derive_key(key.strip()))

    def encrypt(self, data: str) -> str:
        """Encrypt string; return base64-encoded ciphertext."""
        try:
            encrypted = self._fernet.encrypt(data.encode("utf-8"))
            return base64.urlsafe_b64encode(encrypted).decode("ascii")
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {e}") from e

    def decrypt(self, data: str) -> str:
        """Decrypt base64-encoded ciphertext. Raises EncryptionError if wrong key/corrupt."""
        try:
            raw = base64.urlsafe_b64decode(data.encode("ascii"))
            decrypted = self._fernet.decrypt(raw)
            return decrypted.decode("utf-8")
        except InvalidToken as e:
            raise EncryptionError("Decryption failed: invalid or wrong key") from e
        except Exception as e:
            raise EncryptionError(f"Decryption failed: {e}") from e
