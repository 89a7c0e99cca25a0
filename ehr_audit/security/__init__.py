"""Security: RBAC, snapshot encryption. No FastAPI."""

from ehr_audit.security.encryption import EncryptionService
from ehr_audit.security.rbac import Permission, RBACService, Role, parse_role

__all__ = [
    "EncryptionService",
    "Permission",
    "RBACService",
    "Role",
    "parse_role",
]
