"""Role-based access control for the audit surface. No FastAPI."""

from enum import Enum
from typing import Optional

from ehr_audit.security.exceptions import AuthorizationError


class Role(Enum):
    ADMIN = "ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    AUDITOR = "AUDITOR"
    CLINICIAN = "CLINICIAN"


class Permission(str, Enum):
    VIEW = "view_audit"
    VERIFY = "verify_integrity"
    EXPORT = "export_audit"
    GENERATE_DIGEST = "generate_digest"


# Permission matrix:
# Role          View  Verify  Export  Digest
# ADMIN         ✓     ✓       ✓       ✓
# SYSTEM_ADMIN  ✓     ✓       ✓       ✓
# AUDITOR       ✓     ✓       ✓       ✗
# CLINICIAN     ✗     ✗       ✗       ✗

_ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ADMIN: frozenset(Permission),
    Role.SYSTEM_ADMIN: frozenset(Permission),
    Role.AUDITOR: frozenset({Permission.VIEW, Permission.VERIFY, Permission.EXPORT}),
    Role.CLINICIAN: frozenset(),
}


def parse_role(value: Optional[str]) -> Role:
    """Map a gateway-supplied role string to Role. Unknown or missing roles are not authorized."""
    if not value:
        raise AuthorizationError("No role supplied for audit access")
    try:
        return Role(value.strip().upper())
    except ValueError:
        raise AuthorizationError(f"Unknown role '{value}'") from None


class RBACService:
    """Check permission for role and action. Raise AuthorizationError if invalid."""

    def check_permission(self, role: Role, permission: Permission) -> None:
        """Raises AuthorizationError if role does not have the permission."""
        if permission not in _ROLE_PERMISSIONS.get(role, frozenset()):
            raise AuthorizationError(
                f"Role {role.value} does not have permission for action '{permission.value}'"
            )
