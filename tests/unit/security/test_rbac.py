"""Security tests: RBAC permission matrix for the audit surface fully tested."""

import pytest

from ehr_audit.security.exceptions import AuthorizationError
from ehr_audit.security.rbac import Permission, RBACService, Role, parse_role


@pytest.fixture
def rbac():
    return RBACService()


# Permission matrix:
# Role          View  Verify  Export  Digest
# ADMIN         ✓     ✓       ✓       ✓
# SYSTEM_ADMIN  ✓     ✓       ✓       ✓
# AUDITOR       ✓     ✓       ✓       ✗
# CLINICIAN     ✗     ✗       ✗       ✗


@pytest.mark.parametrize("role", [Role.ADMIN, Role.SYSTEM_ADMIN])
def test_admin_roles_have_all_permissions(rbac, role):
    for permission in Permission:
        rbac.check_permission(role, permission)


def test_auditor_view_verify_export_ok_digest_denied(rbac):
    rbac.check_permission(Role.AUDITOR, Permission.VIEW)
    rbac.check_permission(Role.AUDITOR, Permission.VERIFY)
    rbac.check_permission(Role.AUDITOR, Permission.EXPORT)
    with pytest.raises(AuthorizationError):
        rbac.check_permission(Role.AUDITOR, Permission.GENERATE_DIGEST)


def test_clinician_has_no_audit_permissions(rbac):
    for permission in Permission:
        with pytest.raises(AuthorizationError):
            rbac.check_permission(Role.CLINICIAN, permission)


def test_parse_role_is_case_insensitive():
    assert parse_role("system_admin") is Role.SYSTEM_ADMIN
    assert parse_role(" Auditor ") is Role.AUDITOR


@pytest.mark.parametrize("value", [None, "", "nurse"])
def test_parse_role_rejects_missing_or_unknown(value):
    with pytest.raises(AuthorizationError):
        parse_role(value)
