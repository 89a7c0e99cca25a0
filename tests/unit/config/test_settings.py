"""AppSettings: defaults, key separation, prod guard."""

import pytest
from pydantic import ValidationError

from ehr_audit.config.settings import DEV_DIGEST_KEY, DEV_ENCRYPTION_KEY, AppSettings

REAL_DIGEST_KEY = "prod-digest-key-0123456789abcdef-000000"
REAL_ENCRYPTION_KEY = "prod-encryption-key-0123456789abcdef-00"


def test_defaults_are_fail_closed_sqlite():
    s = AppSettings(_env_file=None)
    assert s.audit_failure_mode == "fail_closed"
    assert s.database_url.startswith("sqlite+aiosqlite")
    assert s.audit_digest_algorithm == "hmac-sha256"
    assert s.redis_url is None


def test_digest_and_encryption_keys_must_differ():
    with pytest.raises(ValidationError):
        AppSettings(_env_file=None, audit_digest_key=REAL_DIGEST_KEY, audit_encryption_key=REAL_DIGEST_KEY)


def test_short_keys_rejected():
    with pytest.raises(ValidationError):
        AppSettings(_env_file=None, audit_digest_key="short")


def test_prod_rejects_development_keys():
    with pytest.raises(ValidationError):
        AppSettings(_env_file=None, environment="prod", audit_encryption_key=REAL_ENCRYPTION_KEY)
    with pytest.raises(ValidationError):
        AppSettings(_env_file=None, environment="prod", audit_digest_key=REAL_DIGEST_KEY)


def test_prod_accepts_real_keys():
    s = AppSettings(
        _env_file=None,
        environment="prod",
        audit_digest_key=REAL_DIGEST_KEY,
        audit_encryption_key=REAL_ENCRYPTION_KEY,
    )
    assert s.audit_digest_key not in (DEV_DIGEST_KEY, DEV_ENCRYPTION_KEY)


def test_failure_mode_from_environment(monkeypatch):
    monkeypatch.setenv("AUDIT_FAILURE_MODE", "fail_open")
    assert AppSettings(_env_file=None).audit_failure_mode == "fail_open"
    monkeypatch.setenv("AUDIT_FAILURE_MODE", "ignore")
    with pytest.raises(ValidationError):
        AppSettings(_env_file=None)
