# ehr_audit/config/settings.py

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_DIGEST_KEY = "dev-audit-digest-key-change-me-0123456789"
DEV_ENCRYPTION_KEY = "dev-audit-encryption-key-change-me-0123456"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "ehr-audit-ledger"
    environment: Literal["dev", "test", "prod"] = "dev"
    debug: bool = False
    version: str = "0.1.0"

    # --- Database ---
    database_url: str = "sqlite+aiosqlite:///./audit.db"

    # --- Redis (optional cross-node chain lock) ---
    redis_url: Optional[str] = None

    # --- Audit chain ---
    audit_digest_key: str = Field(DEV_DIGEST_KEY, min_length=32)
    audit_encryption_key: str = Field(DEV_ENCRYPTION_KEY, min_length=32)
    audit_digest_algorithm: str = "hmac-sha256"
    audit_failure_mode: Literal["fail_closed", "fail_open"] = "fail_closed"
    audit_append_max_attempts: int = Field(5, ge=1)
    audit_append_retry_backoff_ms: int = Field(20, ge=0)
    audit_chain_lock_ttl: int = Field(10, ge=1)
    audit_chain_lock_wait_seconds: float = Field(5.0, gt=0)
    audit_verify_page_size: int = Field(500, ge=1, le=10000)

    # --- Observability ---
    enable_metrics: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @model_validator(mode="after")
    def keys_must_be_distinct_and_real_in_prod(self) -> "AppSettings":
        # The digest key attests the chain independently; it must never double as the snapshot key.
        if self.audit_digest_key == self.audit_encryption_key:
            raise ValueError("audit_digest_key and audit_encryption_key must differ")
        if self.environment == "prod" and (
            self.audit_digest_key == DEV_DIGEST_KEY
            or self.audit_encryption_key == DEV_ENCRYPTION_KEY
        ):
            raise ValueError("development audit keys must not be used in prod")
        return self


@lru_cache
def get_settings() -> AppSettings:
    return AppSettings()


# Singleton for direct import (e.g. in infrastructure clients)
settings = get_settings()
