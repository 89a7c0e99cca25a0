# scripts/generate_daily_digest.py
"""
Cron entry point: digest the previous UTC day of audit records.

    python scripts/generate_daily_digest.py              # yesterday
    python scripts/generate_daily_digest.py 2026-10-17   # a given day

Days without records are skipped (no empty digest is stored). Exit code 1 on storage failure.
"""
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone

from ehr_audit.api.dependencies import get_audit_repository, get_digest_signer, get_metrics
from ehr_audit.application.digest_generator import DigestGenerator
from ehr_audit.application.exceptions import EmptyPeriodError, PersistenceError
from ehr_audit.config.logging import configure_logging
from ehr_audit.config.settings import get_settings
from ehr_audit.infrastructure.database.session import engine

GENERATED_BY = "system:daily-digest"

logger = logging.getLogger("generate_daily_digest")


def day_window(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(day, time.max, tzinfo=timezone.utc)
    return start, end


async def generate_for(day: date) -> int:
    settings = get_settings()
    generator = DigestGenerator(
        get_audit_repository(),
        get_digest_signer(),
        metrics=get_metrics(),
        default_algorithm=settings.audit_digest_algorithm,
        page_size=settings.audit_verify_page_size,
    )
    period_start, period_end = day_window(day)
    try:
        digest = await generator.generate(period_start, period_end, generated_by=GENERATED_BY)
    except EmptyPeriodError:
        logger.info("daily_digest_skipped", extra={"day": day.isoformat()})
        return 0
    except PersistenceError as e:
        logger.error("daily_digest_failed", extra={"day": day.isoformat(), "error": e.message})
        return 1
    finally:
        await engine.dispose()
    logger.info(
        "daily_digest_generated",
        extra={"day": day.isoformat(), "digest_id": digest.id, "record_count": digest.record_count},
    )
    return 0


def main(argv: list[str]) -> int:
    configure_logging(get_settings().log_level)
    if len(argv) > 1:
        day = date.fromisoformat(argv[1])
    else:
        day = datetime.now(timezone.utc).date() - timedelta(days=1)
    return asyncio.run(generate_for(day))


if __name__ == "__main__":
    sys.exit(main(sys.argv))
