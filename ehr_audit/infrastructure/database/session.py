# ehr_audit/infrastructure/database/session.py

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import declarative_base
from ehr_audit.config.settings import get_settings

Base = declarative_base()


def _engine_options(database_url: str) -> Dict[str, Any]:
    # SQLite (dev/tests) has no server-side pool to size.
    if database_url.startswith("sqlite"):
        return {"echo": False}
    return {
        "echo": False,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


def build_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, **_engine_options(database_url))


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


DATABASE_URL = get_settings().database_url

engine = build_engine(DATABASE_URL)

AsyncSessionLocal = build_session_factory(engine)


async def create_schema(bind: AsyncEngine = engine) -> None:
    """Create audit tables (and, on Postgres, the append-only rules)."""
    # Registers the mapped tables on Base.metadata.
    from ehr_audit.infrastructure.database import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session
