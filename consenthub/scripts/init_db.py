"""Database initialization script.

Creates all tables from the ORM metadata. Use Alembic (`alembic upgrade
head`) for databases that must keep a migration history; this script is
for throwaway development databases.

Usage:
    python -m consenthub.scripts.init_db
"""

from __future__ import annotations

import asyncio

import structlog

log = structlog.get_logger(__name__)


async def init_db() -> None:
    """Create all tables."""
    import consenthub.models  # noqa: F401 - registers all models
    from consenthub.config import get_settings
    from consenthub.database import Base, close_db, get_engine
    from consenthub.database import init_db as _init_engine

    settings = get_settings()
    log.info("init_db.starting", db_url=settings.database_url.split("@")[-1])

    _init_engine(settings)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        log.info("init_db.tables_created", tables=len(Base.metadata.tables))

    await close_db()
    log.info("init_db.complete")


if __name__ == "__main__":
    asyncio.run(init_db())
