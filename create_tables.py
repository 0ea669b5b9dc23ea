"""
create_tables.py
----------------
One-shot script to create all database tables.
Use this for quick setup. For production migrations, use Alembic instead.

Usage:
    python create_tables.py
"""

import asyncio

from sqlalchemy.ext.asyncio import create_async_engine

from agency_portal.core.config import settings
from agency_portal.core.logging import configure_logging, get_logger
from agency_portal.models import Base  # Imports all models so metadata is populated

logger = get_logger(__name__)


async def create_all_tables(database_url: str = settings.DATABASE_URL) -> list[str]:
    engine = create_async_engine(database_url, echo=settings.DEBUG)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    tables = sorted(Base.metadata.tables)
    logger.info("All tables created", tables=len(tables))
    return tables


if __name__ == "__main__":
    configure_logging()
    asyncio.run(create_all_tables())
