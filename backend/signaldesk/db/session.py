from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from signaldesk.config.settings import settings
from signaldesk.db.models import Base

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
# Signals are read back after commit, so instances must stay loaded.
SessionFactory = async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; rolls back if the handler fails mid-transaction."""
    async with SessionFactory() as session:
        try:
            yield session
        except SQLAlchemyError:
            await session.rollback()
            raise


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")
