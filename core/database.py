"""
Async engine and session factory for the report store
"""

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
from core.exceptions import PersistenceError
import logging

logger = logging.getLogger(__name__)

# A sync pass holds a single connection; sources never share the session concurrently
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


async def check_connection(target: AsyncEngine = engine) -> None:
    """
    Fail fast when the store is unreachable, before any upstream request.

    Raises:
        PersistenceError: If a trivial query cannot be run
    """
    try:
        async with target.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        raise PersistenceError(
            "Database is unreachable",
            context={"url": target.url.render_as_string(hide_password=True)},
            original_exception=e
        )
    logger.debug("Database connection verified")
