import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, check_connection, engine
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.loaders.postgres_loader import PostgresLoader
from ingestion.sources import build_sources

logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")

    try:
        await check_connection()
        async with async_session_maker() as session:
            loader = PostgresLoader(session)
            for source in build_sources():
                logger.info(f"Creating tables for {source.source_id} ({source.source_name})...")
                await loader.create_tables(source.report_schema)
        logger.info("Tables created successfully.")
    except ETLException as e:
        logger.error(f"Table creation failed: {e.message}", extra={"error_context": e.to_dict()})
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
