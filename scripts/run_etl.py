"""
Script to run one sync pass for all configured sources, or the scheduler
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, check_connection, engine
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.runner import SyncController
from ingestion.scheduler import SyncScheduler
from ingestion.sources import build_sources

logger = logging.getLogger(__name__)


async def run_sync() -> int:
    """Run the sync controller once; returns the number of failed sources"""
    try:
        sources = build_sources()
    except ETLException as e:
        logger.error(f"Invalid configuration: {e.message}", extra={"error_context": e.to_dict()})
        return 1

    if not sources:
        logger.warning("No data sources configured. Skipping sync.")
        return 0

    try:
        await check_connection()
        async with async_session_maker() as session:
            controller = SyncController(session, sources)
            results = await controller.run()
    except ETLException as e:
        logger.error(f"Sync aborted: {e.message}", extra={"error_context": e.to_dict()})
        return len(sources)
    finally:
        await engine.dispose()

    for result in results:
        logger.info(
            f"{result['source']}: {result['status']} "
            f"(state={result['state']}, window={result['window_start']}..{result['window_end']}, "
            f"fetched={result['records_fetched']}, inserted={result['rows_inserted']})"
        )

    return sum(1 for r in results if r["status"] == "failed")


async def run_forever():
    scheduler = SyncScheduler()
    scheduler.start()
    await scheduler.run_sync_job()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Acquire configured reports into PostgreSQL")
    parser.add_argument("--schedule", action="store_true", help="keep running on the configured interval")
    args = parser.parse_args()

    setup_logging()

    if args.schedule:
        asyncio.run(run_forever())
        return

    failed = asyncio.run(run_sync())
    if failed:
        logger.error(f"{failed} sources failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
