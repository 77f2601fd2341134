"""
Sync controller - watermark-driven incremental acquisition.

Each configured source is in one of two states:
- initial: nothing stored yet, the window starts at SYNC_EPOCH
- incremental: the window starts the day after the latest stored report date

The window always ends today. A source whose window would start after today
is current and is skipped without any network call. Sources run strictly one
after another; a failure is logged with its context and the next source runs.
"""

from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import ConfigurationError, ETLException
from ingestion.base import DateMode, ReportSource
from ingestion.loaders.postgres_loader import PostgresLoader
from schemas.package import Package
from schemas.report import ReportSchema
import logging

logger = logging.getLogger(__name__)


def compute_window(watermark: Optional[date], today: date, epoch: date) -> Optional[DateMode]:
    """
    Date window for the next fetch.

    Returns:
        DateMode covering [start, today], or None when the store is current
    """
    start = epoch if watermark is None else watermark + timedelta(days=1)
    if start > today:
        return None
    return DateMode.since(start, until=today)


class SyncController:
    """
    Orchestrates fetch → persist for every configured source.

    Responsibilities:
    - Decide the date window from the stored watermark
    - Probe shared upstream services once per run
    - Keep one source's failure from affecting the others
    - Report a structured result per source
    """

    def __init__(
        self,
        db_session: AsyncSession,
        sources: Optional[Iterable[ReportSource]] = None,
        loader: Optional[PostgresLoader] = None,
        today: Optional[Callable[[], date]] = None,
        epoch: Optional[date] = None,
        create_tables: bool = True
    ):
        self.db = db_session
        self.loader = loader or PostgresLoader(db_session)
        self.sources: Dict[str, ReportSource] = {s.source_id: s for s in sources or []}
        self.today = today or date.today
        self.epoch = epoch or settings.SYNC_EPOCH
        self.create_tables = create_tables
        self._probe_results: Dict[str, bool] = {}

    async def fetch(self, source_id: str, date_mode: DateMode) -> Package:
        """
        Fetch one configured source for a date mode.

        Raises:
            ConfigurationError: If the source id is not configured
            TransportError, FormatError, SchemaViolationError: From the adapter
        """
        source = self.sources.get(source_id)
        if source is None:
            raise ConfigurationError(
                f"Unknown source: {source_id}",
                context={"source_id": source_id, "known_sources": sorted(self.sources)}
            )
        return await source.fetch(date_mode)

    async def persist(self, package: Package, report_schema: ReportSchema) -> int:
        return await self.loader.persist(package, report_schema)

    async def watermark(self, report_schema: ReportSchema) -> Optional[date]:
        return await self.loader.watermark(report_schema)

    async def _is_available(self, source: ReportSource) -> bool:
        if source.probe_key is None:
            return await source.is_available()

        if source.probe_key not in self._probe_results:
            self._probe_results[source.probe_key] = await source.is_available()
        return self._probe_results[source.probe_key]

    async def sync_source(self, source: ReportSource) -> Dict[str, Any]:
        """
        Run one source through the state machine.

        Returns:
            Dictionary with the outcome:
            - source: Source id
            - status: "success", "skipped" or "failed"
            - state: "initial" or "incremental"
            - window_start / window_end: ISO dates of the fetch window
            - records_fetched: Records in the fetched package
            - rows_inserted: Rows newly written
            - reason / error: Why the source was skipped or failed
        """
        schema = source.report_schema
        result: Dict[str, Any] = {
            "source": source.source_id,
            "report": schema.name,
            "status": None,
            "state": None,
            "window_start": None,
            "window_end": None,
            "records_fetched": 0,
            "rows_inserted": 0,
        }

        try:
            if self.create_tables:
                await self.loader.create_tables(schema)

            watermark = await self.watermark(schema)
            today = self.today()
            result["state"] = "initial" if watermark is None else "incremental"

            window = compute_window(watermark, today, self.epoch)
            if window is None:
                logger.info(f"{source.source_id} ({schema.name}) is current as of {watermark}, skipped")
                result.update(status="skipped", reason="current")
                return result

            result["window_start"] = window.minimum.isoformat()
            result["window_end"] = window.end_date().isoformat()

            if not await self._is_available(source):
                logger.warning(f"{source.source_id} ({schema.name}) upstream unavailable, skipped")
                result.update(status="skipped", reason="unavailable")
                return result

            logger.info(f"Syncing {source.source_id} ({schema.name}), {result['state']} window {window}")

            package = await source.fetch(window)
            result["records_fetched"] = package.record_count()

            result["rows_inserted"] = await self.persist(package, schema)
            result["status"] = "success"

            logger.info(
                f"Sync completed for {source.source_id}: "
                f"Fetched={result['records_fetched']}, Inserted={result['rows_inserted']}"
            )

        except ETLException as e:
            logger.error(
                f"Sync failed for {source.source_id}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            result.update(status="failed", error=e.to_dict())

        except Exception as e:
            logger.exception(f"Unexpected error while syncing {source.source_id}")
            error = ETLException(
                "Unexpected error in sync",
                context={"source_id": source.source_id, "report": schema.name},
                original_exception=e
            )
            result.update(status="failed", error=error.to_dict())

        return result

    async def run(self, sources: Optional[Iterable[ReportSource]] = None) -> List[Dict[str, Any]]:
        """Sync every source in order; the probe cache lives for one run."""
        if sources is not None:
            targets = list(sources)
            self.sources.update({s.source_id: s for s in targets})
        else:
            targets = list(self.sources.values())

        self._probe_results = {}
        results = []

        for source in targets:
            results.append(await self.sync_source(source))

        counts = {status: sum(1 for r in results if r["status"] == status) for status in ("success", "skipped", "failed")}
        logger.info(
            f"Sync run completed: {counts['success']} succeeded, "
            f"{counts['skipped']} skipped, {counts['failed']} failed"
        )
        return results
