"""
USDA datamart REST report extractor.

The datamart service is slow and not very reliable, so bulk queries run
under long configurable timeouts. Before spending those, a quick liveness
probe checks the service is answering at all.

Errors:
- Any transport failure or non-success status aborts the whole report
  (no partial-section credit)
- Invalid JSON or envelope is a FormatError
- Row-level defects are handled by DatamartNormalizer
"""

from datetime import date
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from core.config import settings
from core.exceptions import ETLException, FormatError
from ingestion.base import DateMode, ReportSource
from ingestion.extractors.http_utils import build_timeout, http_get
from ingestion.transformers.datamart_normalizer import DatamartNormalizer
from schemas.datamart import DatamartResponse
from schemas.package import Package
from schemas.report import ReportSchema
import logging

logger = logging.getLogger(__name__)

DATAMART_DATE_FORMAT = "%m/%d/%Y"

# The fastest query known against the service
PROBE_REPORT = "2451"
PROBE_DATE = date(2020, 1, 1)
PROBE_TIMEOUT = 3.0


def _parse_envelope(response: httpx.Response, url: str) -> DatamartResponse:
    try:
        return DatamartResponse.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise FormatError(
            "Response from datamart is not valid JSON, or its structure has changed significantly",
            context={"url": url, "response_body": response.text[:500]},
            original_exception=e
        )


async def check_datamart(
    base_url: Optional[str] = None,
    timeout: float = PROBE_TIMEOUT,
    user_agent: Optional[str] = None
) -> None:
    """
    Run the quick liveness query against datamart.

    Raises:
        TransportError: If the service does not answer in time
        FormatError: If the answer is not a datamart envelope
    """
    base_url = base_url or settings.DATAMART_BASE_URL
    url = f"{base_url}/{PROBE_REPORT}/?q=report_date={PROBE_DATE.strftime(DATAMART_DATE_FORMAT)}"

    async with httpx.AsyncClient(
        timeout=build_timeout(timeout, timeout),
        headers={"User-Agent": user_agent or settings.USER_AGENT}
    ) as client:
        response = await http_get(client, url, PROBE_REPORT)
        _parse_envelope(response, url)


class DatamartExtractor(ReportSource):
    """
    Fetch one datamart report, section by section, into a Package.

    Attributes:
        base_url: Datamart reports endpoint
        connect_timeout: Connect timeout in seconds
        read_timeout: Read timeout in seconds
    """

    probe_key = "datamart"

    def __init__(
        self,
        report_id: str,
        report_schema: ReportSchema,
        base_url: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        user_agent: Optional[str] = None
    ):
        super().__init__(source_id=report_id, report_schema=report_schema)
        self.base_url = base_url or settings.DATAMART_BASE_URL
        self.connect_timeout = connect_timeout or settings.HTTP_CONNECT_TIMEOUT
        self.read_timeout = read_timeout or settings.HTTP_READ_TIMEOUT
        self.user_agent = user_agent or settings.USER_AGENT
        self.normalizer = DatamartNormalizer(report_id, report_schema)

    def build_url(self, section_name: str, date_mode: DateMode) -> str:
        """Build the section query URL for the date mode."""
        url = f"{self.base_url}/{self.source_id}/{quote(section_name)}"
        independent = self.report_schema.independent

        if date_mode.exact is not None:
            return f"{url}?q={independent}={date_mode.exact.strftime(DATAMART_DATE_FORMAT)}"

        if date_mode.minimum is not None:
            return (
                f"{url}?q={independent}="
                f"{date_mode.minimum.strftime(DATAMART_DATE_FORMAT)}:"
                f"{date_mode.end_date().strftime(DATAMART_DATE_FORMAT)}"
            )

        return url

    async def fetch(self, date_mode: DateMode) -> Package:
        """
        Fetch every declared section of the report.

        Raises:
            TransportError: For any transport failure; no section is kept
            FormatError: For invalid envelopes or unparseable dates
            SchemaViolationError: For declared columns absent upstream
        """
        package = Package(name=self.report_schema.name)

        async with httpx.AsyncClient(
            timeout=build_timeout(self.connect_timeout, self.read_timeout),
            headers={"User-Agent": self.user_agent}
        ) as client:
            for section_name in self.report_schema.sections:
                url = self.build_url(section_name, date_mode)
                logger.info(f"Fetching {self.source_id}/{section_name} ({date_mode})")

                response = await http_get(client, url, self.source_id)
                envelope = _parse_envelope(response, url)

                if envelope.row_cap_reached():
                    logger.warning(
                        f"Datamart response for {self.source_id}/{section_name} is at the row "
                        f"limit, there may be additional data available."
                    )

                if envelope.message:
                    logger.info(f"Message from datamart: {envelope.message}")

                if envelope.results is None:
                    raise FormatError(
                        "No results found in datamart response",
                        context={"url": url, "source_id": self.source_id, "section": section_name}
                    )

                records = self.normalizer.normalize_rows(section_name, envelope.results)
                package.section(section_name).extend(records)
                logger.debug(f"{self.source_id}/{section_name}: {len(records)} records")

        logger.info(
            f"Fetched {package.record_count()} records for {self.source_id} "
            f"({self.report_schema.name})"
        )
        return package

    async def is_available(self) -> bool:
        try:
            await check_datamart(self.base_url, user_agent=self.user_agent)
        except ETLException as e:
            logger.warning(
                f"Datamart liveness probe failed, skipping bulk fetch: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return False
        return True
