"""
Legacy market news bulletin extractor.

Bulletin releases are located through the ESMIS release index, then each
release's text document is downloaded and handed to the report's parser.
Every document parsed in one fetch is merged into a single Package.
"""

from datetime import date
from typing import List, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from core.config import settings
from core.exceptions import ConfigurationError, FormatError
from ingestion.base import DateMode, ReportSource
from ingestion.extractors.http_utils import build_timeout, http_get
from ingestion.transformers.bulletin_parser import get_parser
from schemas.package import Package
from schemas.report import ReportSchema
import logging

logger = logging.getLogger(__name__)


class Release(BaseModel):
    """One entry of the release index; only the fields used here are declared."""

    model_config = ConfigDict(extra="ignore")

    id: str
    files: List[str] = []
    release_datetime: Optional[str] = None


RELEASE_LIST = TypeAdapter(List[Release])


def pick_document(release: Release) -> Optional[str]:
    """Prefer the plain-text rendition of a release, else its first file."""
    for url in release.files:
        if url.lower().endswith(".txt"):
            return url
    return release.files[0] if release.files else None


class BulletinExtractor(ReportSource):
    """
    Fetch one bulletin report for a date window.

    Attributes:
        identifier: Release index identifier of the report
        api_root: Release index API root
        token: Bearer token for the release index
    """

    def __init__(
        self,
        report_id: str,
        report_schema: ReportSchema,
        api_root: Optional[str] = None,
        token: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        user_agent: Optional[str] = None
    ):
        super().__init__(source_id=report_id, report_schema=report_schema)
        self.identifier = report_schema.identifier or report_id
        self.api_root = api_root or settings.ESMIS_API_ROOT
        self.token = token if token is not None else settings.ESMIS_TOKEN
        self.connect_timeout = connect_timeout or settings.HTTP_CONNECT_TIMEOUT
        self.read_timeout = read_timeout or settings.HTTP_READ_TIMEOUT
        self.user_agent = user_agent or settings.USER_AGENT
        self.parser = get_parser(report_schema.name)

    def build_index_url(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> str:
        """
        Raises:
            ConfigurationError: If only one end of the window is given
        """
        url = f"{self.api_root}/release/findByIdentifier/{self.identifier}"

        if (start_date is None) != (end_date is None):
            raise ConfigurationError(
                "start_date and end_date must be specified together, or not at all",
                context={"identifier": self.identifier, "start_date": start_date, "end_date": end_date}
            )
        if start_date is None:
            return url

        return f"{url}?start_date={start_date.isoformat()}&end_date={end_date.isoformat()}"

    def _index_headers(self) -> Optional[dict]:
        if not self.token:
            return None
        return {"Authorization": f"Bearer {self.token}"}

    async def find_documents(self, client: httpx.AsyncClient, date_mode: DateMode) -> List[Tuple[str, str]]:
        """Query the release index and return (release id, document URL) per release."""
        if date_mode.is_unfiltered:
            url = self.build_index_url()
        elif date_mode.exact is not None:
            url = self.build_index_url(date_mode.exact, date_mode.exact)
        else:
            url = self.build_index_url(date_mode.minimum, date_mode.end_date())

        response = await http_get(client, url, self.source_id, service="release index", headers=self._index_headers())

        try:
            releases = RELEASE_LIST.validate_python(response.json())
        except (ValueError, ValidationError) as e:
            raise FormatError(
                "Response from the release index is not valid JSON, or its structure has changed significantly",
                context={"url": url, "response_body": response.text[:500]},
                original_exception=e
            )

        documents = []
        for release in releases:
            document = pick_document(release)
            if document is None:
                logger.warning(f"Release {release.id} of {self.identifier} lists no files, skipped")
                continue
            documents.append((release.id, document))

        logger.info(f"Release index lists {len(documents)} documents for {self.identifier} ({date_mode})")
        return documents

    async def fetch(self, date_mode: DateMode) -> Package:
        """
        Fetch and parse every release document in the window.

        A document that does not parse is logged and skipped; the other
        documents of the window are still merged.

        Raises:
            TransportError: Release index or document download failed
            FormatError: Invalid release index
        """
        package = Package(name=self.report_schema.name)
        skipped = 0

        async with httpx.AsyncClient(
            timeout=build_timeout(self.connect_timeout, self.read_timeout),
            headers={"User-Agent": self.user_agent},
            follow_redirects=True
        ) as client:
            documents = await self.find_documents(client, date_mode)

            for release_id, url in documents:
                response = await http_get(client, url, self.source_id, service="bulletin host")

                try:
                    parsed = self.parser(response.text)
                except FormatError as e:
                    e.context.update({"url": url, "release_id": release_id, "source_id": self.source_id})
                    logger.warning(
                        f"Skipping release {release_id} of {self.source_id}: {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                    skipped += 1
                    continue

                package.merge(parsed)

        logger.info(
            f"Fetched {package.record_count()} records for {self.source_id} from "
            f"{len(documents) - skipped} of {len(documents)} documents"
        )
        return package
