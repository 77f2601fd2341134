"""
NOAA GHCN-Daily extractor.

Retrieves the GSN archive over anonymous binary-mode FTP and decodes the
fixed-width records it contains. ftplib and the decoder are blocking, so both
run in a worker thread.
"""

import asyncio
import ftplib
import io
from typing import Iterable, Optional

from core.config import settings
from core.exceptions import ArchiveFetchError
from ingestion.base import DateMode, ReportSource
from ingestion.transformers.ghcn_decoder import RecordFilter, decode_archive
from ingestion.transformers.ghcn_normalizer import noaa_report_schema, observations_to_package
from schemas.package import Package
from schemas.report import ReportSchema
import logging

logger = logging.getLogger(__name__)

FTP_ERRORS = (ftplib.Error, OSError, EOFError)


def retrieve_archive(
    host: str,
    path: str,
    user: str = "anonymous",
    password: str = "anonymous@",
    timeout: float = 300.0
) -> io.BytesIO:
    """
    Download one file over FTP in binary mode.

    Raises:
        ArchiveFetchError: On connect, login, transfer-mode or retrieve failure
    """
    context = {"host": host, "path": path}
    ftp = ftplib.FTP(timeout=timeout)

    try:
        try:
            ftp.connect(host)
        except FTP_ERRORS as e:
            raise ArchiveFetchError("Failed to connect to FTP server", {**context, "stage": "connect"}, e)

        try:
            ftp.login(user, password)
        except FTP_ERRORS as e:
            raise ArchiveFetchError("FTP login failed", {**context, "stage": "login"}, e)

        try:
            ftp.voidcmd("TYPE I")
        except FTP_ERRORS as e:
            raise ArchiveFetchError("Failed to set transfer type to binary", {**context, "stage": "transfer_mode"}, e)

        buffer = io.BytesIO()
        try:
            ftp.retrbinary(f"RETR {path}", buffer.write)
        except FTP_ERRORS as e:
            raise ArchiveFetchError("Failed to retrieve archive", {**context, "stage": "retrieve"}, e)

    finally:
        if ftp.sock is not None:
            try:
                ftp.quit()
            except FTP_ERRORS:
                ftp.close()

    logger.info(f"Retrieved {buffer.tell()} bytes from ftp://{host}{path}")
    buffer.seek(0)
    return buffer


class GHCNExtractor(ReportSource):
    """
    Fetch GHCN-Daily observations into a Package with one section per element.

    The archive carries the full history. Records outside the date window
    are dropped while decoding, so only what will be persisted is kept.
    """

    def __init__(
        self,
        report_schema: Optional[ReportSchema] = None,
        elements: Optional[Iterable[str]] = None,
        station_prefixes: Optional[Iterable[str]] = None,
        host: Optional[str] = None,
        path: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        super().__init__(source_id="noaa", report_schema=report_schema or noaa_report_schema())
        self.record_filter = RecordFilter.build(elements=elements, station_prefixes=station_prefixes)
        self.host = host or settings.NOAA_FTP_HOST
        self.path = path or settings.NOAA_FTP_PATH
        self.user = user or settings.NOAA_FTP_USER
        self.password = password or settings.NOAA_FTP_PASSWORD
        self.timeout = timeout or settings.NOAA_FTP_TIMEOUT

    def decode_package(self, archive: io.BytesIO, date_mode: DateMode) -> Package:
        """Decode a retrieved archive straight into a Package (blocking)."""
        window = None if date_mode.is_unfiltered else date_mode
        with archive:
            observations = decode_archive(archive, self.record_filter.within(window))
            return observations_to_package(observations, self.report_schema, window)

    async def fetch(self, date_mode: DateMode) -> Package:
        archive = await asyncio.to_thread(
            retrieve_archive, self.host, self.path, self.user, self.password, self.timeout
        )
        package = await asyncio.to_thread(self.decode_package, archive, date_mode)
        logger.info(f"Converted archive into {package.record_count()} records ({date_mode})")
        return package
