"""
Assemble the configured report sources from settings and registries
"""

import logging
from typing import Dict, List, Optional

from core.config import Settings, settings
from core.exceptions import ConfigurationError
from ingestion.base import ReportSource
from ingestion.extractors.bulletin_extractor import BulletinExtractor
from ingestion.extractors.datamart_extractor import DatamartExtractor
from ingestion.extractors.ghcn_extractor import GHCNExtractor
from ingestion.transformers.ghcn_normalizer import SUPPORTED_ELEMENTS, noaa_report_schema
from schemas.report import ReportSchema, load_registry

logger = logging.getLogger(__name__)


def build_sources(
    config: Settings = settings,
    datamart_registry: Optional[Dict[str, ReportSchema]] = None,
    bulletin_registry: Optional[Dict[str, ReportSchema]] = None
) -> List[ReportSource]:
    """
    Build one source per datamart report, one per bulletin and the NOAA source.

    Registries are read from the configured paths unless passed in.
    ENABLED_SOURCES, when set, restricts the result to those source ids in
    configuration order.

    Raises:
        ConfigurationError: For unreadable registries, unsupported NOAA
            elements or unknown ids in ENABLED_SOURCES
    """
    if datamart_registry is None:
        datamart_registry = load_registry(config.DATAMART_REGISTRY_PATH)
    if bulletin_registry is None:
        bulletin_registry = load_registry(config.BULLETIN_REGISTRY_PATH)

    sources: List[ReportSource] = []

    for report_id, report_schema in datamart_registry.items():
        sources.append(DatamartExtractor(
            report_id,
            report_schema,
            base_url=config.DATAMART_BASE_URL,
            connect_timeout=config.HTTP_CONNECT_TIMEOUT,
            read_timeout=config.HTTP_READ_TIMEOUT,
            user_agent=config.USER_AGENT
        ))

    if bulletin_registry and not config.ESMIS_TOKEN:
        logger.warning("ESMIS_TOKEN is not set, release index requests will be unauthenticated")

    for report_id, report_schema in bulletin_registry.items():
        sources.append(BulletinExtractor(
            report_id,
            report_schema,
            api_root=config.ESMIS_API_ROOT,
            token=config.ESMIS_TOKEN,
            connect_timeout=config.HTTP_CONNECT_TIMEOUT,
            read_timeout=config.HTTP_READ_TIMEOUT,
            user_agent=config.USER_AGENT
        ))

    elements = list(config.NOAA_ELEMENTS or SUPPORTED_ELEMENTS)
    unsupported = [e for e in elements if e not in SUPPORTED_ELEMENTS]
    if unsupported:
        raise ConfigurationError(
            "Unsupported NOAA elements configured",
            context={"unsupported": unsupported, "supported": list(SUPPORTED_ELEMENTS)}
        )

    sources.append(GHCNExtractor(
        report_schema=noaa_report_schema(elements),
        elements=elements,
        station_prefixes=config.NOAA_STATION_PREFIXES,
        host=config.NOAA_FTP_HOST,
        path=config.NOAA_FTP_PATH,
        user=config.NOAA_FTP_USER,
        password=config.NOAA_FTP_PASSWORD,
        timeout=config.NOAA_FTP_TIMEOUT
    ))

    if config.ENABLED_SOURCES is None:
        return sources

    by_id = {source.source_id: source for source in sources}
    unknown = [source_id for source_id in config.ENABLED_SOURCES if source_id not in by_id]
    if unknown:
        raise ConfigurationError(
            "ENABLED_SOURCES names unknown sources",
            context={"unknown": unknown, "known": sorted(by_id)}
        )

    return [by_id[source_id] for source_id in config.ENABLED_SOURCES]
