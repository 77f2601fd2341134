"""
Transform GHCN-Daily observations into a package keyed by element
"""

from datetime import date
from typing import Iterable, Optional

from ingestion.base import DateMode
from schemas.noaa import Observation
from schemas.package import Package, Record
from schemas.report import ReportSchema, SectionSchema
import logging

logger = logging.getLogger(__name__)

SUPPORTED_ELEMENTS = ("TMAX", "TMIN", "TAVG", "EVAP")

NOAA_FIELDS = ("measure_flag", "source_flag", "quality_flag", "value")


def noaa_report_schema(elements: Iterable[str] = SUPPORTED_ELEMENTS) -> ReportSchema:
    """Storage layout for GHCN-Daily: one section (table) per element."""
    section = SectionSchema(independent=("report_date", "station_id"), fields=NOAA_FIELDS)
    return ReportSchema(
        name="NOAA",
        description="National Oceanic and Atmospheric Administration Weather Data",
        independent="report_date",
        sections={element: section for element in elements},
    )


def observations_to_package(
    observations: Iterable[Observation],
    report_schema: ReportSchema,
    date_mode: Optional[DateMode] = None
) -> Package:
    """
    Expand observations into one Record per station-day with a value.

    Slots are selected by value presence only; the month length is never
    computed. Flag fields that failed to decode are left out.
    """
    package = Package(name=report_schema.name)
    skipped_elements = set()

    for observation in observations:
        if observation.element not in report_schema.sections:
            if observation.element not in skipped_elements:
                logger.info(f"Skipping unsupported element: {observation.element}")
                skipped_elements.add(observation.element)
            continue

        records = package.section(observation.element)

        for day, slot in observation.present_days():
            try:
                observed_on = date(observation.year, observation.month, day)
            except ValueError:
                logger.warning(
                    f"Value present for nonexistent date {observation.year}-{observation.month:02d}-{day:02d} "
                    f"(station={observation.station_id}, element={observation.element}), skipped"
                )
                continue

            if date_mode is not None and not date_mode.contains(observed_on):
                continue

            record = Record.for_date(observed_on, observation.station_id)
            record.entries["value"] = str(slot.value)
            record.entries["source_flag"] = slot.source_flag

            if "measurement_flag" not in slot.decode_errors:
                record.entries["measure_flag"] = slot.measurement_flag.display_name if slot.measurement_flag else ""
            if "quality_flag" not in slot.decode_errors:
                record.entries["quality_flag"] = slot.quality_flag.display_name if slot.quality_flag else ""

            records.append(record)

    return package
