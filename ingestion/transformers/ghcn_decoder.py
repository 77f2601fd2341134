"""
Decode GHCN-Daily fixed-width records.

Line layout (269 characters):
    [0, 11)   station id
    [11, 15)  year
    [15, 17)  month
    [17, 21)  element code
    then 31 groups of 8 characters starting at offset 21:
        5 value, 1 measurement flag, 1 quality flag, 1 source flag

A line that cannot be split into these fields is skipped with a warning; an
unknown flag code only invalidates that flag of that day.
"""

import gzip
import re
import tarfile
import zlib
from dataclasses import dataclass, replace
from typing import BinaryIO, Iterable, Iterator, Optional, Tuple

from core.exceptions import FormatError
from ingestion.base import DateMode
from schemas.noaa import (
    DAYS_PER_RECORD,
    MISSING_VALUE,
    DailyObservation,
    MeasurementFlag,
    Observation,
    QualityFlag,
)
import logging

logger = logging.getLogger(__name__)

RECORD_WIDTH = 269
GROUP_OFFSET = 21
GROUP_WIDTH = 8

VALUE_PATTERN = re.compile(r"^ *-?\d+$")
YEAR_PATTERN = re.compile(r"^\d{4}$")
MONTH_PATTERN = re.compile(r"^\d{2}$")


@dataclass(frozen=True)
class RecordFilter:
    """
    Element, station-prefix and month-window allow-lists.

    Every predicate must hold for a record to be kept; a predicate left as
    None always holds. Station prefixes (country codes) compare
    case-insensitively. The month window is inclusive (year, month) bounds.
    """

    elements: Optional[frozenset] = None
    station_prefixes: Optional[tuple] = None
    first_month: Optional[Tuple[int, int]] = None
    last_month: Optional[Tuple[int, int]] = None

    @classmethod
    def build(cls, elements: Optional[Iterable[str]] = None,
              station_prefixes: Optional[Iterable[str]] = None) -> "RecordFilter":
        return cls(
            elements=frozenset(elements) if elements is not None else None,
            station_prefixes=tuple(p.lower() for p in station_prefixes) if station_prefixes is not None else None,
        )

    def matches(self, station_id: str, element: str) -> bool:
        if self.elements is not None and element not in self.elements:
            return False
        if self.station_prefixes is not None:
            station = station_id.lower()
            if not any(station.startswith(prefix) for prefix in self.station_prefixes):
                return False
        return True

    def within(self, date_mode: Optional[DateMode]) -> "RecordFilter":
        """Same filter, restricted to the months a date mode touches."""
        if date_mode is None or date_mode.is_unfiltered:
            return self
        first = date_mode.exact or date_mode.minimum
        last = date_mode.end_date()
        return replace(self, first_month=(first.year, first.month), last_month=(last.year, last.month))

    def covers_month(self, year: int, month: int) -> bool:
        if self.first_month is not None and (year, month) < self.first_month:
            return False
        if self.last_month is not None and (year, month) > self.last_month:
            return False
        return True


ALL_RECORDS = RecordFilter()


def decode_value(text: str) -> Optional[int]:
    """Decode the 5-character value; the -9999 sentinel means absent."""
    if not VALUE_PATTERN.match(text):
        raise FormatError("Value field is not a signed integer", context={"value": text})
    value = int(text)
    return None if value == MISSING_VALUE else value


def decode_group(chunk: str, context: Optional[dict] = None) -> DailyObservation:
    """
    Decode one 8-character day group.

    Raises:
        FormatError: If the value is not an integer (structural failure)
    """
    value = decode_value(chunk[0:5])
    errors = []

    try:
        measurement_flag = MeasurementFlag.decode(chunk[5])
    except FormatError as e:
        measurement_flag = None
        errors.append("measurement_flag")
        logger.warning(f"{e.message} ({_describe(context)})")

    try:
        quality_flag = QualityFlag.decode(chunk[6])
    except FormatError as e:
        quality_flag = None
        errors.append("quality_flag")
        logger.warning(f"{e.message} ({_describe(context)})")

    return DailyObservation(
        value=value,
        measurement_flag=measurement_flag,
        quality_flag=quality_flag,
        source_flag=chunk[7],
        decode_errors=tuple(errors),
    )


def decode_line(line: str, record_filter: RecordFilter = ALL_RECORDS,
                context: Optional[dict] = None) -> Optional[Observation]:
    """
    Decode one positional line.

    Returns:
        The Observation, or None when the record filter rejects it

    Raises:
        FormatError: If the line cannot be split into the expected fields
    """
    line = line.rstrip("\r\n")
    if len(line) > RECORD_WIDTH:
        raise FormatError(
            f"Line is {len(line)} characters, expected {RECORD_WIDTH}",
            context=context
        )
    # Trailing blanks are sometimes trimmed in transit
    line = line.ljust(RECORD_WIDTH)

    station_id = line[0:11].strip()
    year = line[11:15]
    month = line[15:17]
    element = line[17:21].strip()

    if not station_id or not element:
        raise FormatError("Station id or element code is blank", context=context)
    if not YEAR_PATTERN.match(year) or not MONTH_PATTERN.match(month) or not 1 <= int(month) <= 12:
        raise FormatError(
            "Year or month field is invalid",
            context={**(context or {}), "year": year, "month": month}
        )

    if not record_filter.matches(station_id, element):
        return None
    if not record_filter.covers_month(int(year), int(month)):
        return None

    group_context = {**(context or {}), "station_id": station_id, "element": element}
    days = []
    for index in range(DAYS_PER_RECORD):
        start = GROUP_OFFSET + index * GROUP_WIDTH
        try:
            days.append(decode_group(line[start:start + GROUP_WIDTH], {**group_context, "day": index + 1}))
        except FormatError as e:
            raise FormatError(
                f"Day {index + 1}: {e.message}",
                context={**group_context, **e.context}
            )

    return Observation(
        station_id=station_id,
        year=int(year),
        month=int(month),
        element=element,
        days=tuple(days),
    )


def decode_lines(lines: Iterable, record_filter: RecordFilter = ALL_RECORDS,
                 member: str = "<text>") -> Iterator[Observation]:
    """Decode lines of one archive member lazily, skipping undecodable lines."""
    for line_number, raw in enumerate(lines, start=1):
        line = raw.decode("latin-1") if isinstance(raw, bytes) else raw
        if not line.strip():
            continue

        context = {"member": member, "line": line_number}
        try:
            observation = decode_line(line, record_filter, context)
        except FormatError as e:
            logger.warning(f"Skipping undecodable line: {e}")
            continue

        if observation is not None:
            yield observation


def decode_archive(fileobj: BinaryIO, record_filter: RecordFilter = ALL_RECORDS) -> Iterator[Observation]:
    """
    Decode every member of a gzip-compressed tar archive.

    Observations are yielded one at a time, in member order then line order,
    so only the ones the consumer keeps stay in memory.

    Raises:
        FormatError: If the container itself is corrupt
    """
    count = 0

    try:
        with tarfile.open(fileobj=fileobj, mode="r:gz") as archive:
            for member in archive:
                if not member.isfile():
                    continue

                handle = archive.extractfile(member)
                if handle is None:
                    continue

                with handle:
                    for observation in decode_lines(handle, record_filter, member=member.name):
                        count += 1
                        yield observation

    except (tarfile.TarError, gzip.BadGzipFile, EOFError, zlib.error) as e:
        raise FormatError(
            "Failed to read observation archive",
            context={"observations_read": count},
            original_exception=e
        )

    logger.info(f"Decoded {count} observations from archive")


def _describe(context: Optional[dict]) -> str:
    if not context:
        return "no context"
    return ", ".join(f"{k}={v}" for k, v in context.items())
