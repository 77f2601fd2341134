"""
Parsers for fixed-column plain-text market news bulletins.

Bulletins have no machine-readable structure. Each parser locates anchor lines
(by prefix, substring or pattern, with a fallback anchor where older report
versions differ) and then reads a fixed number of lines below the anchor.

Errors:
- Missing anchor for a mandatory section: FormatError, the whole document is
  rejected
- Missing anchor for an optional section: the section is omitted
- A line inside a fixed block that does not match: FormatError
"""

import re
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Pattern

from core.exceptions import ConfigurationError, FormatError
from schemas.package import Package, Record
import logging

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

CUTOUT_GRADES = ("comprehensive", "prime", "branded", "choice", "select", "ungraded")

NUMERIC_DATE = re.compile(r"(?P<month>\d+)/(?P<day>\d+)/(?P<year>\d{4})")
NAMED_DATE = re.compile(r"(?P<month>[a-z]+)\s+(?P<day>\d+),\s+(?P<year>\d{4})", re.IGNORECASE)
COUNT = re.compile(r"[0-9,]+")

CUTOUT_LINE = re.compile(
    r"(?P<label>[A-Z]+(?: [A-Z]+)*)\s+"
    + r"\s+".join(rf"(?P<{grade}>\d+\.\d{{2}})" for grade in CUTOUT_GRADES),
    re.IGNORECASE
)
QUALITY_LINE = re.compile(r"(?P<label>[A-Z]+)\**\s+(?P<value>[0-9,]+)", re.IGNORECASE)
SALES_LINE = re.compile(
    r"(?P<label>[A-Z0-9/\-]+(?:\s{1,2}[A-Z0-9/\-]+)*)\s+(?P<value>[0-9,]+)", re.IGNORECASE
)
DESTINATION_LINE = re.compile(r"(?P<label>[A-Z]+(?: [A-Z]+)*)\s+(?P<value>[0-9,]+)", re.IGNORECASE)
DELIVERY_LINE = re.compile(r"(?P<label>[A-Z0-9\-]+(?: [A-Z0-9\-]+)*)\s+(?P<value>[0-9,]+)", re.IGNORECASE)

SALES_ANCHOR = re.compile(r"^((Sales type breakdown:)|(TYPE OF SALES))", re.IGNORECASE)
DESTINATION_ANCHOR = re.compile(r"^Destination breakdown:", re.IGNORECASE)
DELIVERY_ANCHOR = re.compile(r"^Delivery period breakdown:", re.IGNORECASE)

# A range hyphen is spaced on both sides or on neither; "-0.05" after a bid is a
# signed change column, not the upper end of a range
PRICE_LINE = re.compile(
    r"^(?P<region>[a-z]+(?: [a-z]+)*)\s+(?P<left_bid>\d+\.\d+)(?:(?:\s+-\s+|-)(?P<right_bid>\d+\.\d+))?",
    re.IGNORECASE
)
GRAIN_TABLES = ("wheat", "corn", "sorghum", "soybeans")


def find_line_starts_with(lines: List[str], prefix: str) -> Optional[int]:
    for number, line in enumerate(lines):
        if line.startswith(prefix):
            return number
    return None


def find_line_contains(lines: List[str], text: str) -> Optional[int]:
    for number, line in enumerate(lines):
        if text in line:
            return number
    return None


def find_line_matching(lines: List[str], pattern: Pattern) -> Optional[int]:
    for number, line in enumerate(lines):
        if pattern.search(line):
            return number
    return None


def _block(lines: List[str], start: int, count: int, section: str) -> List[str]:
    if start + count > len(lines):
        raise FormatError(
            f"Document ends inside the {section} block",
            context={"section": section, "start_line": start + 1, "expected_lines": count}
        )
    return lines[start:start + count]


def _read_pairs(lines: List[str], start: int, count: int, pattern: Pattern, section: str) -> Dict[str, str]:
    """Read a fixed block of `label  value` lines into entries."""
    entries = {}
    for offset, line in enumerate(_block(lines, start, count, section)):
        match = pattern.search(line)
        if match is None:
            raise FormatError(
                f"Unexpected line in the {section} block",
                context={"section": section, "line_number": start + offset + 1, "line": line}
            )
        entries[match.group("label").strip()] = match.group("value")
    return entries


def _build_date(year: str, month: int, day: str, line: str) -> date:
    try:
        return date(int(year), month, int(day))
    except ValueError as e:
        raise FormatError("Report date is not a calendar date", context={"line": line}, original_exception=e)


def parse_lm_xb463(text: str) -> Package:
    """
    Parse the weekly national boxed beef bulletin (LM_XB463).

    Every section yields exactly one record for the report week.
    """
    lines = text.splitlines()

    location = find_line_starts_with(lines, "For Week Ending:")
    if location is None:
        raise FormatError("Failed to find the report date line", context={"report": "LM_XB463"})

    match = NUMERIC_DATE.search(lines[location])
    if match is None:
        raise FormatError("Failed to parse the report date line", context={"line": lines[location]})
    report_date = _build_date(match.group("year"), int(match.group("month")), match.group("day"), lines[location])

    package = Package(name="LM_XB463")

    # Summary: total loads plus primal cutout values
    location = find_line_starts_with(lines, "TOTAL LOADS OF PRODUCT REPORTED")
    if location is None:
        location = find_line_starts_with(lines, "TOTAL LOADS")
    if location is None:
        raise FormatError("Failed to find the total load count", context={"report": "LM_XB463"})

    match = COUNT.search(lines[location])
    if match is None:
        raise FormatError("Failed to read the total load count", context={"line": lines[location]})

    summary = Record.for_date(report_date)
    summary.entries["total_loads"] = match.group(0)

    location = find_line_starts_with(lines, "Weekly Cutout Value")
    if location is None:
        raise FormatError("Failed to find the cutout value table", context={"report": "LM_XB463"})

    for line in _block(lines, location, 9, "cutout"):
        match = CUTOUT_LINE.search(line)
        if match is None:
            continue
        label = match.group("label").strip().lower().replace(" ", "_")
        for grade in CUTOUT_GRADES:
            summary.entries[f"{label}__{grade}"] = match.group(grade)

    package.add("summary", summary)

    # Quality breakdown (older versions list it straight under the load count)
    location = find_line_starts_with(lines, "Quality breakdown:")
    if location is None:
        location = find_line_starts_with(lines, "TOTAL LOADS")
    if location is None:
        raise FormatError("Failed to find the quality breakdown", context={"report": "LM_XB463"})

    quality = Record.for_date(report_date)
    quality.entries.update(_read_pairs(lines, location + 1, 5, QUALITY_LINE, "quality"))
    package.add("quality", quality)

    location = find_line_matching(lines, SALES_ANCHOR)
    if location is None:
        raise FormatError("Failed to find the sales type breakdown", context={"report": "LM_XB463"})

    sales = Record.for_date(report_date)
    sales.entries.update(_read_pairs(lines, location + 1, 4, SALES_LINE, "sales_type"))
    package.add("sales_type", sales)

    # Optional sections
    location = find_line_matching(lines, DESTINATION_ANCHOR)
    if location is not None:
        destination = Record.for_date(report_date)
        destination.entries.update(_read_pairs(lines, location + 1, 3, DESTINATION_LINE, "destination"))
        package.add("destination", destination)

    location = find_line_matching(lines, DELIVERY_ANCHOR)
    if location is not None:
        delivery = Record.for_date(report_date)
        delivery.entries.update(_read_pairs(lines, location + 1, 4, DELIVERY_LINE, "delivery"))
        package.add("delivery", delivery)

    return package


def parse_dc_gr110(text: str) -> Package:
    """
    Parse the daily Dodge City grain bids bulletin (DC_GR110).

    Four commodity tables follow the wheat header in a fixed order. A line
    that is not a price line closes the current table; the next table's first
    price line is three lines further down.
    """
    lines = text.splitlines()

    location = find_line_starts_with(lines, "Dodge City, KS")
    if location is None:
        raise FormatError("Failed to find the report date line", context={"report": "DC_GR110"})

    match = NAMED_DATE.search(lines[location])
    if match is None:
        raise FormatError("Failed to parse the report date line", context={"line": lines[location]})

    month = MONTHS.get(match.group("month")[:3].lower())
    if month is None:
        raise FormatError(f"Invalid month name: {match.group('month')}", context={"line": lines[location]})
    report_date = _build_date(match.group("year"), month, match.group("day"), lines[location])

    location = find_line_contains(lines, "HRW WHEAT ORD US NO 1")
    if location is None:
        raise FormatError("Failed to find the wheat table", context={"report": "DC_GR110"})
    location += 2

    package = Package(name="DC_GR110")
    tables = list(GRAIN_TABLES)
    current = package.section(tables.pop(0))

    while True:
        if location >= len(lines):
            if tables:
                raise FormatError(
                    "Hit the end of the report early",
                    context={"missing_sections": tables}
                )
            break

        match = PRICE_LINE.match(lines[location])
        if match is not None:
            left, right = match.group("left_bid"), match.group("right_bid")
            bid = left if right is None else str((Decimal(left) + Decimal(right)) / 2)

            record = Record.for_date(report_date, match.group("region").strip())
            record.entries["bid"] = bid
            current.append(record)
        else:
            if not tables:
                break
            current = package.section(tables.pop(0))
            location += 2

        location += 1

    return package


PARSERS: Dict[str, Callable[[str], Package]] = {
    "LM_XB463": parse_lm_xb463,
    "DC_GR110": parse_dc_gr110,
}


def get_parser(report_name: str) -> Callable[[str], Package]:
    """
    Raises:
        ConfigurationError: If no parser is registered for the report
    """
    try:
        return PARSERS[report_name]
    except KeyError:
        raise ConfigurationError(
            f"No bulletin parser registered for {report_name}",
            context={"report_name": report_name, "known_reports": sorted(PARSERS)}
        )
