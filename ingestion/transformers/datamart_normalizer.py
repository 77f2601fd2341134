"""
Transform datamart result rows into package records
"""

import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from core.exceptions import FormatError, SchemaViolationError
from schemas.package import Record
from schemas.report import ReportSchema
import logging

logger = logging.getLogger(__name__)

DATAMART_DATE_PATTERN = re.compile(r"(?P<month>\d+)/(?P<day>\d+)/(?P<year>\d+)")


def parse_datamart_date(value: str) -> date:
    """
    Parse a datamart M/D/Y date, tolerating surrounding text and time parts.

    Raises:
        FormatError: If no date can be found in the value
    """
    match = DATAMART_DATE_PATTERN.search(value)
    if match is None:
        raise FormatError(
            "Failed to parse date from datamart response",
            context={"value": value}
        )
    try:
        return date(int(match.group("year")), int(match.group("month")), int(match.group("day")))
    except ValueError as e:
        raise FormatError(
            "Datamart date is not a calendar date",
            context={"value": value},
            original_exception=e
        )


class DatamartNormalizer:
    """
    Normalize datamart rows for one report into Records.

    Handles:
    - Date lookup through the report's independent column
    - Verbatim copy of declared field columns
    - Skipping rows with null keys (upstream defects)
    - Detecting missing columns (upstream schema drift)
    """

    def __init__(self, report_id: str, report_schema: ReportSchema):
        self.report_id = report_id
        self.report_schema = report_schema

    def normalize_rows(self, section_name: str, rows: Iterable[Dict[str, Any]]) -> List[Record]:
        """
        Normalize every row of one section response.

        Returns:
            Records in response order, defective rows omitted

        Raises:
            SchemaViolationError: If a declared date or independent column
                is absent from a row
            FormatError: If a date value cannot be parsed
        """
        records = []
        skipped = 0

        for row in rows:
            record = self.normalize_row(section_name, row)
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if skipped:
            logger.info(
                f"report={self.report_id} section={section_name}: "
                f"skipped {skipped} rows with null key values"
            )

        return records

    def normalize_row(self, section_name: str, row: Dict[str, Any]) -> Optional[Record]:
        """Normalize one row; returns None when the row must be skipped."""
        section = self.report_schema.sections[section_name]
        date_column = self.report_schema.independent

        if date_column not in row:
            raise SchemaViolationError(
                f"Date column `{date_column}` is missing from datamart response",
                context={
                    "report_id": self.report_id,
                    "section": section_name,
                    "column": date_column,
                    "columns": sorted(row.keys())
                }
            )

        raw_date = row[date_column]
        if raw_date is None:
            # This happens: rows with no assigned date float around in responses
            logger.warning(
                f"report={self.report_id} section={section_name}: "
                f"row with null `{date_column}` skipped"
            )
            return None

        report_date = parse_datamart_date(str(raw_date))
        record = Record.for_date(report_date)

        for column in section.fields:
            value = row.get(column)
            record.entries[column] = "" if value is None else str(value)

        for column in section.key_columns:
            if column not in row:
                raise SchemaViolationError(
                    f"Independent column `{column}` is missing from datamart response",
                    context={
                        "report_id": self.report_id,
                        "section": section_name,
                        "column": column,
                        "report_date": report_date.isoformat(),
                        "columns": sorted(row.keys())
                    }
                )
            value = row[column]
            if value is None:
                logger.warning(
                    f"report={self.report_id} section={section_name}: null independent "
                    f"`{column}` for {report_date.isoformat()}, row skipped. If this happens "
                    f"frequently the column may not be a real independent."
                )
                return None
            record.independent.append(str(value))

        return record
