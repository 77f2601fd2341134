"""
Canonical in-memory model for one fetched report instance.

Every adapter produces a Package; the loader consumes it once and it is then
discarded. Plain dataclasses are used here because the GHCN adapter creates
one Record per station-day and validation happens at the adapter boundary.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List


@dataclass
class Record:
    """
    One (date + independent key) row of raw field values.

    independent[0] is always the report date in ISO format; the remaining
    values follow the section's declared independent columns. An entry whose
    value is the empty string means "not reported".
    """

    report_date: date
    independent: List[str] = field(default_factory=list)
    entries: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_date(cls, report_date: date, *keys: str) -> "Record":
        """Create a record whose independent values start with the date."""
        return cls(report_date=report_date, independent=[report_date.isoformat(), *keys])


@dataclass
class Package:
    """Records of one adapter run grouped by section name."""

    name: str
    sections: Dict[str, List[Record]] = field(default_factory=dict)

    def section(self, section_name: str) -> List[Record]:
        return self.sections.setdefault(section_name, [])

    def add(self, section_name: str, record: Record) -> None:
        self.section(section_name).append(record)

    def merge(self, other: "Package") -> None:
        """Append every section of another package of the same report."""
        for section_name, records in other.sections.items():
            self.section(section_name).extend(records)

    def record_count(self) -> int:
        return sum(len(records) for records in self.sections.values())
