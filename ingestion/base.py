"""
Abstract base class for report sources and the fetch date modes
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional

from core.exceptions import ConfigurationError
from schemas.package import Package
from schemas.report import ReportSchema
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DateMode:
    """
    Which report dates a fetch covers.

    Exactly one of three modes: a single exact date, an open-ended range
    starting at a minimum date (ending at `until`, today when unset), or an
    unfiltered fetch of everything the upstream offers.
    """

    exact: Optional[date] = None
    minimum: Optional[date] = None
    until: Optional[date] = None

    def __post_init__(self):
        if self.exact is not None and (self.minimum is not None or self.until is not None):
            raise ConfigurationError(
                "An exact date cannot be combined with a date range",
                context={"exact": self.exact, "minimum": self.minimum, "until": self.until}
            )
        if self.until is not None and self.minimum is None:
            raise ConfigurationError(
                "An end date requires a minimum date",
                context={"until": self.until}
            )

    @classmethod
    def on(cls, report_date: date) -> "DateMode":
        return cls(exact=report_date)

    @classmethod
    def since(cls, minimum: date, until: Optional[date] = None) -> "DateMode":
        return cls(minimum=minimum, until=until)

    @classmethod
    def unfiltered(cls) -> "DateMode":
        return cls()

    @property
    def is_unfiltered(self) -> bool:
        return self.exact is None and self.minimum is None

    def end_date(self) -> Optional[date]:
        """Last date covered, None when unfiltered."""
        if self.exact is not None:
            return self.exact
        if self.minimum is not None:
            return self.until or date.today()
        return None

    def contains(self, value: date) -> bool:
        if self.exact is not None:
            return value == self.exact
        if self.minimum is not None:
            return self.minimum <= value <= self.end_date()
        return True

    def __str__(self) -> str:
        if self.exact is not None:
            return f"on {self.exact.isoformat()}"
        if self.minimum is not None:
            return f"{self.minimum.isoformat()}..{self.end_date().isoformat()}"
        return "unfiltered"


class ReportSource(ABC):
    """
    Abstract base class for all report sources.

    A source turns external bytes into a Package for one report schema. It
    never touches the database; persistence and watermark handling belong to
    the sync controller.

    probe_key groups sources that share an upstream service: the controller
    probes that service once per run and skips every source of the group
    when the probe fails.
    """

    probe_key: Optional[str] = None

    def __init__(self, source_id: str, report_schema: ReportSchema):
        self.source_id = source_id
        self.report_schema = report_schema

    @property
    def source_name(self) -> str:
        return self.report_schema.name

    @abstractmethod
    async def fetch(self, date_mode: DateMode) -> Package:
        """
        Fetch and decode the report for the given date mode.

        Raises:
            TransportError: Network failure or non-success response
            FormatError: Undecodable upstream content
            SchemaViolationError: Declared columns missing upstream
        """
        pass

    async def is_available(self) -> bool:
        """Cheap liveness check run before any bulk fetch."""
        return True
