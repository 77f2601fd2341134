"""
GHCN-Daily observation model.

Flags are closed enumerations with a total decode function: a blank
character means "no flag", a known code maps to its variant and anything else
is a FormatError. Unknown codes are never mapped to a default variant.
"""

import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple

from core.exceptions import FormatError

MISSING_VALUE = -9999
DAYS_PER_RECORD = 31

# Kept upper-case in display names
_ACRONYMS = frozenset({"WBAN"})


class _FlagEnum(str, enum.Enum):
    """Single-character flag codes keyed by variant name."""

    @classmethod
    def decode(cls, char: str):
        """Decode one flag character; blank is absent."""
        if char == "" or char.isspace():
            return None
        try:
            return cls(char)
        except ValueError:
            raise FormatError(
                f"Unknown {cls.__name__} code: {char!r}",
                context={"flag_type": cls.__name__, "code": char}
            )

    def encode(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        """Stored name of the flag, e.g. ConvertedFromWBANCode."""
        return "".join(part if part in _ACRONYMS else part.capitalize() for part in self.name.split("_"))


class MeasurementFlag(_FlagEnum):
    """GHCN-Daily measurement flag (MFLAG)"""
    PRECIPITATION_TOTAL_FROM_TWO_TWELVE_HOUR_TOTALS = "B"
    PRECIPITATION_TOTAL_FROM_FOUR_SIX_HOUR_TOTALS = "D"
    HOURLY_POINT = "H"
    CONVERTED_FROM_KNOTS = "K"
    TEMPERATURE_LAGGED_FROM_OBSERVATION = "L"
    CONVERTED_FROM_OKTAS = "O"
    MISSING_PRESUMED_ZERO = "P"
    TRACE_OF_PRECIPITATION = "T"
    CONVERTED_FROM_WBAN_CODE = "W"


class QualityFlag(_FlagEnum):
    """GHCN-Daily quality flag (QFLAG)"""
    DUPLICATE = "D"
    GAP = "G"
    INTERNAL_CONSISTENCY = "I"
    STREAK_FREQUENT = "K"
    LENGTH = "L"
    MEGACONSISTENCY = "M"
    NAUGHT = "N"
    CLIMATOLOGICAL_OUTLIER = "O"
    LAGGED_RANGE = "R"
    SPATIAL_CONSISTENCY = "S"
    TEMPORAL_CONSISTENCY = "T"
    TOO_WARM_FOR_SNOW = "W"
    FAILED_BOUNDS_CHECK = "X"
    FLAGGED_DATZILLA = "Z"


@dataclass(frozen=True)
class DailyObservation:
    """
    One day of an observation record.

    value is in tenths of the element's physical unit, None when the
    upstream slot held the -9999 sentinel. decode_errors names the flag
    fields whose code could not be decoded; such fields are None here and
    must not be used downstream.
    """

    value: Optional[int]
    measurement_flag: Optional[MeasurementFlag]
    quality_flag: Optional[QualityFlag]
    source_flag: str
    decode_errors: Tuple[str, ...] = ()

    def encode(self) -> str:
        """Render the 8-character positional group."""
        value = MISSING_VALUE if self.value is None else self.value
        measurement = self.measurement_flag.encode() if self.measurement_flag else " "
        quality = self.quality_flag.encode() if self.quality_flag else " "
        return f"{value:>5}{measurement}{quality}{self.source_flag:1.1}"


@dataclass(frozen=True)
class Observation:
    """One station, month and element with exactly 31 daily slots."""

    station_id: str
    year: int
    month: int
    element: str
    days: Tuple[DailyObservation, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if len(self.days) != DAYS_PER_RECORD:
            raise ValueError(f"Observation requires {DAYS_PER_RECORD} daily slots, got {len(self.days)}")

    def present_days(self):
        """Yield (day_of_month, slot) for slots holding a value."""
        for index, slot in enumerate(self.days):
            if slot.value is not None:
                yield index + 1, slot

    def encode(self) -> str:
        """Render the 269-character positional line."""
        header = f"{self.station_id:<11.11}{self.year:04d}{self.month:02d}{self.element:<4.4}"
        return header + "".join(day.encode() for day in self.days)
