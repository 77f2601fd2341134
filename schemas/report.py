"""
Report schema registry.

A ReportSchema describes one report: its sections, which columns identify a
row (independent columns, the first always being the date) and which columns
carry values. The same schema drives decoding and storage, so table and
column identifiers are validated here, once, when the registry is loaded.
"""

import re
import tomllib
from pathlib import Path
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.exceptions import ConfigurationError

TABLE_PART_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
COLUMN_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Columns every section table carries regardless of configuration
DATE_COLUMN = "report_date"
RESERVED_COLUMNS = frozenset({DATE_COLUMN, "variable_name", "value", "value_text"})


class SectionSchema(BaseModel):
    """Layout of one report section."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    alias: Optional[str] = None
    independent: Tuple[str, ...] = Field(..., min_length=1)
    fields: Tuple[str, ...] = ()  # empty: entry labels come from the document

    @field_validator("alias")
    @classmethod
    def check_alias(cls, v):
        if v is not None and not TABLE_PART_PATTERN.match(v):
            raise ValueError(f"alias {v!r} may only contain letters, digits and underscores")
        return v

    @field_validator("independent")
    @classmethod
    def check_independent(cls, v):
        for column in v:
            if not COLUMN_PATTERN.match(column):
                raise ValueError(f"independent column {column!r} is not a valid identifier")
        for column in v[1:]:
            if column.lower() in RESERVED_COLUMNS:
                raise ValueError(f"independent column {column!r} collides with a reserved column")
        if len({column.lower() for column in v}) != len(v):
            raise ValueError("independent columns must be unique")
        return v

    @property
    def key_columns(self) -> Tuple[str, ...]:
        """Independent columns stored as text (everything after the date)."""
        return self.independent[1:]


class ReportSchema(BaseModel):
    """Immutable description of one report and its sections."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    description: str = ""
    independent: str
    identifier: Optional[str] = None  # release index identifier for bulletins
    sections: Dict[str, SectionSchema] = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        if not TABLE_PART_PATTERN.match(v):
            raise ValueError(f"report name {v!r} may only contain letters, digits and underscores")
        return v

    @field_validator("independent")
    @classmethod
    def check_independent(cls, v):
        if not COLUMN_PATTERN.match(v):
            raise ValueError(f"independent column {v!r} is not a valid identifier")
        return v

    @model_validator(mode="after")
    def check_table_names(self):
        seen = {}
        for section_name, section in self.sections.items():
            if section.alias is None and not TABLE_PART_PATTERN.match(section_name):
                raise ValueError(
                    f"section {section_name!r} needs an alias to be used as a table name"
                )
            table = self.table_name(section_name)
            if table in seen:
                raise ValueError(f"sections {seen[table]!r} and {section_name!r} share table {table}")
            seen[table] = section_name
        return self

    def table_name(self, section_name: str) -> str:
        section = self.sections[section_name]
        return f"{self.name}_{section.alias or section_name}".lower()


def load_registry(path) -> Dict[str, ReportSchema]:
    """
    Load a TOML registry whose top-level keys are report identifiers.

    Raises:
        ConfigurationError: If the file is missing, is not TOML or any
            report fails validation
    """
    path = Path(path)

    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except OSError as e:
        raise ConfigurationError(
            "Failed to read report registry",
            context={"path": str(path)},
            original_exception=e
        )
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            "Report registry is not valid TOML",
            context={"path": str(path)},
            original_exception=e
        )

    registry = {}
    for report_id, body in raw.items():
        try:
            registry[report_id] = ReportSchema.model_validate(body)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid schema for report {report_id}",
                context={"path": str(path), "report_id": report_id},
                original_exception=e
            )

    return registry
