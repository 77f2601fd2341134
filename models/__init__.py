"""
SQLAlchemy table definitions for stored reports.

One table per report section, built from the report registry at runtime:
report_date, the section's key columns, variable_name and the numeric and
textual value. The primary key spans every identifying column so repeated
inserts of the same observation are no-ops.
"""

__all__ = [
    "metadata",
    "constraint_name",
    "section_table",
    "report_tables",
]
