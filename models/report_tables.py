"""
Report section tables.

Tables are not declared statically: every section of every configured report
gets its own table, derived from the report schema. All of them share one
layout:

    report_date      DATE NOT NULL
    <key columns>    TEXT NOT NULL   (independent columns after the date)
    variable_name    TEXT NOT NULL
    value            NUMERIC NULL    (parsed number, NULL when not numeric)
    value_text       TEXT NULL       (raw text as published)

    PRIMARY KEY (report_date, variable_name, <key columns>) as {table}_pkeys
"""

from typing import Dict

from sqlalchemy import Column, Date, MetaData, Numeric, PrimaryKeyConstraint, Table, Text

from schemas.report import DATE_COLUMN, ReportSchema

metadata = MetaData()


def constraint_name(table_name: str) -> str:
    return f"{table_name}_pkeys"


def section_table(report_schema: ReportSchema, section_name: str, target: MetaData = metadata) -> Table:
    """Return the Table for one report section, building it on first use."""
    name = report_schema.table_name(section_name)
    if name in target.tables:
        return target.tables[name]

    section = report_schema.sections[section_name]
    key_columns = section.key_columns

    return Table(
        name,
        target,
        Column(DATE_COLUMN, Date, nullable=False),
        *[Column(column, Text, nullable=False) for column in key_columns],
        Column("variable_name", Text, nullable=False),
        Column("value", Numeric, nullable=True),
        Column("value_text", Text, nullable=True),
        PrimaryKeyConstraint(DATE_COLUMN, "variable_name", *key_columns, name=constraint_name(name)),
    )


def report_tables(report_schema: ReportSchema, target: MetaData = metadata) -> Dict[str, Table]:
    """Tables for every section of a report, keyed by section name."""
    return {
        section_name: section_table(report_schema, section_name, target)
        for section_name in report_schema.sections
    }
