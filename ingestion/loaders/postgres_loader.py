"""
Load packages into PostgreSQL with insert-or-ignore logic (idempotency)
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import func, inspect, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import PersistenceError, SchemaViolationError
from models.report_tables import constraint_name, metadata, report_tables, section_table
from schemas.package import Package, Record
from schemas.report import DATE_COLUMN, ReportSchema, SectionSchema
import logging

logger = logging.getLogger(__name__)


def parse_numeric(raw: str) -> Optional[Decimal]:
    """Parse a published number, ignoring thousands separators."""
    try:
        value = Decimal(raw.replace(",", "").strip())
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


class PostgresLoader:
    """
    Load packages into per-section tables with idempotent inserts.

    Ensures:
    - No duplicate rows on repeated runs (ON CONFLICT DO NOTHING on the
      primary key)
    - Empty values are never written
    - Each section commits on its own
    """

    def __init__(self, db_session: AsyncSession, batch_size: Optional[int] = None):
        self.db = db_session
        self.batch_size = batch_size or settings.ETL_BATCH_SIZE
        self._statements = {}

    async def create_tables(self, report_schema: ReportSchema) -> None:
        """Create any missing section tables of a report."""
        tables = list(report_tables(report_schema).values())

        try:
            connection = await self.db.connection()
            await connection.run_sync(metadata.create_all, tables=tables, checkfirst=True)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                "Failed to create report tables",
                context={"report": report_schema.name, "tables": [t.name for t in tables]},
                original_exception=e
            )

        logger.info(f"Ensured {len(tables)} tables for {report_schema.name}")

    def _statement(self, table):
        statement = self._statements.get(table.name)
        if statement is None:
            statement = (
                insert(table)
                .on_conflict_do_nothing(constraint=constraint_name(table.name))
                .returning(table.c[DATE_COLUMN])
            )
            self._statements[table.name] = statement
        return statement

    def build_rows(self, section_name: str, section: SectionSchema, records: List[Record]) -> List[Dict[str, Any]]:
        """Expand records into one row per non-empty entry."""
        rows = []
        arity = len(section.independent)
        skipped = 0

        for record in records:
            if len(record.independent) != arity:
                skipped += 1
                continue

            keys = dict(zip(section.key_columns, record.independent[1:]))

            for variable_name, raw in record.entries.items():
                if raw == "":
                    continue
                rows.append({
                    DATE_COLUMN: record.report_date,
                    **keys,
                    "variable_name": variable_name,
                    "value": parse_numeric(raw),
                    "value_text": raw,
                })

        if skipped:
            logger.warning(
                f"section={section_name}: skipped {skipped} records whose independent values "
                f"do not match the {arity} declared columns"
            )

        return rows

    async def persist(self, package: Package, report_schema: ReportSchema) -> int:
        """
        Insert every section of a package.

        Returns:
            Number of rows newly inserted (0 when the package was already stored)

        Raises:
            SchemaViolationError: If the package holds an undeclared section
            PersistenceError: If any statement fails; earlier sections stay committed
        """
        total_inserted = 0

        for section_name, records in package.sections.items():
            if section_name not in report_schema.sections:
                raise SchemaViolationError(
                    f"Section {section_name} is not declared for {report_schema.name}",
                    context={"report": report_schema.name, "section": section_name}
                )

            table = section_table(report_schema, section_name)
            rows = self.build_rows(section_name, report_schema.sections[section_name], records)
            if not rows:
                continue

            statement = self._statement(table)
            inserted = 0

            try:
                for i in range(0, len(rows), self.batch_size):
                    batch = rows[i:i + self.batch_size]
                    result = await self.db.execute(statement, batch)
                    inserted += len(result.all())
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise PersistenceError(
                    "Failed to insert section rows",
                    context={
                        "report": report_schema.name,
                        "section": section_name,
                        "table": table.name,
                        "rows": len(rows)
                    },
                    original_exception=e
                )

            logger.info(f"{table.name}: inserted {inserted} of {len(rows)} rows")
            total_inserted += inserted

        return total_inserted

    async def watermark(self, report_schema: ReportSchema) -> Optional[date]:
        """
        Latest stored report date across every section table.

        Returns:
            The maximum report_date, or None when no table has rows (missing
            tables count as empty)
        """
        tables = list(report_tables(report_schema).values())

        try:
            connection = await self.db.connection()
            existing = await connection.run_sync(
                lambda sync_connection: [
                    t for t in tables if inspect(sync_connection).has_table(t.name)
                ]
            )

            latest = None
            for table in existing:
                result = await self.db.execute(select(func.max(table.c[DATE_COLUMN])))
                value = result.scalar()
                if value is not None and (latest is None or value > latest):
                    latest = value
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                "Failed to read watermark",
                context={"report": report_schema.name},
                original_exception=e
            )

        logger.debug(f"Watermark for {report_schema.name}: {latest}")
        return latest
