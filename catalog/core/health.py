"""
Health / diagnostic reporting.

Summarizes what the resolver can see: whether each backend answers, which
tables exist, how many columns each has and one sample row per table.

The report is read-only and tolerates partial failure: a table whose
sample query fails gets an entry in `errors` and enumeration continues.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from catalog.core.db.descriptor import QueryDescriptor
from catalog.core.db.executor import Backend, Failure, QueryExecutor
from catalog.core.db.inspector import SchemaInspector

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HealthReport:
    backend_reachable: bool
    secondary_reachable: bool | None
    table_inventory: list[str] = field(default_factory=list)
    per_table_column_counts: dict[str, int] = field(default_factory=dict)
    sample_row_per_table: dict[str, dict[str, Any] | None] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    generated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _json_safe(row: dict[str, Any]) -> dict[str, Any]:
    safe: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, (bytes, bytearray, memoryview)):
            safe[key] = f"<{len(value)} bytes>"
        else:
            safe[key] = value
    return safe


class HealthReporter:
    """
    Builds `HealthReport`s.

    The inspector should be uncached so the report reflects the schema as
    it is now, not as it was when the process started.
    """

    def __init__(self, executor: QueryExecutor, inspector: SchemaInspector) -> None:
        self._executor = executor
        self._inspector = inspector

    async def report(self) -> HealthReport:
        generated_at = datetime.now(timezone.utc).isoformat()
        errors: dict[str, str] = {}

        primary = await self._executor.ping(Backend.PRIMARY)
        if primary is not None:
            errors[Backend.PRIMARY.value] = str(primary)

        secondary_reachable: bool | None = None
        if self._executor.has_secondary:
            secondary = await self._executor.ping(Backend.SECONDARY)
            secondary_reachable = secondary is None
            if secondary is not None:
                errors[Backend.SECONDARY.value] = str(secondary)

        report = HealthReport(
            backend_reachable=primary is None,
            secondary_reachable=secondary_reachable,
            errors=errors,
            generated_at=generated_at,
        )
        if primary is not None:
            logger.warning("Health report: primary backend unreachable: %s", primary)
            return report

        report.table_inventory = sorted(await self._inspector.list_tables())
        for table in report.table_inventory:
            columns = await self._inspector.describe_columns(table)
            report.per_table_column_counts[table] = len(columns)

            sample = await self._executor.execute(Backend.PRIMARY, QueryDescriptor(table, limit=1))
            if isinstance(sample, Failure):
                logger.warning("Health report: sample of %s failed: %s", table, sample)
                report.sample_row_per_table[table] = None
                errors[table] = str(sample)
                continue
            report.sample_row_per_table[table] = _json_safe(sample.rows[0]) if sample.rows else None

        return report
