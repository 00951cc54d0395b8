"""Daily grouped aggregation.

This module counts rows and flagged rows per calendar day and group,
for example flights and cancellations per day and carrier.
"""

from __future__ import annotations

from datetime import date

import pyarrow as pa
import pyarrow.compute as pc

from core.constants import DEFAULT_SUMMARY_FLAG_COLUMN, DEFAULT_SUMMARY_GROUP_COLUMN
from core.errors import SchemaDriftError

_DATE_COLUMNS = ("Year", "Month", "DayOfMonth")


def summarize_daily(
    rows: pa.Table,
    group_column: str = DEFAULT_SUMMARY_GROUP_COLUMN,
    flag_column: str = DEFAULT_SUMMARY_FLAG_COLUMN,
) -> pa.Table:
    """Aggregate rows per day and group.

    Args:
        rows: Table rows including Year, Month and DayOfMonth.
        group_column: Column to group by within a day.
        flag_column: Numeric 0/1 column summed per group; nulls are ignored.

    Returns:
        Table with ``date``, ``group_column``, ``flights`` and ``cancelled``,
        sorted by date then group.

    Raises:
        SchemaDriftError: If a required column is missing.
    """
    required = (*_DATE_COLUMNS, group_column, flag_column)
    missing = [column for column in required if column not in rows.column_names]
    if missing:
        raise SchemaDriftError(
            f"Daily summary requires columns {', '.join(missing)} which the table lacks."
        )
    keys = [*_DATE_COLUMNS, group_column]
    grouped = rows.group_by(keys).aggregate(
        [
            (flag_column, "sum"),
            (flag_column, "count", pc.CountOptions(mode="all")),
        ]
    )
    days = [
        date(int(year), int(month), int(day))
        for year, month, day in zip(
            grouped["Year"].to_pylist(),
            grouped["Month"].to_pylist(),
            grouped["DayOfMonth"].to_pylist(),
        )
    ]
    summary = pa.table(
        {
            "date": pa.array(days, type=pa.date32()),
            group_column: grouped[group_column],
            "flights": pc.cast(grouped[f"{flag_column}_count"], pa.int64()),
            "cancelled": pc.cast(pc.fill_null(grouped[f"{flag_column}_sum"], 0), pa.int64()),
        }
    )
    return summary.sort_by([("date", "ascending"), (group_column, "ascending")])
