"""Daily summary plots.

This module renders a stacked bar chart of flagged rows per day,
one bar segment per group, from a daily summary table.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pyarrow as pa

from core.constants import DEFAULT_PLOT_FILE_NAME, DEFAULT_SUMMARY_GROUP_COLUMN
from core.errors import AirliftDependencyError


def save_daily_plot(
    summary: pa.Table,
    output_dir: Path,
    group_column: str = DEFAULT_SUMMARY_GROUP_COLUMN,
    value_column: str = "cancelled",
) -> Path | None:
    """Save a stacked daily bar chart as PNG.

    Args:
        summary: Output of ``summarize_daily``.
        output_dir: Directory receiving the image.
        group_column: Column stacked within each day.
        value_column: Column plotted as bar height.

    Returns:
        Plot file path when generated; None for an empty summary.

    Raises:
        AirliftDependencyError: If matplotlib is missing.
    """
    if summary.num_rows == 0:
        return None
    try:
        import matplotlib.pyplot as plot
    except ImportError as error:
        raise AirliftDependencyError(
            "Daily summary plots require matplotlib. "
            "Install matplotlib to produce summary charts."
        ) from error
    figure = _build_plot_figure(plot, summary, group_column, value_column)
    output_dir.mkdir(parents=True, exist_ok=True)
    plot_path = output_dir / DEFAULT_PLOT_FILE_NAME
    figure.tight_layout()
    figure.savefig(plot_path)
    plot.close(figure)
    return plot_path


def _build_plot_figure(plot: Any, summary: pa.Table, group_column: str, value_column: str) -> Any:
    """Build one stacked bar axis with the legend above the chart."""
    days = sorted(set(summary["date"].to_pylist()))
    groups = sorted(set(summary[group_column].to_pylist()), key=str)
    values = {
        (row["date"], row[group_column]): row[value_column] or 0
        for row in summary.select(["date", group_column, value_column]).to_pylist()
    }
    labels = [day.isoformat() for day in days]
    figure, axis = plot.subplots(1, 1, figsize=(10, 5))
    bottoms = [0] * len(days)
    for group in groups:
        heights = [values.get((day, group), 0) for day in days]
        axis.bar(labels, heights, bottom=bottoms, label=str(group))
        bottoms = [base + height for base, height in zip(bottoms, heights)]
    axis.set_xlabel("Date")
    axis.set_ylabel(value_column.capitalize())
    axis.tick_params(axis="x", labelrotation=90)
    axis.grid(axis="y", alpha=0.3)
    axis.legend(loc="lower center", bbox_to_anchor=(0.5, 1.05), ncol=min(len(groups), 8))
    return figure
