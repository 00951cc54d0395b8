"""Python SDK for table operations.

This module exposes high-level APIs for triggering the incremental
pipeline, browsing the catalog, and reading or deriving table versions.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pyarrow as pa

from analytics.daily_summary import summarize_daily
from analytics.plotting import save_daily_plot
from core.config import AirliftConfig
from core.constants import (
    DEFAULT_HEAD_ROWS,
    DEFAULT_SUMMARY_FLAG_COLUMN,
    DEFAULT_SUMMARY_GROUP_COLUMN,
)
from core.logging_config import get_logger
from core.schema import RecordSchema
from core.types import Checkpoint, PipelineOptions, TableFilter, TableVersion, TriggerResult
from ingest.checkpoint_store import CheckpointStore
from ingest.context import resolve_checkpoint_dir
from ingest.pipeline import run_trigger
from store.catalog import TableCatalog
from store.extract import extract_table
from store.partitioned_table import PartitionedTable

_LOGGER = get_logger(__name__)


class AirliftClient:
    """Primary SDK entry point for pipeline and table workflows."""

    def __init__(self, config: AirliftConfig | None = None) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
        """
        self._config = config or AirliftConfig.from_env()
        self._catalog = TableCatalog(self._config)

    @property
    def config(self) -> AirliftConfig:
        return self._config

    def trigger(
        self,
        options: PipelineOptions,
        schema: RecordSchema | None = None,
    ) -> TriggerResult:
        """Run one trigger of the incremental append pipeline.

        Args:
            options: Pipeline options.
            schema: Optional schema overriding ``options.schema_path``.

        Returns:
            Trigger outcome.

        Raises:
            SourceUnavailable: If the source cannot be listed or read.
            SchemaDriftError: If source rows do not match the schema.
            CheckpointCorrupt: If the stored checkpoint is unreadable.
            WriteFailed: If table or checkpoint writes fail.
        """
        return run_trigger(options, self._config, schema)

    def checkpoint(
        self,
        table_name: str,
        checkpoint_dir: str | None = None,
    ) -> Checkpoint | None:
        """Return the stored checkpoint of a pipeline instance.

        Args:
            table_name: Target table of the pipeline.
            checkpoint_dir: Explicit checkpoint directory, if the pipeline used one.

        Returns:
            Last committed checkpoint, or None before the first commit.

        Raises:
            CheckpointCorrupt: If the stored checkpoint is unreadable.
        """
        return CheckpointStore(
            resolve_checkpoint_dir(table_name, checkpoint_dir, self._config)
        ).load()

    def reset_checkpoint(self, table_name: str, checkpoint_dir: str | None = None) -> None:
        """Drop a pipeline's checkpoint so its next trigger rescans every file.

        Files whose batch identity the table already holds are absorbed
        on the next trigger, so a reset never duplicates rows.
        """
        resolved_dir = resolve_checkpoint_dir(table_name, checkpoint_dir, self._config)
        CheckpointStore(resolved_dir).clear()
        _LOGGER.warning("checkpoint_reset", table=table_name, checkpoint_dir=str(resolved_dir))

    def create_database(self, database: str) -> None:
        self._catalog.create_database(database)

    def list_databases(self) -> list[str]:
        return self._catalog.list_databases()

    def list_tables(self, database: str | None = None) -> list[str]:
        """List tables in ``database``, or in the default database."""
        if database is None:
            return self._catalog.list_tables()
        return self._catalog.list_tables(database)

    def table(self, table_name: str) -> "TableHandle":
        """Get a handle for a registered table.

        Args:
            table_name: ``database.table`` or bare table name.

        Returns:
            Table handle.

        Raises:
            AirliftStoreError: If the table is not registered.
        """
        return TableHandle(self._catalog.table(table_name), self._catalog)

    def with_data_root(self, data_root: str) -> "AirliftClient":
        """Clone the client with a different local data root.

        Args:
            data_root: New data root path.

        Returns:
            New SDK client instance.
        """
        resolved_root = Path(data_root).expanduser().resolve()
        return AirliftClient(replace(self._config, data_root=resolved_root))


class TableHandle:
    """SDK handle for one versioned, partitioned table."""

    def __init__(self, table: PartitionedTable, catalog: TableCatalog) -> None:
        self._table = table
        self._catalog = catalog

    @property
    def name(self) -> str:
        """Return the qualified table name."""
        return self._table.name

    @property
    def location(self) -> Path:
        return self._table.location

    @property
    def schema(self) -> RecordSchema:
        return self._table.schema

    def list_versions(self) -> list[TableVersion]:
        return self._table.list_versions()

    def read(
        self,
        version: int | None = None,
        table_filter: TableFilter | None = None,
    ) -> pa.Table:
        """Read rows of the latest or a specific version.

        Args:
            version: Optional version number.
            table_filter: Optional equality constraints.

        Returns:
            Arrow table in declared column order.
        """
        return self._table.read(version, table_filter)

    def head(self, row_limit: int = DEFAULT_HEAD_ROWS) -> pa.Table:
        return self._table.head(row_limit)

    def partitions(self, version: int | None = None) -> list[dict[str, int]]:
        return self._table.partitions(version)

    def extract_to(
        self,
        target_name: str,
        table_filter: TableFilter,
        target_location: str | None = None,
    ) -> TableVersion:
        """Copy filtered rows of the latest version into another table.

        Args:
            target_name: Derived table name.
            table_filter: Equality constraints selecting rows.
            target_location: Optional data path for a new target table.

        Returns:
            Latest version of the derived table.
        """
        return extract_table(
            self._catalog, self._table.name, table_filter, target_name, target_location
        )

    def optimize(self) -> TableVersion | None:
        """Compact small files; returns None when nothing changed."""
        return self._table.optimize()

    def daily_summary(
        self,
        group_column: str = DEFAULT_SUMMARY_GROUP_COLUMN,
        flag_column: str = DEFAULT_SUMMARY_FLAG_COLUMN,
        table_filter: TableFilter | None = None,
    ) -> pa.Table:
        """Aggregate flights and flagged rows per day and group."""
        return summarize_daily(self._table.read(table_filter=table_filter), group_column, flag_column)

    def plot(
        self,
        output_dir: str,
        group_column: str = DEFAULT_SUMMARY_GROUP_COLUMN,
        flag_column: str = DEFAULT_SUMMARY_FLAG_COLUMN,
        table_filter: TableFilter | None = None,
    ) -> Path | None:
        """Render the daily summary as a stacked bar chart.

        Args:
            output_dir: Directory receiving the PNG file.
            group_column: Column stacked within each day.
            flag_column: Column counted as flagged rows.
            table_filter: Optional equality constraints.

        Returns:
            Plot path, or None when the table has no rows.
        """
        summary = self.daily_summary(group_column, flag_column, table_filter)
        return save_daily_plot(summary, Path(output_dir).expanduser(), group_column)
