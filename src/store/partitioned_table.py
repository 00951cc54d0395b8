"""Versioned, partitioned Parquet table.

This module owns the on-disk layout of one table: Parquet data files in
``Year=/Month=/DayOfMonth=`` directories and a log of immutable version
manifests under ``_table_log``. A version becomes visible only when its
manifest is published, so readers never see a partial append.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.dataset as ds
import pyarrow.parquet as pq

from core.constants import (
    DATA_FILE_PREFIX,
    DATA_FILE_SUFFIX,
    PARTITION_COLUMNS,
    TABLE_LOG_DIR_NAME,
    TABLE_METADATA_FILE_NAME,
    TABLE_VERSION_DIGITS,
)
from core.errors import AirliftStoreError, DuplicateDetected, SchemaDriftError, WriteFailed
from core.logging_config import get_logger
from core.schema import RecordSchema, schema_from_payload
from core.types import DataFile, SourceBatch, TableFilter, TableVersion
from store.json_io import publish_json_exclusive, read_json_object

_LOGGER = get_logger(__name__)
_LOG_HINT = "Inspect the table log; committed versions must not be edited by hand."


class PartitionedTable:
    """Append-only table with numbered, immutable versions.

    Data files are never rewritten or removed once a version references
    them, so every earlier version stays readable.
    """

    def __init__(self, name: str, location: Path, schema: RecordSchema) -> None:
        self._name = name
        self._location = location.expanduser().resolve()
        self._schema = schema

    @classmethod
    def create(cls, name: str, location: Path, schema: RecordSchema) -> "PartitionedTable":
        """Create a table, or open it when the same declaration already exists.

        Args:
            name: Qualified table name.
            location: Table root directory.
            schema: Validated record schema.

        Returns:
            Table handle.

        Raises:
            SchemaDriftError: If an existing table declares a different schema.
        """
        table_location = location.expanduser().resolve()
        metadata_path = table_location / TABLE_LOG_DIR_NAME / TABLE_METADATA_FILE_NAME
        metadata = {
            "name": name,
            "schema": schema.to_payload(),
            "partition_by": list(PARTITION_COLUMNS),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        if not publish_json_exclusive(metadata_path, metadata):
            existing = cls.open(name, table_location)
            if existing.schema != schema:
                raise SchemaDriftError(
                    f"Table '{name}' at {table_location} was created with a different schema. "
                    "Use the original schema declaration or a new table name."
                )
            if not existing._version_numbers():
                existing._publish_initial_version()
                _LOGGER.warning(
                    "table_initial_version_recovered",
                    table=name,
                    location=str(table_location),
                )
            return existing
        table = cls(name, table_location, schema)
        table._publish_initial_version()
        _LOGGER.info("table_created", table=name, location=str(table_location))
        return table

    @classmethod
    def open(cls, name: str, location: Path) -> "PartitionedTable":
        """Open an existing table from its metadata document.

        Raises:
            AirliftStoreError: If the table metadata is missing or invalid.
        """
        table_location = location.expanduser().resolve()
        metadata_path = table_location / TABLE_LOG_DIR_NAME / TABLE_METADATA_FILE_NAME
        if not metadata_path.exists():
            raise AirliftStoreError(
                f"No table found at {table_location}. Create the table before reading it."
            )
        metadata = read_json_object(metadata_path, AirliftStoreError, _LOG_HINT)
        raw_schema = metadata.get("schema")
        if not isinstance(raw_schema, list):
            raise AirliftStoreError(f"Table metadata at {metadata_path} has no schema list.")
        return cls(name, table_location, schema_from_payload(raw_schema))

    @property
    def name(self) -> str:
        return self._name

    @property
    def location(self) -> Path:
        return self._location

    @property
    def schema(self) -> RecordSchema:
        return self._schema

    def list_versions(self) -> list[TableVersion]:
        """Return every published version in ascending order."""
        return [self._read_version(number) for number in self._version_numbers()]

    def current_version(self) -> TableVersion:
        """Return the latest published version.

        Raises:
            AirliftStoreError: If the table has no published versions.
        """
        numbers = self._version_numbers()
        if not numbers:
            raise AirliftStoreError(
                f"Table '{self._name}' at {self._location} has no versions. Recreate the table."
            )
        return self._read_version(numbers[-1])

    def version(self, number: int) -> TableVersion:
        if number not in self._version_numbers():
            raise AirliftStoreError(
                f"Version {number} not found for table '{self._name}'. "
                "List versions to discover valid numbers."
            )
        return self._read_version(number)

    def ensure_uncommitted(self, source_id: str, parent: TableVersion | None = None) -> None:
        """Reject a batch identity that an earlier version already holds.

        Raises:
            DuplicateDetected: If ``source_id`` is already committed.
        """
        manifest = parent or self.current_version()
        if source_id in manifest.source_ids:
            raise DuplicateDetected(
                f"Batch {source_id} is already committed to '{self._name}' "
                f"as of version {manifest.version}."
            )

    def append(self, batches: Sequence[SourceBatch]) -> TableVersion:
        """Append batches as one new version.

        Every batch becomes one Parquet file per partition it touches,
        named after the partition and the batch identity, so retrying an
        interrupted append rewrites the same files instead of adding more.

        Args:
            batches: Batches not yet committed to this table.

        Returns:
            Published version.

        Raises:
            DuplicateDetected: If a batch identity is already committed.
            WriteFailed: If data files or the manifest cannot be written.
        """
        parent = self.current_version()
        for batch in batches:
            self.ensure_uncommitted(batch.source_id, parent)
        new_files: list[DataFile] = []
        try:
            for batch in batches:
                new_files.extend(self._write_batch_files(batch))
        except (OSError, pa.ArrowException) as error:
            raise WriteFailed(
                f"Failed to write data files for table '{self._name}' at {self._location}: "
                f"{error}. The trigger can be retried safely."
            ) from error
        version = TableVersion(
            version=parent.version + 1,
            created_at=datetime.now(timezone.utc),
            operation="APPEND",
            files=parent.files + tuple(new_files),
            source_ids=parent.source_ids + tuple(batch.source_id for batch in batches),
            record_count=parent.record_count + sum(batch.row_count for batch in batches),
            parent_version=parent.version,
        )
        self._publish(version)
        _LOGGER.info(
            "table_version_committed",
            table=self._name,
            version=version.version,
            operation=version.operation,
            files_added=len(new_files),
            record_count=version.record_count,
        )
        return version

    def optimize(self) -> TableVersion | None:
        """Compact partitions holding several files into one file each.

        Returns:
            Published ``OPTIMIZE`` version, or None when nothing needed compaction.

        Raises:
            WriteFailed: If compacted files or the manifest cannot be written.
        """
        parent = self.current_version()
        grouped = _group_files_by_partition(parent.files)
        if all(len(files) == 1 for files in grouped.values()):
            return None
        next_number = parent.version + 1
        compacted: list[DataFile] = []
        try:
            for files in grouped.values():
                if len(files) == 1:
                    compacted.append(files[0])
                    continue
                compacted.append(self._compact_partition(files, next_number))
        except (OSError, pa.ArrowException) as error:
            raise WriteFailed(
                f"Failed to compact table '{self._name}' at {self._location}: {error}."
            ) from error
        version = TableVersion(
            version=next_number,
            created_at=datetime.now(timezone.utc),
            operation="OPTIMIZE",
            files=tuple(compacted),
            source_ids=parent.source_ids,
            record_count=parent.record_count,
            parent_version=parent.version,
        )
        self._publish(version)
        _LOGGER.info(
            "table_optimized",
            table=self._name,
            version=version.version,
            files_before=len(parent.files),
            files_after=len(compacted),
        )
        return version

    def read(
        self,
        version: int | None = None,
        table_filter: TableFilter | None = None,
    ) -> pa.Table:
        """Read rows visible in a version.

        Partition columns are recovered from the directory layout.

        Args:
            version: Version number; latest when omitted.
            table_filter: Optional equality constraints.

        Returns:
            Rows in declared column order.
        """
        manifest = self.current_version() if version is None else self.version(version)
        expression = self._filter_expression(table_filter)
        if not manifest.files:
            return self._schema.arrow_schema().empty_table()
        dataset = ds.dataset(
            [str(self._location / data_file.path) for data_file in manifest.files],
            schema=self._schema.arrow_schema(),
            format="parquet",
            partitioning=ds.partitioning(self._schema.partition_schema(), flavor="hive"),
            partition_base_dir=str(self._location),
        )
        return dataset.to_table(filter=expression)

    def head(self, row_limit: int) -> pa.Table:
        return self.read().slice(0, row_limit)

    def partitions(self, version: int | None = None) -> list[dict[str, int]]:
        """Summarize partitions of a version.

        Returns:
            One row per partition with its key, file count and row count.
        """
        manifest = self.current_version() if version is None else self.version(version)
        summary: list[dict[str, int]] = []
        for key, files in _group_files_by_partition(manifest.files).items():
            row = dict(zip(PARTITION_COLUMNS, key))
            row["files"] = len(files)
            row["rows"] = sum(data_file.row_count for data_file in files)
            summary.append(row)
        return summary

    def _filter_expression(self, table_filter: TableFilter | None) -> ds.Expression | None:
        if table_filter is None or not table_filter.equals:
            return None
        expression: ds.Expression | None = None
        for name in sorted(table_filter.equals):
            self._schema.field_type(name)
            term = ds.field(name) == table_filter.equals[name]
            expression = term if expression is None else expression & term
        return expression

    def _write_batch_files(self, batch: SourceBatch) -> list[DataFile]:
        written: list[DataFile] = []
        for partition, rows in _split_by_partition(batch.table):
            relative_path = (
                f"{_partition_dir(partition)}/{DATA_FILE_PREFIX}{batch.source_id}{DATA_FILE_SUFFIX}"
            )
            self._write_parquet(relative_path, rows.select(list(self._schema.data_columns)))
            written.append(DataFile(path=relative_path, partition=partition, row_count=rows.num_rows))
        return written

    def _compact_partition(self, files: list[DataFile], version_number: int) -> DataFile:
        pieces = [
            pq.read_table(self._location / data_file.path, partitioning=None) for data_file in files
        ]
        merged = pa.concat_tables(pieces)
        partition = dict(files[0].partition)
        relative_path = (
            f"{_partition_dir(partition)}/{DATA_FILE_PREFIX}optimized-v{version_number}{DATA_FILE_SUFFIX}"
        )
        self._write_parquet(relative_path, merged)
        return DataFile(path=relative_path, partition=partition, row_count=merged.num_rows)

    def _write_parquet(self, relative_path: str, rows: pa.Table) -> None:
        target_path = self._location / relative_path
        target_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target_path.with_name(f".{target_path.name}.tmp")
        pq.write_table(rows, temp_path)
        os.replace(temp_path, target_path)

    def _publish_initial_version(self) -> None:
        """Publish the empty CREATE version unless a concurrent create already did."""
        initial_version = TableVersion(
            version=0,
            created_at=datetime.now(timezone.utc),
            operation="CREATE",
            files=(),
            source_ids=(),
            record_count=0,
            parent_version=None,
        )
        try:
            self._publish(initial_version)
        except WriteFailed:
            if not self._version_numbers():
                raise

    def _publish(self, version: TableVersion) -> None:
        manifest_path = self._version_path(version.version)
        try:
            published = publish_json_exclusive(manifest_path, _version_to_payload(version))
        except OSError as error:
            raise WriteFailed(
                f"Failed to publish version {version.version} of '{self._name}' at "
                f"{manifest_path}: {error}. The trigger can be retried safely."
            ) from error
        if not published:
            raise WriteFailed(
                f"Version {version.version} of '{self._name}' was committed by another writer. "
                "Only one writer may append to a table at a time."
            )

    def _version_numbers(self) -> list[int]:
        log_dir = self._location / TABLE_LOG_DIR_NAME
        if not log_dir.exists():
            return []
        numbers = [
            int(path.stem)
            for path in log_dir.glob("*.json")
            if path.stem.isdigit() and len(path.stem) == TABLE_VERSION_DIGITS
        ]
        return sorted(numbers)

    def _version_path(self, number: int) -> Path:
        return self._location / TABLE_LOG_DIR_NAME / f"{number:0{TABLE_VERSION_DIGITS}d}.json"

    def _read_version(self, number: int) -> TableVersion:
        manifest_path = self._version_path(number)
        payload = read_json_object(manifest_path, AirliftStoreError, _LOG_HINT)
        try:
            return _version_from_payload(payload)
        except (KeyError, TypeError, ValueError) as error:
            raise AirliftStoreError(
                f"Invalid table version manifest at {manifest_path}: {error}. {_LOG_HINT}"
            ) from error


def _split_by_partition(rows: pa.Table) -> Iterable[tuple[dict[str, int], pa.Table]]:
    """Yield rows grouped by partition key in ascending key order."""
    keys = rows.group_by(list(PARTITION_COLUMNS)).aggregate([])
    keys = keys.sort_by([(column, "ascending") for column in PARTITION_COLUMNS])
    for key_row in keys.to_pylist():
        mask = None
        for column in PARTITION_COLUMNS:
            term = pc.equal(rows[column], key_row[column])
            mask = term if mask is None else pc.and_(mask, term)
        partition = {column: int(key_row[column]) for column in PARTITION_COLUMNS}
        yield partition, rows.filter(mask)


def _partition_dir(partition: dict[str, int]) -> str:
    return "/".join(f"{column}={partition[column]}" for column in PARTITION_COLUMNS)


def _group_files_by_partition(
    files: Sequence[DataFile],
) -> dict[tuple[int, ...], list[DataFile]]:
    grouped: dict[tuple[int, ...], list[DataFile]] = {}
    for data_file in files:
        key = tuple(int(data_file.partition[column]) for column in PARTITION_COLUMNS)
        grouped.setdefault(key, []).append(data_file)
    return dict(sorted(grouped.items()))


def _version_to_payload(version: TableVersion) -> dict[str, Any]:
    return {
        "version": version.version,
        "created_at": version.created_at.isoformat(),
        "operation": version.operation,
        "files": [
            {
                "path": data_file.path,
                "partition": dict(data_file.partition),
                "row_count": data_file.row_count,
            }
            for data_file in version.files
        ],
        "source_ids": list(version.source_ids),
        "record_count": version.record_count,
        "parent_version": version.parent_version,
    }


def _version_from_payload(payload: dict[str, Any]) -> TableVersion:
    parent_version = payload["parent_version"]
    return TableVersion(
        version=int(payload["version"]),
        created_at=datetime.fromisoformat(str(payload["created_at"])),
        operation=str(payload["operation"]),
        files=tuple(
            DataFile(
                path=str(row["path"]),
                partition={str(key): int(value) for key, value in row["partition"].items()},
                row_count=int(row["row_count"]),
            )
            for row in payload["files"]
        ),
        source_ids=tuple(str(source_id) for source_id in payload["source_ids"]),
        record_count=int(payload["record_count"]),
        parent_version=int(parent_version) if parent_version is not None else None,
    )
