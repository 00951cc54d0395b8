"""Shared typed models.

This module defines immutable data models used by ingest, store,
analytics, and CLI layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

import pyarrow as pa

from core.constants import DEFAULT_DELIMITER


@dataclass(frozen=True)
class SourceFile:
    """One enumerated object in the append-only source.

    Attributes:
        source_key: Path relative to the source root, or S3 object key.
        uri: Readable location of the object.
        size_bytes: Object size at listing time.
        source_id: Stable identity derived from the source key.
    """

    source_key: str
    uri: str
    size_bytes: int
    source_id: str


@dataclass(frozen=True)
class SourceBatch:
    """Rows read from one source file for a single trigger.

    Attributes:
        offset: Position of the batch inside the current trigger.
        source_key: Source key the rows came from.
        source_id: Identity used for idempotent appends.
        table: Rows conforming to the declared record schema.
    """

    offset: int
    source_key: str
    source_id: str
    table: pa.Table

    @property
    def row_count(self) -> int:
        return self.table.num_rows


@dataclass(frozen=True)
class Checkpoint:
    """Durable marker of the last successfully committed trigger.

    A later trigger always carries a strictly greater batch id
    and a superset of committed sources.

    Attributes:
        batch_id: Zero-based id of the last committed non-empty trigger.
        committed_sources: Sorted source keys committed so far.
        table_version: Table version visible after the commit.
        committed_at: UTC commit timestamp.
        source_uri: Normalized source root the committed keys belong to.
    """

    batch_id: int
    committed_sources: tuple[str, ...]
    table_version: int
    committed_at: datetime
    source_uri: str = ""


@dataclass(frozen=True)
class DataFile:
    """One Parquet file belonging to a table partition.

    Attributes:
        path: Path relative to the table root.
        partition: Partition column values for every row in the file.
        row_count: Number of rows stored in the file.
    """

    path: str
    partition: Mapping[str, int]
    row_count: int


@dataclass(frozen=True)
class TableVersion:
    """Immutable manifest of one committed table version.

    Attributes:
        version: Monotonic version number, zero for table creation.
        created_at: UTC commit timestamp.
        operation: ``CREATE``, ``APPEND`` or ``OPTIMIZE``.
        files: Data files visible in this version.
        source_ids: Batch identities committed up to this version.
        record_count: Total rows visible in this version.
        parent_version: Previous version number when derived.
    """

    version: int
    created_at: datetime
    operation: str
    files: tuple[DataFile, ...]
    source_ids: tuple[str, ...]
    record_count: int
    parent_version: int | None


@dataclass(frozen=True)
class TableFilter:
    """Equality constraints used to slice a table.

    Attributes:
        equals: Column name to required value.
    """

    equals: Mapping[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        """Return a stable textual form for identities and logs."""
        return "&".join(f"{name}={self.equals[name]}" for name in sorted(self.equals))


@dataclass(frozen=True)
class PipelineOptions:
    """Options for one incremental append pipeline instance.

    Attributes:
        source_uri: Source directory or ``s3://bucket/prefix``.
        table_name: Target table as ``database.table`` or bare table name.
        checkpoint_dir: Optional checkpoint directory; derived when omitted.
        schema_path: Optional YAML schema file; built-in airline schema when omitted.
        header: Whether every source file starts with a header line.
        delimiter: Field delimiter of the source files.
        max_files_per_trigger: Optional cap overriding the config value.
        table_location: Optional data path used when the table is created.
    """

    source_uri: str
    table_name: str
    checkpoint_dir: str | None = None
    schema_path: str | None = None
    header: bool = True
    delimiter: str = DEFAULT_DELIMITER
    max_files_per_trigger: int | None = None
    table_location: str | None = None


@dataclass(frozen=True)
class TriggerResult:
    """Outcome of one trigger run.

    Attributes:
        checkpoint: Checkpoint after the trigger, None when nothing was ever committed.
        files_scanned: Number of uncommitted source files found.
        files_written: Number of batches appended to the table.
        duplicates_skipped: Number of batches absorbed as already committed.
        rows_written: Number of rows appended to the table.
        table_version: Latest table version after the trigger.
        states: Ordered state names visited by the trigger.
    """

    checkpoint: Checkpoint | None
    files_scanned: int
    files_written: int
    duplicates_skipped: int
    rows_written: int
    table_version: int
    states: tuple[str, ...]
