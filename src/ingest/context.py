"""Explicit pipeline context.

This module builds the handle threaded through the scanner, checkpoint
store and committer. It validates the record schema once, resolves the
target table in the catalog and fixes the checkpoint location.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from core.config import AirliftConfig
from core.constants import CHECKPOINTS_DIR_NAME
from core.errors import AirliftConfigError
from core.s3_uri import parse_s3_uri
from core.schema import RecordSchema, default_airline_schema, load_record_schema
from core.types import PipelineOptions
from store.catalog import TableCatalog, split_table_name
from store.partitioned_table import PartitionedTable


@dataclass(frozen=True)
class PipelineContext:
    """Resolved collaborators of one pipeline instance.

    Attributes:
        config: Runtime configuration.
        options: Pipeline options as requested.
        schema: Validated record schema.
        table: Target table.
        source_root: Normalized source location that source keys are relative to.
        checkpoint_dir: Directory holding this pipeline's checkpoint.
        max_files_per_trigger: Effective per-trigger file cap.
    """

    config: AirliftConfig
    options: PipelineOptions
    schema: RecordSchema
    table: PartitionedTable
    source_root: str
    checkpoint_dir: Path
    max_files_per_trigger: int | None


def open_pipeline_context(
    options: PipelineOptions,
    config: AirliftConfig,
    schema: RecordSchema | None = None,
) -> PipelineContext:
    """Validate options and resolve the pipeline's collaborators.

    Args:
        options: Pipeline options.
        config: Runtime configuration.
        schema: Optional schema; loaded from ``options.schema_path`` or the
            built-in airline schema when omitted.

    Returns:
        Context for SourceScanner, CheckpointStore and AppendCommitter.

    Raises:
        SchemaDriftError: If the schema is invalid or differs from the table's.
        AirliftConfigError: If the checkpoint location overlaps the table data.
    """
    record_schema = schema or _resolve_schema(options)
    record_schema.validate()
    table = TableCatalog(config).create_table(
        options.table_name,
        record_schema,
        location=options.table_location,
    )
    checkpoint_dir = resolve_checkpoint_dir(
        options.table_name, options.checkpoint_dir, config
    )
    _ensure_disjoint(checkpoint_dir, table.location)
    max_files = options.max_files_per_trigger or config.max_files_per_trigger
    if max_files is not None and max_files <= 0:
        raise AirliftConfigError(f"max_files_per_trigger must be positive, got {max_files}.")
    return PipelineContext(
        config=config,
        options=options,
        schema=record_schema,
        table=table,
        source_root=normalize_source_uri(options.source_uri),
        checkpoint_dir=checkpoint_dir,
        max_files_per_trigger=max_files,
    )


def _resolve_schema(options: PipelineOptions) -> RecordSchema:
    if options.schema_path:
        return load_record_schema(options.schema_path)
    return default_airline_schema()


def normalize_source_uri(source_uri: str) -> str:
    """Return the canonical root of a source location.

    Local paths resolve to the absolute directory that holds the files;
    S3 URIs keep their bucket and a slash-terminated prefix.

    Raises:
        AirliftConfigError: If an S3 URI has no bucket or prefix.
    """
    if source_uri.startswith("s3://"):
        location = parse_s3_uri(source_uri)
        return f"s3://{location.bucket}/{location.prefix}"
    source_path = Path(source_uri).expanduser().resolve()
    root = source_path.parent if source_path.is_file() else source_path
    return root.as_posix()


def resolve_checkpoint_dir(
    table_name: str,
    checkpoint_dir: str | None,
    config: AirliftConfig,
) -> Path:
    """Return the explicit checkpoint directory or the per-table default."""
    if checkpoint_dir:
        return Path(checkpoint_dir).expanduser().resolve()
    database, table = split_table_name(table_name)
    return config.data_root / CHECKPOINTS_DIR_NAME / database / table


def _ensure_disjoint(checkpoint_dir: Path, table_location: Path) -> None:
    if checkpoint_dir == table_location or table_location in checkpoint_dir.parents:
        raise AirliftConfigError(
            f"Checkpoint location {checkpoint_dir} lies inside table data at {table_location}. "
            "Use a checkpoint directory distinct from the data path."
        )
    if checkpoint_dir in table_location.parents:
        raise AirliftConfigError(
            f"Table data at {table_location} lies inside checkpoint location {checkpoint_dir}. "
            "Use a checkpoint directory distinct from the data path."
        )
