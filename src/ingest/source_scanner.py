"""Source enumeration for incremental ingest.

This module lists delimited files in a local directory tree or an S3
prefix and yields the ones a checkpoint has not committed yet. It never
mutates anything; it only computes the delta for the next trigger.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterator

import pyarrow as pa
import pyarrow.csv as csv

from core.constants import PARTITION_COLUMNS, SOURCE_NULL_VALUES, SUPPORTED_SOURCE_EXTENSIONS
from core.errors import AirliftDependencyError, SchemaDriftError, SourceUnavailable
from core.identity import build_source_id
from core.s3_uri import parse_s3_uri
from core.types import Checkpoint, SourceBatch, SourceFile
from ingest.context import PipelineContext


class SourceScan:
    """Finite, restartable sequence of uncommitted source batches.

    Files are fixed when the scan is created; rows are read lazily and
    re-read on every iteration.
    """

    def __init__(self, files: tuple[SourceFile, ...], reader: Callable[[SourceFile], pa.Table]):
        self._files = files
        self._reader = reader

    @property
    def files(self) -> tuple[SourceFile, ...]:
        return self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[SourceBatch]:
        for offset, source_file in enumerate(self._files):
            yield SourceBatch(
                offset=offset,
                source_key=source_file.source_key,
                source_id=source_file.source_id,
                table=self._reader(source_file),
            )


class SourceScanner:
    """Computes the uncommitted delta of an append-only source."""

    def __init__(self, context: PipelineContext) -> None:
        self._context = context
        self._source_uri = context.options.source_uri
        self._source_root = context.source_root
        self._s3_client: Any = None

    def scan(self, checkpoint: Checkpoint | None) -> SourceScan:
        """List source files not covered by ``checkpoint``.

        Listing happens immediately; the same checkpoint and source state
        always produce the same files in the same order.

        Args:
            checkpoint: Last committed checkpoint, or None on first run.

        Returns:
            Lazy scan over pending files in source key order.

        Raises:
            SourceUnavailable: If the source cannot be enumerated.
        """
        committed = set(checkpoint.committed_sources) if checkpoint else set()
        pending = [
            source_file
            for source_file in self._list_files()
            if source_file.source_key not in committed
        ]
        if self._context.max_files_per_trigger is not None:
            pending = pending[: self._context.max_files_per_trigger]
        return SourceScan(tuple(pending), self._read_file)

    def _list_files(self) -> list[SourceFile]:
        if self._source_uri.startswith("s3://"):
            return self._list_s3_files()
        return _list_local_files(Path(self._source_uri).expanduser(), self._source_root)

    def _list_s3_files(self) -> list[SourceFile]:
        location = parse_s3_uri(self._source_uri)
        paginator = self._client().get_paginator("list_objects_v2")
        from botocore.exceptions import BotoCoreError, ClientError

        files: list[SourceFile] = []
        try:
            for page in paginator.paginate(Bucket=location.bucket, Prefix=location.prefix):
                for obj in page.get("Contents", []):
                    relative_key = str(obj["Key"])[len(location.prefix):]
                    if not _is_supported_name(relative_key):
                        continue
                    files.append(
                        SourceFile(
                            source_key=relative_key,
                            uri=f"s3://{location.bucket}/{obj['Key']}",
                            size_bytes=int(obj.get("Size", 0)),
                            source_id=build_source_id(self._source_root, relative_key),
                        )
                    )
        except (BotoCoreError, ClientError) as error:
            raise SourceUnavailable(
                f"Failed to list source objects under {self._source_uri}: {error}. "
                "Check AWS credentials and the prefix, then rerun the trigger."
            ) from error
        return sorted(files, key=lambda item: item.source_key)

    def _read_file(self, source_file: SourceFile) -> pa.Table:
        schema = self._context.schema
        if source_file.size_bytes == 0:
            return schema.arrow_schema().empty_table()
        if source_file.uri.startswith("s3://"):
            content = self._download(source_file)
            if not content:
                return schema.arrow_schema().empty_table()
            payload: Any = pa.BufferReader(content)
        else:
            payload = source_file.uri
        options = self._context.options
        try:
            rows = csv.read_csv(
                payload,
                read_options=csv.ReadOptions(
                    column_names=list(schema.column_names),
                    skip_rows=1 if options.header else 0,
                ),
                parse_options=csv.ParseOptions(delimiter=options.delimiter),
                convert_options=csv.ConvertOptions(
                    column_types={name: schema.arrow_type(name) for name in schema.column_names},
                    null_values=list(SOURCE_NULL_VALUES),
                    strings_can_be_null=True,
                ),
            )
        except pa.ArrowInvalid as error:
            raise SchemaDriftError(
                f"Source file {source_file.uri} does not match the declared schema: {error}. "
                "Fix the file or update the schema declaration for a new table."
            ) from error
        except OSError as error:
            raise SourceUnavailable(
                f"Failed to read source file {source_file.uri}: {error}."
            ) from error
        _ensure_partition_values(source_file, rows)
        return rows

    def _download(self, source_file: SourceFile) -> bytes:
        location = parse_s3_uri(self._source_uri)
        key = location.prefix + source_file.source_key
        client = self._client()
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            return client.get_object(Bucket=location.bucket, Key=key)["Body"].read()
        except (BotoCoreError, ClientError) as error:
            raise SourceUnavailable(
                f"Failed to download source object {source_file.uri}: {error}."
            ) from error

    def _client(self) -> Any:
        if self._s3_client is None:
            self._s3_client = _create_s3_client(
                self._context.config.s3_profile, self._context.config.s3_region
            )
        return self._s3_client


def _list_local_files(source_path: Path, source_root: str) -> list[SourceFile]:
    """List supported files under a local directory tree.

    Raises:
        SourceUnavailable: If the path is missing or cannot be listed.
    """
    if not source_path.exists():
        raise SourceUnavailable(
            f"Failed to list source at {source_path}: path does not exist. "
            "Provide an existing directory and rerun the trigger."
        )
    root = source_path.parent if source_path.is_file() else source_path
    try:
        candidates = [source_path] if source_path.is_file() else sorted(source_path.rglob("*"))
        files = [
            SourceFile(
                source_key=path.relative_to(root).as_posix(),
                uri=str(path),
                size_bytes=path.stat().st_size,
                source_id=build_source_id(source_root, path.relative_to(root).as_posix()),
            )
            for path in candidates
            if path.is_file() and _is_supported_name(path.relative_to(root).as_posix())
        ]
    except OSError as error:
        raise SourceUnavailable(f"Failed to list source at {source_path}: {error}.") from error
    return sorted(files, key=lambda item: item.source_key)


def _is_supported_name(relative_key: str) -> bool:
    """Skip hidden and underscore-prefixed entries and unknown extensions."""
    if not relative_key or relative_key.endswith("/"):
        return False
    if any(part.startswith((".", "_")) for part in relative_key.split("/")):
        return False
    return Path(relative_key).suffix.lower() in SUPPORTED_SOURCE_EXTENSIONS


def _ensure_partition_values(source_file: SourceFile, rows: pa.Table) -> None:
    for column in PARTITION_COLUMNS:
        null_count = rows[column].null_count
        if null_count:
            raise SchemaDriftError(
                f"Source file {source_file.uri} has {null_count} rows without '{column}'. "
                "Every row needs Year, Month and DayOfMonth values."
            )


def _create_s3_client(profile: str | None, region: str | None) -> Any:
    """Create a boto3 S3 client.

    Raises:
        AirliftDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise AirliftDependencyError(
            "S3 sources require boto3, but it is not installed. "
            "Install boto3 to ingest from s3:// sources."
        ) from error
    session_kwargs: dict[str, str] = {}
    if profile:
        session_kwargs["profile_name"] = profile
    if region:
        session_kwargs["region_name"] = region
    return boto3.session.Session(**session_kwargs).client("s3")
