"""Unit tests for the versioned partitioned table."""

from __future__ import annotations

from pathlib import Path

import pyarrow as pa
import pytest

from core.errors import AirliftStoreError, DuplicateDetected, SchemaDriftError, WriteFailed
from core.identity import build_source_id
from core.schema import FieldSpec, RecordSchema
from core.types import SourceBatch, TableFilter
from store.partitioned_table import PartitionedTable

_SCHEMA = RecordSchema(
    fields=(
        FieldSpec("Year", "integer"),
        FieldSpec("Month", "integer"),
        FieldSpec("DayOfMonth", "integer"),
        FieldSpec("Carrier", "string"),
        FieldSpec("Cancelled", "integer"),
    )
)


def _batch(source_key: str, days: list[tuple[int, int, int]], carrier: str = "AA") -> SourceBatch:
    rows = pa.table(
        {
            "Year": pa.array([day[0] for day in days], type=pa.int32()),
            "Month": pa.array([day[1] for day in days], type=pa.int32()),
            "DayOfMonth": pa.array([day[2] for day in days], type=pa.int32()),
            "Carrier": pa.array([carrier] * len(days), type=pa.string()),
            "Cancelled": pa.array([0] * len(days), type=pa.int32()),
        }
    )
    return SourceBatch(
        offset=0,
        source_key=source_key,
        source_id=build_source_id("/data/src", source_key),
        table=rows,
    )


def _table(tmp_path: Path) -> PartitionedTable:
    return PartitionedTable.create("default.flights", tmp_path / "flights", _SCHEMA)


def test_create_publishes_empty_initial_version(tmp_path: Path) -> None:
    """New table should start at version zero without files."""
    table = _table(tmp_path)

    version = table.current_version()

    assert version.version == 0 and version.operation == "CREATE" and not version.files


def test_create_reopens_existing_table_with_same_schema(tmp_path: Path) -> None:
    """Create-if-not-exists should reuse the existing table log."""
    first = _table(tmp_path)
    first.append([_batch("a.csv", [(2008, 1, 1)])])

    second = _table(tmp_path)

    assert second.current_version().version == 1


def test_create_rejects_different_schema(tmp_path: Path) -> None:
    """Existing tables keep their declared schema."""
    _table(tmp_path)
    other = RecordSchema(fields=_SCHEMA.fields[:3])

    with pytest.raises(SchemaDriftError):
        PartitionedTable.create("default.flights", tmp_path / "flights", other)


def test_open_missing_table_raises(tmp_path: Path) -> None:
    """Opening a path without a table log should fail."""
    with pytest.raises(AirliftStoreError):
        PartitionedTable.open("default.flights", tmp_path / "missing")


def test_append_writes_hive_partition_directories(tmp_path: Path) -> None:
    """Each distinct day should land in its own partition directory."""
    table = _table(tmp_path)

    version = table.append([_batch("a.csv", [(2008, 1, 1), (2008, 1, 1), (2008, 1, 2)])])

    paths = sorted(data_file.path for data_file in version.files)
    assert len(paths) == 2
    assert paths[0].startswith("Year=2008/Month=1/DayOfMonth=1/")
    assert (table.location / paths[1]).exists()


def test_read_restores_partition_columns(tmp_path: Path) -> None:
    """Rows read back should carry Year, Month and DayOfMonth in declared order."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 12, 31), (2008, 12, 30)])])

    rows = table.read()

    assert rows.column_names == list(_SCHEMA.column_names)
    assert sorted(rows["DayOfMonth"].to_pylist()) == [30, 31]


def test_read_applies_equality_filter(tmp_path: Path) -> None:
    """Filters should restrict rows to matching partitions."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 11, 1), (2008, 12, 1), (2008, 12, 2)])])

    rows = table.read(table_filter=TableFilter(equals={"Year": 2008, "Month": 12}))

    assert rows.num_rows == 2


def test_read_unknown_filter_column_raises(tmp_path: Path) -> None:
    """Filtering on an undeclared column should be a drift error."""
    table = _table(tmp_path)

    with pytest.raises(SchemaDriftError):
        table.read(table_filter=TableFilter(equals={"Airline": "AA"}))


def test_read_earlier_version_is_stable(tmp_path: Path) -> None:
    """Earlier versions should stay readable after later appends."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, 1)])])
    table.append([_batch("b.csv", [(2008, 1, 1), (2008, 1, 2)])])

    first_rows = table.read(version=1)
    latest_rows = table.read()

    assert first_rows.num_rows == 1 and latest_rows.num_rows == 3


def test_read_empty_table_returns_declared_columns(tmp_path: Path) -> None:
    """Reading version zero should yield an empty table with the schema."""
    table = _table(tmp_path)

    rows = table.read()

    assert rows.num_rows == 0 and rows.column_names == list(_SCHEMA.column_names)


def test_append_rejects_committed_identity(tmp_path: Path) -> None:
    """Appending the same source key twice should raise DuplicateDetected."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, 1)])])

    with pytest.raises(DuplicateDetected):
        table.append([_batch("a.csv", [(2008, 1, 1)])])

    assert table.current_version().record_count == 1


def test_append_wraps_write_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Data file write failures should surface as WriteFailed without a new version."""
    table = _table(tmp_path)

    def _failing_write(self, relative_path, rows):
        raise OSError("disk full")

    monkeypatch.setattr(PartitionedTable, "_write_parquet", _failing_write)
    with pytest.raises(WriteFailed):
        table.append([_batch("a.csv", [(2008, 1, 1)])])

    assert table.current_version().version == 0


def test_versions_record_parent_chain(tmp_path: Path) -> None:
    """Each version should point at its predecessor."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, 1)])])
    table.append([_batch("b.csv", [(2008, 1, 2)])])

    versions = table.list_versions()

    assert [version.parent_version for version in versions] == [None, 0, 1]


def test_unknown_version_raises(tmp_path: Path) -> None:
    """Looking up a missing version should fail with a store error."""
    table = _table(tmp_path)

    with pytest.raises(AirliftStoreError):
        table.read(version=7)


def test_partitions_summarize_files_and_rows(tmp_path: Path) -> None:
    """Partition summary should count files and rows per day."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, 1), (2008, 1, 1)])])
    table.append([_batch("b.csv", [(2008, 1, 1)])])

    partitions = table.partitions()

    assert partitions == [
        {"Year": 2008, "Month": 1, "DayOfMonth": 1, "files": 2, "rows": 3},
    ]


def test_optimize_compacts_multi_file_partitions(tmp_path: Path) -> None:
    """Optimize should merge files per partition and keep every row."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, 1), (2008, 1, 2)])])
    table.append([_batch("b.csv", [(2008, 1, 1)])])

    version = table.optimize()

    assert version is not None and version.operation == "OPTIMIZE"
    assert len(version.files) == 2
    assert table.read().num_rows == 3
    assert table.read(version=2).num_rows == 3


def test_optimize_keeps_committed_identities(tmp_path: Path) -> None:
    """Compaction must not forget which batches were committed."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, 1)])])
    table.append([_batch("b.csv", [(2008, 1, 1)])])
    table.optimize()

    with pytest.raises(DuplicateDetected):
        table.ensure_uncommitted(build_source_id("/data/src", "a.csv"))

    assert True


def test_optimize_without_small_files_is_noop(tmp_path: Path) -> None:
    """Tables with one file per partition need no compaction."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, 1)])])

    assert table.optimize() is None


def test_head_limits_rows(tmp_path: Path) -> None:
    """Head should return at most the requested number of rows."""
    table = _table(tmp_path)
    table.append([_batch("a.csv", [(2008, 1, day) for day in range(1, 6)])])

    assert table.head(3).num_rows == 3


def test_create_recovers_missing_initial_version(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Re-creating a table whose first version never landed should publish it."""
    original_publish = PartitionedTable._publish

    def _failing_publish(self, version):
        raise WriteFailed("forced failure")

    monkeypatch.setattr(PartitionedTable, "_publish", _failing_publish)
    with pytest.raises(WriteFailed):
        _table(tmp_path)
    monkeypatch.setattr(PartitionedTable, "_publish", original_publish)

    table = _table(tmp_path)

    version = table.current_version()
    assert version.version == 0 and version.operation == "CREATE"


def test_zero_row_batch_records_identity_without_files(tmp_path: Path) -> None:
    """An empty batch should commit its identity and add no data files."""
    table = _table(tmp_path)
    empty = SourceBatch(
        offset=0,
        source_key="empty.csv",
        source_id=build_source_id("/data/src", "empty.csv"),
        table=_SCHEMA.arrow_schema().empty_table(),
    )

    version = table.append([empty])

    assert version.record_count == 0 and not version.files
    with pytest.raises(DuplicateDetected):
        table.ensure_uncommitted(empty.source_id)
