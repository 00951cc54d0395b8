"""Integration tests for exactly-once incremental appends."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from core.config import AirliftConfig
from core.errors import AirliftConfigError, CheckpointCorrupt, WriteFailed
from core.types import PipelineOptions, TableFilter
from ingest.checkpoint_store import CheckpointStore
from ingest.context import open_pipeline_context
from ingest.pipeline import run_trigger
from store.partitioned_table import PartitionedTable
from store.table_sdk import AirliftClient
from tests.airline_rows import airline_row, write_airline_file, write_day_file


def _config(tmp_path: Path) -> AirliftConfig:
    return replace(AirliftConfig.from_env(), data_root=tmp_path / "airlift")


def _options(source_dir: Path, **overrides: object) -> PipelineOptions:
    return replace(
        PipelineOptions(source_uri=str(source_dir), table_name="airlines.flights"),
        **overrides,
    )


def test_empty_source_is_noop(tmp_path: Path) -> None:
    """Zero source files should leave the table empty and the checkpoint absent."""
    source_dir = tmp_path / "source"
    source_dir.mkdir()
    config = _config(tmp_path)

    result = run_trigger(_options(source_dir), config)

    client = AirliftClient(config)
    assert result.checkpoint is None and client.checkpoint("airlines.flights") is None
    assert client.table("airlines.flights").read().num_rows == 0


def test_single_file_lands_in_one_partition_and_rerun_is_idempotent(tmp_path: Path) -> None:
    """One file of 100 rows for one day should stay 100 rows across re-runs."""
    source_dir = tmp_path / "source"
    write_day_file(source_dir / "part-00000", 2008, 1, 3, 100)
    config = _config(tmp_path)

    first = run_trigger(_options(source_dir), config)
    second = run_trigger(_options(source_dir), config)

    table = AirliftClient(config).table("airlines.flights")
    assert first.rows_written == 100 and second.rows_written == 0
    assert first.checkpoint == second.checkpoint
    assert table.read().num_rows == 100
    assert table.partitions() == [
        {"Year": 2008, "Month": 1, "DayOfMonth": 3, "files": 1, "rows": 100},
    ]


def test_mixed_day_file_is_split_across_partitions(tmp_path: Path) -> None:
    """Rows should land only in the partition matching their own values."""
    source_dir = tmp_path / "source"
    rows = [airline_row(2008, 12, day, flight_num=day) for day in (30, 31, 31)]
    rows.append(airline_row(2009, 1, 1))
    write_airline_file(source_dir / "a.csv", rows)
    config = _config(tmp_path)

    run_trigger(_options(source_dir), config)

    table = AirliftClient(config).table("airlines.flights")
    for data_file in table.list_versions()[-1].files:
        partition_rows = table.read(table_filter=TableFilter(equals=dict(data_file.partition)))
        assert partition_rows.num_rows == data_file.row_count
    assert [row["rows"] for row in table.partitions()] == [1, 2, 1]


def test_new_files_append_and_checkpoint_is_monotonic(tmp_path: Path) -> None:
    """Each non-empty trigger should grow the checkpoint and the table."""
    source_dir = tmp_path / "source"
    config = _config(tmp_path)
    checkpoints = []
    for day in (1, 2, 3):
        write_day_file(source_dir / f"part-0000{day}", 2008, 2, day, 10)
        checkpoints.append(run_trigger(_options(source_dir), config).checkpoint)

    batch_ids = [checkpoint.batch_id for checkpoint in checkpoints]
    assert batch_ids == [0, 1, 2]
    for earlier, later in zip(checkpoints, checkpoints[1:]):
        assert set(earlier.committed_sources) <= set(later.committed_sources)
    assert AirliftClient(config).table("airlines.flights").read().num_rows == 30


def test_crash_before_checkpoint_does_not_duplicate_rows(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Rerunning after a failed checkpoint write should absorb the committed batch."""
    source_dir = tmp_path / "source"
    write_day_file(source_dir / "part-00000", 2008, 1, 1, 25)
    config = _config(tmp_path)
    original_commit = CheckpointStore.commit

    def _failing_commit(self, checkpoint):
        raise WriteFailed("forced checkpoint failure")

    monkeypatch.setattr(CheckpointStore, "commit", _failing_commit)
    with pytest.raises(WriteFailed):
        run_trigger(_options(source_dir), config)
    monkeypatch.setattr(CheckpointStore, "commit", original_commit)

    result = run_trigger(_options(source_dir), config)

    table = AirliftClient(config).table("airlines.flights")
    assert result.duplicates_skipped == 1 and result.rows_written == 0
    assert result.checkpoint.batch_id == 0
    assert table.read().num_rows == 25 and table.list_versions()[-1].version == 1


def test_max_files_per_trigger_drains_over_several_triggers(tmp_path: Path) -> None:
    """Capped triggers should eventually commit every file exactly once."""
    source_dir = tmp_path / "source"
    for index in range(5):
        write_day_file(source_dir / f"part-{index:05d}", 2008, 3, index + 1, 4)
    config = _config(tmp_path)
    options = _options(source_dir, max_files_per_trigger=2)

    results = [run_trigger(options, config) for _ in range(4)]

    assert [result.files_written for result in results] == [2, 2, 1, 0]
    assert AirliftClient(config).table("airlines.flights").read().num_rows == 20


def test_explicit_checkpoint_and_table_locations(tmp_path: Path) -> None:
    """Pipelines may pin the checkpoint and data paths explicitly."""
    source_dir = tmp_path / "source"
    write_day_file(source_dir / "part-00000", 2008, 4, 1, 5)
    config = _config(tmp_path)
    options = _options(
        source_dir,
        checkpoint_dir=str(tmp_path / "checkpoints" / "flights"),
        table_location=str(tmp_path / "tables" / "flights"),
    )

    run_trigger(options, config)

    assert (tmp_path / "checkpoints" / "flights" / "checkpoint.json").exists()
    assert (tmp_path / "tables" / "flights" / "Year=2008" / "Month=4" / "DayOfMonth=1").is_dir()


def test_two_sources_with_same_file_names_feed_one_table(tmp_path: Path) -> None:
    """Same relative names under different sources should both be appended."""
    write_day_file(tmp_path / "src2008" / "part-00000", 2008, 1, 1, 5)
    write_day_file(tmp_path / "src2009" / "part-00000", 2009, 1, 1, 7)
    config = _config(tmp_path)

    first = run_trigger(
        _options(tmp_path / "src2008", checkpoint_dir=str(tmp_path / "cp2008")), config
    )
    second = run_trigger(
        _options(tmp_path / "src2009", checkpoint_dir=str(tmp_path / "cp2009")), config
    )

    table = AirliftClient(config).table("airlines.flights")
    assert first.rows_written == 5
    assert second.rows_written == 7 and second.duplicates_skipped == 0
    assert table.read().num_rows == 12


def test_second_source_cannot_reuse_first_sources_checkpoint(tmp_path: Path) -> None:
    """A checkpoint shared by two sources should stop the second one loudly."""
    write_day_file(tmp_path / "src2008" / "part-00000", 2008, 1, 1, 5)
    write_day_file(tmp_path / "src2009" / "part-00000", 2009, 1, 1, 7)
    config = _config(tmp_path)
    run_trigger(_options(tmp_path / "src2008"), config)

    with pytest.raises(AirliftConfigError, match="--checkpoint-dir"):
        run_trigger(_options(tmp_path / "src2009"), config)

    assert AirliftClient(config).table("airlines.flights").read().num_rows == 5


def test_empty_file_is_checkpointed_and_does_not_block_later_files(tmp_path: Path) -> None:
    """A zero-byte drop should be committed with no rows instead of failing every trigger."""
    source_dir = tmp_path / "source"
    source_dir.mkdir()
    (source_dir / "part-00000").write_bytes(b"")
    config = _config(tmp_path)

    first = run_trigger(_options(source_dir), config)
    write_day_file(source_dir / "part-00001", 2008, 2, 1, 4)
    second = run_trigger(_options(source_dir), config)

    assert first.files_written == 1 and first.rows_written == 0
    assert first.checkpoint.committed_sources == ("part-00000",)
    assert second.files_scanned == 1 and second.rows_written == 4
    assert AirliftClient(config).table("airlines.flights").read().num_rows == 4


def test_partial_write_is_retried_and_orphans_overwritten(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Data files written before a failed manifest publish should not leak into the table."""
    source_dir = tmp_path / "source"
    write_day_file(source_dir / "part-00000", 2008, 5, 1, 7)
    config = _config(tmp_path)
    open_pipeline_context(_options(source_dir), config)
    original_publish = PartitionedTable._publish

    def _failing_publish(self, version):
        raise WriteFailed("forced manifest failure")

    monkeypatch.setattr(PartitionedTable, "_publish", _failing_publish)
    with pytest.raises(WriteFailed):
        run_trigger(_options(source_dir), config)
    monkeypatch.setattr(PartitionedTable, "_publish", original_publish)

    table = AirliftClient(config).table("airlines.flights")
    orphans = list(table.location.rglob("part-*.parquet"))
    assert table.read().num_rows == 0 and len(orphans) == 1
    assert AirliftClient(config).checkpoint("airlines.flights") is None

    result = run_trigger(_options(source_dir), config)

    assert result.rows_written == 7 and result.table_version == 1
    assert table.read().num_rows == 7
    assert list(table.location.rglob("part-*.parquet")) == orphans
    assert table.partitions() == [
        {"Year": 2008, "Month": 5, "DayOfMonth": 1, "files": 1, "rows": 7},
    ]


def test_trigger_recovers_table_whose_creation_crashed(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A crash between table metadata and its first version should heal on the next trigger."""
    source_dir = tmp_path / "source"
    write_day_file(source_dir / "part-00000", 2008, 6, 1, 3)
    config = _config(tmp_path)
    original_publish = PartitionedTable._publish

    def _failing_publish(self, version):
        raise WriteFailed("forced create failure")

    monkeypatch.setattr(PartitionedTable, "_publish", _failing_publish)
    with pytest.raises(WriteFailed):
        run_trigger(_options(source_dir), config)
    monkeypatch.setattr(PartitionedTable, "_publish", original_publish)

    result = run_trigger(_options(source_dir), config)

    table = AirliftClient(config).table("airlines.flights")
    assert result.rows_written == 3
    assert [version.operation for version in table.list_versions()] == ["CREATE", "APPEND"]


def test_corrupt_checkpoint_stops_trigger_without_writing(tmp_path: Path) -> None:
    """An unreadable checkpoint should fail the trigger before any rows land."""
    source_dir = tmp_path / "source"
    write_day_file(source_dir / "part-00000", 2008, 7, 1, 2)
    config = _config(tmp_path)
    checkpoint_dir = tmp_path / "checkpoint"
    checkpoint_dir.mkdir()
    (checkpoint_dir / "checkpoint.json").write_text("{garbage", encoding="utf-8")

    with pytest.raises(CheckpointCorrupt):
        run_trigger(_options(source_dir, checkpoint_dir=str(checkpoint_dir)), config)

    table = AirliftClient(config).table("airlines.flights")
    assert table.read().num_rows == 0 and table.list_versions()[-1].version == 0
