"""Unit tests for ingest checkpoint storage."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

from core.errors import AirliftConfigError, AirliftTriggerError, CheckpointCorrupt, WriteFailed
from core.types import Checkpoint
from ingest import checkpoint_store
from ingest.checkpoint_store import CheckpointStore


def _checkpoint(batch_id: int, *sources: str) -> Checkpoint:
    return Checkpoint(
        batch_id=batch_id,
        committed_sources=tuple(sorted(sources)),
        table_version=batch_id + 1,
        committed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_load_without_state_returns_none(tmp_path: Path) -> None:
    """First run should see no checkpoint."""
    assert CheckpointStore(tmp_path / "checkpoint").load() is None


def test_checkpoint_roundtrip(tmp_path: Path) -> None:
    """Committed checkpoint should load back unchanged."""
    store = CheckpointStore(tmp_path / "checkpoint")
    expected = _checkpoint(0, "a.csv", "b.csv")
    store.commit(expected)

    loaded = store.load()

    assert loaded == expected


def test_commit_requires_increasing_batch_id(tmp_path: Path) -> None:
    """Checkpoint should refuse to move backwards."""
    store = CheckpointStore(tmp_path / "checkpoint")
    store.commit(_checkpoint(1, "a.csv"))

    with pytest.raises(AirliftTriggerError):
        store.commit(_checkpoint(1, "a.csv", "b.csv"))

    assert store.load().batch_id == 1


def test_commit_rejects_dropped_sources(tmp_path: Path) -> None:
    """Committed sources should only ever grow."""
    store = CheckpointStore(tmp_path / "checkpoint")
    store.commit(_checkpoint(0, "a.csv", "b.csv"))

    with pytest.raises(AirliftTriggerError):
        store.commit(_checkpoint(1, "b.csv"))

    assert store.load().committed_sources == ("a.csv", "b.csv")


def test_load_invalid_json_raises_corrupt(tmp_path: Path) -> None:
    """Unparseable state should fail loudly instead of restarting from scratch."""
    store = CheckpointStore(tmp_path / "checkpoint")
    store.state_path.parent.mkdir(parents=True)
    store.state_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(CheckpointCorrupt):
        store.load()

    assert store.state_path.exists()


def test_load_missing_fields_raises_corrupt(tmp_path: Path) -> None:
    """State without required fields is corrupt."""
    store = CheckpointStore(tmp_path / "checkpoint")
    store.state_path.parent.mkdir(parents=True)
    store.state_path.write_text('{"format_version": 1}', encoding="utf-8")

    with pytest.raises(CheckpointCorrupt):
        store.load()


def test_commit_write_failure_raises_write_failed(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """IO errors while persisting should surface as WriteFailed."""
    store = CheckpointStore(tmp_path / "checkpoint")

    def _failing_write(path, payload):
        raise OSError("read-only file system")

    monkeypatch.setattr(checkpoint_store, "write_json_atomic", _failing_write)
    with pytest.raises(WriteFailed):
        store.commit(_checkpoint(0, "a.csv"))

    assert store.load() is None


def test_clear_removes_state(tmp_path: Path) -> None:
    """Clearing should make the next load start from scratch."""
    store = CheckpointStore(tmp_path / "checkpoint")
    store.commit(_checkpoint(0, "a.csv"))

    store.clear()

    assert store.load() is None


def test_load_rejects_checkpoint_of_another_source(tmp_path: Path) -> None:
    """A checkpoint directory reused for a different source should fail loudly."""
    CheckpointStore(tmp_path / "checkpoint", "/data/src2008").commit(
        replace(_checkpoint(0, "part-00000"), source_uri="/data/src2008")
    )

    with pytest.raises(AirliftConfigError, match="--checkpoint-dir"):
        CheckpointStore(tmp_path / "checkpoint", "/data/src2009").load()


def test_load_keeps_source_of_checkpoint(tmp_path: Path) -> None:
    """The tracked source should round-trip through the state file."""
    store = CheckpointStore(tmp_path / "checkpoint", "s3://bucket/airlines/")
    store.commit(replace(_checkpoint(0, "part-00000"), source_uri="s3://bucket/airlines/"))

    assert store.load().source_uri == "s3://bucket/airlines/"


def test_commit_rejects_switching_source(tmp_path: Path) -> None:
    """A commit may not move a checkpoint from one source to another."""
    store = CheckpointStore(tmp_path / "checkpoint")
    store.commit(replace(_checkpoint(0, "a.csv"), source_uri="/data/src2008"))

    with pytest.raises(AirliftTriggerError):
        store.commit(replace(_checkpoint(1, "a.csv", "b.csv"), source_uri="/data/src2009"))

    assert store.load().source_uri == "/data/src2008"
