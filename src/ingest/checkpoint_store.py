"""Ingest checkpoint persistence.

This module stores the last committed trigger of one pipeline instance.
It enables restart from the last known-good position across process
restarts, and refuses to move that position backwards.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from core.constants import CHECKPOINT_STATE_FILE_NAME
from core.errors import AirliftConfigError, AirliftTriggerError, CheckpointCorrupt, WriteFailed
from core.logging_config import get_logger
from core.types import Checkpoint
from store.json_io import read_json_object, write_json_atomic

_LOGGER = get_logger(__name__)
_CHECKPOINT_FORMAT_VERSION = 1
_CORRUPT_HINT = (
    "The pipeline cannot continue safely. Restore the checkpoint file or clear it "
    "and re-ingest into an empty table."
)


class CheckpointStore:
    """Filesystem-backed checkpoint store owned by one pipeline instance."""

    def __init__(self, checkpoint_dir: Path, source_uri: str | None = None) -> None:
        self._checkpoint_dir = checkpoint_dir
        self._source_uri = source_uri

    @property
    def state_path(self) -> Path:
        return self._checkpoint_dir / CHECKPOINT_STATE_FILE_NAME

    def load(self) -> Checkpoint | None:
        """Read durable checkpoint state.

        Returns:
            Last committed checkpoint, or None on first run.

        Raises:
            CheckpointCorrupt: If the state file exists but cannot be parsed.
            AirliftConfigError: If the state belongs to a different source.
        """
        state_path = self.state_path
        if not state_path.exists():
            return None
        payload = read_json_object(state_path, CheckpointCorrupt, _CORRUPT_HINT)
        try:
            checkpoint = _checkpoint_from_payload(payload)
        except (KeyError, TypeError, ValueError) as error:
            raise CheckpointCorrupt(
                f"Invalid checkpoint state at {state_path}: {error}. {_CORRUPT_HINT}"
            ) from error
        if self._source_uri is not None and checkpoint.source_uri != self._source_uri:
            raise AirliftConfigError(
                f"Checkpoint at {state_path} tracks source {checkpoint.source_uri}, "
                f"not {self._source_uri}. Pass a separate --checkpoint-dir for each source "
                "that feeds this table."
            )
        return checkpoint

    def commit(self, checkpoint: Checkpoint) -> None:
        """Atomically replace the stored checkpoint.

        Args:
            checkpoint: Next checkpoint; must follow the stored one.

        Raises:
            CheckpointCorrupt: If the stored checkpoint is unreadable.
            AirliftConfigError: If the stored checkpoint belongs to a different source.
            AirliftTriggerError: If ``checkpoint`` would move progress backwards.
            WriteFailed: If the new state cannot be written.
        """
        current = self.load()
        if current is not None:
            _ensure_monotonic(current, checkpoint)
        try:
            write_json_atomic(self.state_path, _checkpoint_to_payload(checkpoint))
        except OSError as error:
            raise WriteFailed(
                f"Failed to write checkpoint state at {self.state_path}: {error}. "
                "The trigger can be retried safely."
            ) from error
        _LOGGER.info(
            "checkpoint_committed",
            checkpoint_path=str(self.state_path),
            batch_id=checkpoint.batch_id,
            table_version=checkpoint.table_version,
            committed_sources=len(checkpoint.committed_sources),
        )

    def clear(self) -> None:
        """Remove checkpoint state so the next trigger starts from scratch."""
        self.state_path.unlink(missing_ok=True)


def _ensure_monotonic(current: Checkpoint, candidate: Checkpoint) -> None:
    if candidate.source_uri != current.source_uri:
        raise AirliftTriggerError(
            f"Refusing checkpoint batch {candidate.batch_id}: it tracks source "
            f"{candidate.source_uri}, but the stored checkpoint tracks {current.source_uri}."
        )
    if candidate.batch_id <= current.batch_id:
        raise AirliftTriggerError(
            f"Refusing checkpoint batch {candidate.batch_id}: stored checkpoint is already "
            f"at batch {current.batch_id}. Another run may have advanced this pipeline."
        )
    missing = set(current.committed_sources) - set(candidate.committed_sources)
    if missing:
        raise AirliftTriggerError(
            f"Refusing checkpoint batch {candidate.batch_id}: it drops "
            f"{len(missing)} committed source files."
        )


def _checkpoint_to_payload(checkpoint: Checkpoint) -> dict[str, Any]:
    return {
        "format_version": _CHECKPOINT_FORMAT_VERSION,
        "batch_id": checkpoint.batch_id,
        "committed_sources": list(checkpoint.committed_sources),
        "table_version": checkpoint.table_version,
        "committed_at": checkpoint.committed_at.isoformat(),
        "source_uri": checkpoint.source_uri,
    }


def _checkpoint_from_payload(payload: dict[str, Any]) -> Checkpoint:
    format_version = int(payload["format_version"])
    if format_version != _CHECKPOINT_FORMAT_VERSION:
        raise ValueError(f"unsupported checkpoint format {format_version}")
    raw_sources = payload["committed_sources"]
    if not isinstance(raw_sources, list):
        raise TypeError("committed_sources must be a list")
    return Checkpoint(
        batch_id=int(payload["batch_id"]),
        committed_sources=tuple(str(source_key) for source_key in raw_sources),
        table_version=int(payload["table_version"]),
        committed_at=datetime.fromisoformat(str(payload["committed_at"])),
        source_uri=str(payload["source_uri"]),
    )
