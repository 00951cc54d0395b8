"""Exactly-once append of source batches.

This module writes a trigger's batches into the target table as one
version and only then advances the checkpoint. Batches whose identity
the table already holds are absorbed, which makes a retry after a crash
between the write and the checkpoint harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from core.errors import DuplicateDetected
from core.logging_config import get_logger
from core.types import Checkpoint, SourceBatch
from ingest.checkpoint_store import CheckpointStore
from ingest.context import PipelineContext

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class AppendOutcome:
    """Result of writing one trigger's batches.

    Attributes:
        source_keys: Every source key seen, written or absorbed.
        written_keys: Source keys appended in this trigger.
        duplicate_keys: Source keys already committed to the table.
        rows_written: Rows appended in this trigger.
        table_version: Latest table version after the write.
    """

    source_keys: tuple[str, ...]
    written_keys: tuple[str, ...]
    duplicate_keys: tuple[str, ...]
    rows_written: int
    table_version: int


class AppendCommitter:
    """Sole writer of new partitions for one pipeline instance."""

    def __init__(self, context: PipelineContext, checkpoints: CheckpointStore) -> None:
        self._table = context.table
        self._source_root = context.source_root
        self._checkpoints = checkpoints

    def write(self, batches: Iterable[SourceBatch]) -> AppendOutcome:
        """Append uncommitted batches to the table as one version.

        Args:
            batches: Batches of the current trigger, consumed once.

        Returns:
            What was written and what was absorbed.

        Raises:
            SourceUnavailable: If reading a batch fails.
            SchemaDriftError: If a batch does not match the schema.
            WriteFailed: If the table append fails.
        """
        batch_list = list(batches)
        parent = self._table.current_version()
        fresh: list[SourceBatch] = []
        duplicates: list[str] = []
        for batch in batch_list:
            try:
                self._table.ensure_uncommitted(batch.source_id, parent)
            except DuplicateDetected:
                _LOGGER.info(
                    "duplicate_batch_skipped",
                    table=self._table.name,
                    source_key=batch.source_key,
                    source_id=batch.source_id,
                    table_version=parent.version,
                )
                duplicates.append(batch.source_key)
                continue
            fresh.append(batch)
        version = self._table.append(fresh) if fresh else parent
        return AppendOutcome(
            source_keys=tuple(batch.source_key for batch in batch_list),
            written_keys=tuple(batch.source_key for batch in fresh),
            duplicate_keys=tuple(duplicates),
            rows_written=sum(batch.row_count for batch in fresh),
            table_version=version.version,
        )

    def advance(self, previous: Checkpoint | None, outcome: AppendOutcome) -> Checkpoint | None:
        """Advance the checkpoint past everything ``outcome`` covered.

        Args:
            previous: Checkpoint loaded at the start of the trigger.
            outcome: Result of :meth:`write`.

        Returns:
            New checkpoint, or ``previous`` when the trigger saw no files.

        Raises:
            CheckpointCorrupt: If stored checkpoint state is unreadable.
            WriteFailed: If the checkpoint cannot be written.
        """
        if not outcome.source_keys:
            return previous
        committed = set(previous.committed_sources) if previous else set()
        committed.update(outcome.source_keys)
        checkpoint = Checkpoint(
            batch_id=previous.batch_id + 1 if previous else 0,
            committed_sources=tuple(sorted(committed)),
            table_version=outcome.table_version,
            committed_at=datetime.now(timezone.utc),
            source_uri=self._source_root,
        )
        self._checkpoints.commit(checkpoint)
        return checkpoint

    def commit(
        self,
        batches: Iterable[SourceBatch],
        previous: Checkpoint | None,
    ) -> Checkpoint | None:
        """Write batches and advance the checkpoint in that order."""
        return self.advance(previous, self.write(batches))
