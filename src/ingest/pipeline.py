"""Trigger-once orchestration for the incremental append pipeline.

This module runs one trigger as an explicit finite-state pass:
IDLE -> SCANNING -> WRITING -> CHECKPOINTING -> IDLE. A failure in any
state returns to IDLE without advancing the checkpoint, so the next
trigger retries from the same position.
"""

from __future__ import annotations

from enum import Enum

from core.config import AirliftConfig
from core.errors import AirliftError, AirliftTriggerError
from core.logging_config import get_logger
from core.schema import RecordSchema
from core.types import Checkpoint, PipelineOptions, TriggerResult
from ingest.append_committer import AppendCommitter
from ingest.checkpoint_store import CheckpointStore
from ingest.context import PipelineContext, open_pipeline_context
from ingest.source_scanner import SourceScanner

_LOGGER = get_logger(__name__)


class TriggerState(str, Enum):
    """States of one trigger run."""

    IDLE = "idle"
    SCANNING = "scanning"
    WRITING = "writing"
    CHECKPOINTING = "checkpointing"


_ALLOWED_TRANSITIONS: dict[TriggerState, tuple[TriggerState, ...]] = {
    TriggerState.IDLE: (TriggerState.SCANNING,),
    TriggerState.SCANNING: (TriggerState.WRITING, TriggerState.IDLE),
    TriggerState.WRITING: (TriggerState.CHECKPOINTING, TriggerState.IDLE),
    TriggerState.CHECKPOINTING: (TriggerState.IDLE,),
}


class TriggerRunner:
    """Runs single trigger passes for one pipeline context."""

    def __init__(self, context: PipelineContext) -> None:
        self._context = context
        self._checkpoints = CheckpointStore(context.checkpoint_dir, context.source_root)
        self._scanner = SourceScanner(context)
        self._committer = AppendCommitter(context, self._checkpoints)
        self._state = TriggerState.IDLE
        self._history: list[TriggerState] = [TriggerState.IDLE]

    @property
    def state(self) -> TriggerState:
        return self._state

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    def run(self) -> TriggerResult:
        """Execute one trigger from scan through checkpoint.

        Returns:
            Trigger outcome including the visited states.

        Raises:
            AirliftError: Any pipeline failure, after returning to IDLE.
        """
        if self._state is not TriggerState.IDLE:
            raise AirliftTriggerError(
                f"Cannot start a trigger while in state '{self._state.value}'."
            )
        self._history = [TriggerState.IDLE]
        try:
            return self._run_pass()
        except AirliftError as error:
            _LOGGER.error(
                "trigger_failed",
                table=self._context.table.name,
                state=self._state.value,
                error_type=type(error).__name__,
                error=str(error),
            )
            raise
        finally:
            if self._state is not TriggerState.IDLE:
                self._transition(TriggerState.IDLE)

    def _run_pass(self) -> TriggerResult:
        self._transition(TriggerState.SCANNING)
        previous = self._checkpoints.load()
        scan = self._scanner.scan(previous)
        if len(scan) == 0:
            self._transition(TriggerState.IDLE)
            result = self._result(previous, 0, 0, 0, 0)
            _LOGGER.info("trigger_noop", table=self._context.table.name, batch_id=_batch_id(previous))
            return result
        _LOGGER.info(
            "trigger_scanned",
            table=self._context.table.name,
            source_root=self._context.source_root,
            files_pending=len(scan),
            bytes_pending=sum(source_file.size_bytes for source_file in scan.files),
        )
        self._transition(TriggerState.WRITING)
        outcome = self._committer.write(scan)
        self._transition(TriggerState.CHECKPOINTING)
        checkpoint = self._committer.advance(previous, outcome)
        self._transition(TriggerState.IDLE)
        result = self._result(
            checkpoint,
            len(scan),
            len(outcome.written_keys),
            len(outcome.duplicate_keys),
            outcome.rows_written,
        )
        _LOGGER.info(
            "trigger_completed",
            table=self._context.table.name,
            source_uri=self._context.options.source_uri,
            batch_id=_batch_id(checkpoint),
            files_scanned=result.files_scanned,
            files_written=result.files_written,
            duplicates_skipped=result.duplicates_skipped,
            rows_written=result.rows_written,
            table_version=result.table_version,
        )
        return result

    def _transition(self, target: TriggerState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self._state]:
            raise AirliftTriggerError(
                f"Invalid trigger transition {self._state.value} -> {target.value}."
            )
        _LOGGER.debug(
            "trigger_state_changed",
            table=self._context.table.name,
            from_state=self._state.value,
            to_state=target.value,
        )
        self._state = target
        self._history.append(target)

    def _result(
        self,
        checkpoint: Checkpoint | None,
        files_scanned: int,
        files_written: int,
        duplicates_skipped: int,
        rows_written: int,
    ) -> TriggerResult:
        return TriggerResult(
            checkpoint=checkpoint,
            files_scanned=files_scanned,
            files_written=files_written,
            duplicates_skipped=duplicates_skipped,
            rows_written=rows_written,
            table_version=self._context.table.current_version().version,
            states=tuple(state.value for state in self._history),
        )


def run_trigger(
    options: PipelineOptions,
    config: AirliftConfig,
    schema: RecordSchema | None = None,
) -> TriggerResult:
    """Open a pipeline context and run one trigger.

    Args:
        options: Pipeline options.
        config: Runtime configuration.
        schema: Optional record schema overriding ``options.schema_path``.

    Returns:
        Trigger outcome.
    """
    context = open_pipeline_context(options, config, schema)
    return TriggerRunner(context).run()


def _batch_id(checkpoint: Checkpoint | None) -> int | None:
    return checkpoint.batch_id if checkpoint else None
