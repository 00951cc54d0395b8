"""Public SDK surface for Airlift.

This module provides a stable import path for pipeline users.
It re-exports the primary client and typed option models.
"""

from __future__ import annotations

from core.config import AirliftConfig
from core.errors import (
    AirliftError,
    CheckpointCorrupt,
    DuplicateDetected,
    SchemaDriftError,
    SourceUnavailable,
    WriteFailed,
)
from core.schema import FieldSpec, RecordSchema, default_airline_schema, load_record_schema
from core.types import Checkpoint, PipelineOptions, TableFilter, TableVersion, TriggerResult
from ingest.pipeline import TriggerRunner, TriggerState, run_trigger
from store.table_sdk import AirliftClient, TableHandle

__all__ = [
    "AirliftClient",
    "AirliftConfig",
    "AirliftError",
    "Checkpoint",
    "CheckpointCorrupt",
    "DuplicateDetected",
    "FieldSpec",
    "PipelineOptions",
    "RecordSchema",
    "SchemaDriftError",
    "SourceUnavailable",
    "TableFilter",
    "TableHandle",
    "TableVersion",
    "TriggerResult",
    "TriggerRunner",
    "TriggerState",
    "WriteFailed",
    "default_airline_schema",
    "load_record_schema",
    "run_trigger",
]
