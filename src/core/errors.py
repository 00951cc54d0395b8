"""Airlift exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each pipeline stage raises a specific error type so a failed trigger
can be reported and retried from the last known-good checkpoint.
"""

from __future__ import annotations


class AirliftError(Exception):
    """Base exception for all Airlift failures."""


class AirliftConfigError(AirliftError):
    """Raised for invalid runtime configuration."""


class SourceUnavailable(AirliftError):
    """Raised when new source data cannot be enumerated or read."""


class SchemaDriftError(AirliftError):
    """Raised when data or a declaration disagrees with the record schema."""


class CheckpointCorrupt(AirliftError):
    """Raised when durable checkpoint state cannot be read."""


class WriteFailed(AirliftError):
    """Raised when a table append could not be committed."""


class DuplicateDetected(AirliftError):
    """Raised when a batch identity is already committed to a table."""


class AirliftStoreError(AirliftError):
    """Raised for catalog and table lookup failures."""


class AirliftTriggerError(AirliftError):
    """Raised for invalid trigger state transitions or checkpoint regressions."""


class AirliftDependencyError(AirliftError):
    """Raised when an optional runtime dependency is missing."""
