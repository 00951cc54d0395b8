"""Core constants used across Airlift modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".airlift")
DEFAULT_DATABASE_NAME = "default"
CATALOG_FILE_NAME = "catalog.json"
WAREHOUSE_DIR_NAME = "warehouse"
CHECKPOINTS_DIR_NAME = "checkpoints"
CHECKPOINT_STATE_FILE_NAME = "checkpoint.json"
TABLE_LOG_DIR_NAME = "_table_log"
TABLE_METADATA_FILE_NAME = "table.json"
TABLE_VERSION_DIGITS = 20
DATA_FILE_PREFIX = "part-"
DATA_FILE_SUFFIX = ".parquet"
PARTITION_COLUMNS = ("Year", "Month", "DayOfMonth")
HASH_ALGORITHM = "sha256"
SOURCE_ID_LENGTH = 24
SUPPORTED_SOURCE_EXTENSIONS = (".csv", ".txt", "")
DEFAULT_DELIMITER = ","
SOURCE_NULL_VALUES = ("NA", "")
DEFAULT_HEAD_ROWS = 20
DEFAULT_SUMMARY_GROUP_COLUMN = "UniqueCarrier"
DEFAULT_SUMMARY_FLAG_COLUMN = "Cancelled"
DEFAULT_PLOT_FILE_NAME = "daily_cancellations.png"
