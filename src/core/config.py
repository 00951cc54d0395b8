"""Runtime configuration model for Airlift.

Environment variables are read here and nowhere else. Values that can
also arrive on the command line share one parser, which names the
setting that was wrong in its error.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import DEFAULT_DATA_ROOT
from core.errors import AirliftConfigError

DATA_ROOT_ENV = "AIRLIFT_DATA_ROOT"
S3_REGION_ENV = "AIRLIFT_S3_REGION"
S3_PROFILE_ENV = "AIRLIFT_S3_PROFILE"
MAX_FILES_ENV = "AIRLIFT_MAX_FILES_PER_TRIGGER"


@dataclass(frozen=True)
class AirliftConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for the catalog, tables and checkpoints.
        s3_region: Optional default AWS region for S3 sources.
        s3_profile: Optional AWS profile for boto3 session initialization.
        max_files_per_trigger: Optional cap on source files read per trigger.
    """

    data_root: Path
    s3_region: str | None
    s3_profile: str | None
    max_files_per_trigger: int | None

    @classmethod
    def from_env(cls) -> "AirliftConfig":
        """Build config from process environment variables.

        Raises:
            AirliftConfigError: If environment values are invalid.
        """
        return cls(
            data_root=_parse_data_root(os.getenv(DATA_ROOT_ENV)),
            s3_region=_optional_env(S3_REGION_ENV),
            s3_profile=_optional_env(S3_PROFILE_ENV),
            max_files_per_trigger=parse_max_files_per_trigger(
                os.getenv(MAX_FILES_ENV), setting=MAX_FILES_ENV
            ),
        )


def parse_max_files_per_trigger(raw_value: str | None, setting: str = MAX_FILES_ENV) -> int | None:
    """Parse the per-trigger file cap.

    Args:
        raw_value: Raw string, or None when unset.
        setting: Environment variable or CLI flag the value came from.

    Returns:
        Positive integer cap, or None when unset or blank.

    Raises:
        AirliftConfigError: If value is not a positive integer.
    """
    if raw_value is None or not raw_value.strip():
        return None
    try:
        parsed_value = int(raw_value)
    except ValueError as error:
        raise AirliftConfigError(
            f"Invalid {setting} value: expected integer, got '{raw_value}'. "
            f"Set {setting} to a positive number or leave it unset."
        ) from error
    if parsed_value <= 0:
        raise AirliftConfigError(f"Invalid {setting} value {parsed_value}: must be positive.")
    return parsed_value


def _parse_data_root(raw_value: str | None) -> Path:
    if raw_value is None:
        return DEFAULT_DATA_ROOT.expanduser().resolve()
    if not raw_value.strip():
        raise AirliftConfigError(
            f"{DATA_ROOT_ENV} is set but empty. Point it at a directory or unset it."
        )
    return Path(raw_value).expanduser().resolve()


def _optional_env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None
