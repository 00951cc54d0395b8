"""Atomic JSON document persistence.

This module isolates JSON IO shared by the catalog, table log and
checkpoint store. Writes go through a temporary file and a rename so
readers never observe a partially written document.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from core.errors import AirliftError


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Replace ``path`` with ``payload`` in one rename.

    Args:
        path: Destination JSON path.
        payload: JSON-serializable mapping.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(temp_path, path)


def publish_json_exclusive(path: Path, payload: dict[str, Any]) -> bool:
    """Create ``path`` with ``payload`` only if it does not exist yet.

    The document is staged in a temporary file and hard-linked into
    place, so it appears complete or not at all.

    Args:
        path: Destination JSON path.
        payload: JSON-serializable mapping.

    Returns:
        ``True`` when published, ``False`` when ``path`` already existed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    temp_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    try:
        os.link(temp_path, path)
    except FileExistsError:
        return False
    finally:
        temp_path.unlink(missing_ok=True)
    return True


def read_json_object(path: Path, error_type: type[AirliftError], hint: str) -> dict[str, Any]:
    """Read and validate a JSON object document.

    Args:
        path: JSON document path.
        error_type: Domain error raised on failure.
        hint: Operator action appended to error messages.

    Returns:
        Parsed object payload.

    Raises:
        AirliftError: ``error_type`` when the file is unreadable or not an object.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise error_type(f"Failed to read {path}: {error}. {hint}") from error
    except json.JSONDecodeError as error:
        raise error_type(f"Failed to parse {path}: {error.msg}. {hint}") from error
    if not isinstance(payload, dict):
        raise error_type(f"Failed to parse {path}: expected JSON object at top level. {hint}")
    return payload
