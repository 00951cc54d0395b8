"""Stable batch identities.

This module derives the identity used to make appends idempotent.
The same source root and key always map to the same identity, and the
same key under two different roots never does.
"""

from __future__ import annotations

import hashlib

from core.constants import HASH_ALGORITHM, SOURCE_ID_LENGTH


def build_source_id(source_root: str, source_key: str) -> str:
    """Build a stable identity for a source key under its root.

    Args:
        source_root: Normalized source location the key is relative to.
        source_key: Relative source path, object key, or derived-table key.

    Returns:
        Truncated hex digest safe to embed in file names.
    """
    hasher = hashlib.new(HASH_ALGORITHM)
    hasher.update(source_root.encode("utf-8"))
    hasher.update(b"\n")
    hasher.update(source_key.encode("utf-8"))
    return hasher.hexdigest()[:SOURCE_ID_LENGTH]
