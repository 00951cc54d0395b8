"""Filtered re-extraction into a derived table.

This module copies the rows of a committed table that match a predicate
into a second table in one append. It is a one-shot copy, separate from
the incremental pipeline, but re-running it against the same source
version is absorbed rather than duplicating rows.
"""

from __future__ import annotations

from core.errors import DuplicateDetected
from core.identity import build_source_id
from core.logging_config import get_logger
from core.types import SourceBatch, TableFilter, TableVersion
from store.catalog import TableCatalog

_LOGGER = get_logger(__name__)


def extract_table(
    catalog: TableCatalog,
    source_name: str,
    table_filter: TableFilter,
    target_name: str,
    target_location: str | None = None,
) -> TableVersion:
    """Publish the filtered rows of ``source_name`` into ``target_name``.

    Args:
        catalog: Catalog holding both tables.
        source_name: Committed table to read.
        table_filter: Equality predicate, e.g. ``{"Year": 2008, "Month": 12}``.
        target_name: Derived table, created with the source schema if missing.
        target_location: Optional data path for a newly created target.

    Returns:
        Latest version of the derived table.

    Raises:
        AirliftStoreError: If the source table is unknown.
        SchemaDriftError: If the target exists with another schema.
        WriteFailed: If the append fails.
    """
    source = catalog.table(source_name)
    source_version = source.current_version()
    rows = source.read(source_version.version, table_filter)
    target = catalog.create_table(target_name, source.schema, location=target_location)
    extract_key = f"{source.name}@{source_version.version}?{table_filter.describe()}"
    batch = SourceBatch(
        offset=0,
        source_key=extract_key,
        source_id=build_source_id(source.location.as_posix(), extract_key),
        table=rows,
    )
    try:
        target.ensure_uncommitted(batch.source_id)
    except DuplicateDetected:
        _LOGGER.info("extract_already_committed", source=source.name, target=target.name)
        return target.current_version()
    version = target.append([batch])
    _LOGGER.info(
        "table_extracted",
        source=source.name,
        source_version=source_version.version,
        target=target.name,
        target_version=version.version,
        filter=table_filter.describe(),
        row_count=rows.num_rows,
    )
    return version
