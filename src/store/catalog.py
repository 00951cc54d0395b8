"""Database and table catalog.

This module maps ``database.table`` names onto table locations.
It mirrors the create-if-not-exists flow used to register a table
over an existing data path, and backs catalog browsing commands.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, cast

from core.config import AirliftConfig
from core.constants import CATALOG_FILE_NAME, DEFAULT_DATABASE_NAME, WAREHOUSE_DIR_NAME
from core.errors import AirliftStoreError
from core.logging_config import get_logger
from core.schema import RecordSchema
from store.json_io import read_json_object, write_json_atomic
from store.partitioned_table import PartitionedTable

_LOGGER = get_logger(__name__)
_CATALOG_HINT = "Repair or delete the catalog file and re-register tables."


def split_table_name(table_name: str) -> tuple[str, str]:
    """Split ``database.table`` into parts, defaulting the database.

    Raises:
        AirliftStoreError: If the name is empty or has more than two parts.
    """
    parts = table_name.strip().split(".")
    if len(parts) == 1 and parts[0]:
        return DEFAULT_DATABASE_NAME, parts[0]
    if len(parts) == 2 and all(parts):
        return parts[0], parts[1]
    raise AirliftStoreError(
        f"Invalid table name '{table_name}': expected 'table' or 'database.table'."
    )


class TableCatalog:
    """Filesystem-backed catalog rooted at the configured data root."""

    def __init__(self, config: AirliftConfig) -> None:
        self._data_root = config.data_root
        self._catalog_path = config.data_root / CATALOG_FILE_NAME

    def create_database(self, database: str) -> None:
        """Register a database if it does not exist yet."""
        catalog = self._read()
        databases = cast(dict[str, Any], catalog["databases"])
        if database in databases:
            return
        databases[database] = {"tables": {}}
        self._write(catalog)
        _LOGGER.info("database_created", database=database)

    def list_databases(self) -> list[str]:
        return sorted(cast(dict[str, Any], self._read()["databases"]))

    def list_tables(self, database: str = DEFAULT_DATABASE_NAME) -> list[str]:
        """List table names in a database.

        Raises:
            AirliftStoreError: If the database is unknown.
        """
        return sorted(self._database_entry(self._read(), database)["tables"])

    def create_table(
        self,
        table_name: str,
        schema: RecordSchema,
        location: str | None = None,
        if_not_exists: bool = True,
    ) -> PartitionedTable:
        """Create and register a table, creating its database when needed.

        Args:
            table_name: ``database.table`` or bare table name.
            schema: Validated record schema.
            location: Optional data path; defaults under the warehouse directory.
            if_not_exists: Return the existing table instead of failing.

        Returns:
            Table handle.

        Raises:
            AirliftStoreError: If the table exists and ``if_not_exists`` is false.
            SchemaDriftError: If an existing table declares a different schema.
        """
        database, table = split_table_name(table_name)
        self.create_database(database)
        catalog = self._read()
        tables = self._database_entry(catalog, database)["tables"]
        if table in tables:
            if not if_not_exists:
                raise AirliftStoreError(f"Table '{database}.{table}' already exists.")
            existing_location = Path(str(tables[table]["location"]))
            return PartitionedTable.create(f"{database}.{table}", existing_location, schema)
        table_location = (
            Path(location).expanduser().resolve()
            if location
            else self._data_root / WAREHOUSE_DIR_NAME / database / table
        )
        handle = PartitionedTable.create(f"{database}.{table}", table_location, schema)
        tables[table] = {
            "location": str(handle.location),
            "registered_at": datetime.now(timezone.utc).isoformat(),
        }
        self._write(catalog)
        return handle

    def table(self, table_name: str) -> PartitionedTable:
        """Open a registered table.

        Raises:
            AirliftStoreError: If database or table is unknown.
        """
        database, table = split_table_name(table_name)
        tables = self._database_entry(self._read(), database)["tables"]
        if table not in tables:
            raise AirliftStoreError(
                f"Table '{database}.{table}' not found. "
                "Run a trigger or create the table before reading it."
            )
        return PartitionedTable.open(f"{database}.{table}", Path(str(tables[table]["location"])))

    def _database_entry(self, catalog: dict[str, Any], database: str) -> dict[str, Any]:
        databases = cast(dict[str, Any], catalog["databases"])
        if database not in databases:
            raise AirliftStoreError(
                f"Database '{database}' not found. Known databases: "
                f"{', '.join(sorted(databases)) or '-'}."
            )
        return cast(dict[str, Any], databases[database])

    def _read(self) -> dict[str, Any]:
        if not self._catalog_path.exists():
            return {"databases": {DEFAULT_DATABASE_NAME: {"tables": {}}}}
        catalog = read_json_object(self._catalog_path, AirliftStoreError, _CATALOG_HINT)
        if not isinstance(catalog.get("databases"), dict):
            raise AirliftStoreError(
                f"Catalog at {self._catalog_path} has no 'databases' object. {_CATALOG_HINT}"
            )
        return catalog

    def _write(self, catalog: dict[str, Any]) -> None:
        write_json_atomic(self._catalog_path, catalog)
