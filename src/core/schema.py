"""Declared record schema for source rows.

This module replaces per-run schema inference with one statically
declared list of fields. The schema is validated once when a pipeline
starts, and rows that disagree with it raise a typed drift error.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence, cast

import pyarrow as pa

from core.constants import PARTITION_COLUMNS
from core.errors import AirliftDependencyError, SchemaDriftError

_ARROW_TYPES: dict[str, pa.DataType] = {
    "integer": pa.int32(),
    "long": pa.int64(),
    "double": pa.float64(),
    "string": pa.string(),
    "boolean": pa.bool_(),
}
_PARTITION_TYPES = ("integer", "long")


@dataclass(frozen=True)
class FieldSpec:
    """One declared column.

    Attributes:
        name: Column name, position in the schema defines the source column order.
        type: Semantic type name, one of ``integer``, ``long``, ``double``,
            ``string`` or ``boolean``.
    """

    name: str
    type: str


@dataclass(frozen=True)
class RecordSchema:
    """Ordered, typed record declaration."""

    fields: tuple[FieldSpec, ...]

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(field_spec.name for field_spec in self.fields)

    @property
    def data_columns(self) -> tuple[str, ...]:
        """Columns stored inside data files, partition columns excluded."""
        return tuple(name for name in self.column_names if name not in PARTITION_COLUMNS)

    def validate(self) -> None:
        """Validate the declaration before any data is read.

        Raises:
            SchemaDriftError: If names repeat, types are unknown, or
                partition columns are missing or not integers.
        """
        if not self.fields:
            raise SchemaDriftError("Record schema declares no fields. Add at least one field.")
        seen_names: set[str] = set()
        for field_spec in self.fields:
            if field_spec.name in seen_names:
                raise SchemaDriftError(
                    f"Record schema declares column '{field_spec.name}' more than once."
                )
            seen_names.add(field_spec.name)
            if field_spec.type not in _ARROW_TYPES:
                raise SchemaDriftError(
                    f"Unsupported type '{field_spec.type}' for column '{field_spec.name}'. "
                    f"Use one of: {', '.join(_ARROW_TYPES)}."
                )
        for column in PARTITION_COLUMNS:
            if column not in seen_names:
                raise SchemaDriftError(
                    f"Record schema is missing partition column '{column}'. "
                    f"Partition columns are {', '.join(PARTITION_COLUMNS)}."
                )
            if self.field_type(column) not in _PARTITION_TYPES:
                raise SchemaDriftError(
                    f"Partition column '{column}' must be integer or long, "
                    f"got '{self.field_type(column)}'."
                )

    def field_type(self, name: str) -> str:
        for field_spec in self.fields:
            if field_spec.name == name:
                return field_spec.type
        raise SchemaDriftError(f"Column '{name}' is not declared in the record schema.")

    def arrow_type(self, name: str) -> pa.DataType:
        return _ARROW_TYPES[self.field_type(name)]

    def arrow_schema(self) -> pa.Schema:
        """Return the full Arrow schema in declared column order."""
        return pa.schema(
            [pa.field(field_spec.name, _ARROW_TYPES[field_spec.type]) for field_spec in self.fields]
        )

    def partition_schema(self) -> pa.Schema:
        return pa.schema([pa.field(name, self.arrow_type(name)) for name in PARTITION_COLUMNS])

    def coerce_value(self, name: str, raw_value: str) -> Any:
        """Convert a textual filter value into the column's Python type.

        Args:
            name: Declared column name.
            raw_value: Value as typed by a user.

        Returns:
            Converted value.

        Raises:
            SchemaDriftError: If the value does not fit the column type.
        """
        column_type = self.field_type(name)
        try:
            if column_type in ("integer", "long"):
                return int(raw_value)
            if column_type == "double":
                return float(raw_value)
        except ValueError as error:
            raise SchemaDriftError(
                f"Value '{raw_value}' is not a valid {column_type} for column '{name}'."
            ) from error
        if column_type == "boolean":
            return raw_value.strip().lower() in ("1", "true", "yes")
        return raw_value

    def to_payload(self) -> list[dict[str, str]]:
        return [{"name": field_spec.name, "type": field_spec.type} for field_spec in self.fields]


def schema_from_payload(payload: Sequence[object]) -> RecordSchema:
    """Build a schema from a ``[{name, type}]`` payload.

    Args:
        payload: Field rows from JSON or YAML.

    Returns:
        Unvalidated record schema.

    Raises:
        SchemaDriftError: If a row is not a name/type mapping.
    """
    fields: list[FieldSpec] = []
    for index, row in enumerate(payload):
        if not isinstance(row, Mapping):
            raise SchemaDriftError(f"Schema field #{index + 1} must be a mapping with name and type.")
        name = row.get("name")
        type_name = row.get("type")
        if not isinstance(name, str) or not isinstance(type_name, str):
            raise SchemaDriftError(
                f"Schema field #{index + 1} requires string 'name' and 'type' entries."
            )
        fields.append(FieldSpec(name=name.strip(), type=type_name.strip().lower()))
    return RecordSchema(fields=tuple(fields))


def load_record_schema(schema_path: str) -> RecordSchema:
    """Load and validate a YAML schema declaration.

    The file holds a ``fields`` list of ``{name, type}`` entries in
    source column order.

    Args:
        schema_path: Path to the YAML schema file.

    Returns:
        Validated record schema.

    Raises:
        AirliftDependencyError: If PyYAML is unavailable.
        SchemaDriftError: If the file is missing or malformed.
    """
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:  # pragma: no cover - dependency failure
        raise AirliftDependencyError(
            "YAML schema files require PyYAML. Install with 'pip install pyyaml'."
        ) from error
    schema_file = Path(schema_path).expanduser().resolve()
    if not schema_file.exists():
        raise SchemaDriftError(f"Schema file does not exist at {schema_file}.")
    try:
        payload = cast(object, yaml.safe_load(schema_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise SchemaDriftError(f"Failed to read schema file at {schema_file}: {error}.") from error
    except yaml.YAMLError as error:
        raise SchemaDriftError(
            f"Failed to parse YAML schema at {schema_file}: {error}. Fix YAML syntax and retry."
        ) from error
    if not isinstance(payload, Mapping) or not isinstance(payload.get("fields"), list):
        raise SchemaDriftError(
            f"Schema file at {schema_file} must define a 'fields' list of name/type entries."
        )
    schema = schema_from_payload(payload["fields"])
    schema.validate()
    return schema


def default_airline_schema() -> RecordSchema:
    """Return the column layout of the public airline on-time dataset."""
    columns = (
        ("Year", "integer"),
        ("Month", "integer"),
        ("DayOfMonth", "integer"),
        ("DayOfWeek", "integer"),
        ("DepTime", "string"),
        ("CRSDepTime", "integer"),
        ("ArrTime", "string"),
        ("CRSArrTime", "integer"),
        ("UniqueCarrier", "string"),
        ("FlightNum", "integer"),
        ("TailNum", "string"),
        ("ActualElapsedTime", "string"),
        ("CRSElapsedTime", "integer"),
        ("AirTime", "string"),
        ("ArrDelay", "string"),
        ("DepDelay", "string"),
        ("Origin", "string"),
        ("Dest", "string"),
        ("Distance", "string"),
        ("TaxiIn", "string"),
        ("TaxiOut", "string"),
        ("Cancelled", "integer"),
        ("CancellationCode", "string"),
        ("Diverted", "integer"),
        ("CarrierDelay", "string"),
        ("WeatherDelay", "string"),
        ("NASDelay", "string"),
        ("SecurityDelay", "string"),
        ("LateAircraftDelay", "string"),
        ("IsArrDelayed", "string"),
        ("IsDepDelayed", "string"),
    )
    return RecordSchema(fields=tuple(FieldSpec(name=name, type=kind) for name, kind in columns))
