"""Airlift CLI entry points.
This module exposes trigger, catalog, and table inspection commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

import pyarrow as pa

from core.config import AirliftConfig, parse_max_files_per_trigger
from core.constants import (
    DEFAULT_DELIMITER,
    DEFAULT_HEAD_ROWS,
    DEFAULT_SUMMARY_FLAG_COLUMN,
    DEFAULT_SUMMARY_GROUP_COLUMN,
)
from core.errors import AirliftConfigError, AirliftError
from core.types import PipelineOptions, TableFilter
from store.table_sdk import AirliftClient, TableHandle


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="airlift", description="Airlift incremental append CLI")
    parser.add_argument("--data-root", help="Override AIRLIFT_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_trigger_command(subparsers)
    _add_checkpoint_command(subparsers)
    _add_databases_command(subparsers)
    _add_tables_command(subparsers)
    _add_versions_command(subparsers)
    _add_head_command(subparsers)
    _add_extract_command(subparsers)
    _add_optimize_command(subparsers)
    _add_summary_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Airlift CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.data_root)
        return _dispatch(parser, client, args)
    except AirliftError as error:
        print(f"error: {error}", file=sys.stderr)
        return 1


def _dispatch(parser: argparse.ArgumentParser, client: AirliftClient, args: argparse.Namespace) -> int:
    if args.command == "trigger":
        return _run_trigger_command(client, args)
    if args.command == "checkpoint":
        return _run_checkpoint_command(client, args)
    if args.command == "databases":
        return _run_databases_command(client)
    if args.command == "tables":
        return _run_tables_command(client, args)
    if args.command == "versions":
        return _run_versions_command(client, args)
    if args.command == "head":
        return _run_head_command(client, args)
    if args.command == "extract":
        return _run_extract_command(client, args)
    if args.command == "optimize":
        return _run_optimize_command(client, args)
    if args.command == "summary":
        return _run_summary_command(client, args)
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None) -> AirliftClient:
    """Build SDK client with optional data-root override.

    Args:
        data_root: Optional override path.

    Returns:
        Configured SDK client.
    """
    config = AirliftConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return AirliftClient(config)


def _add_trigger_command(subparsers: Any) -> None:
    """Register trigger subcommand."""
    parser = subparsers.add_parser(
        "trigger",
        help="Append new source files to a table exactly once, then stop",
    )
    parser.add_argument("source", help="Source directory or s3://bucket/prefix")
    parser.add_argument("--table", required=True, help="Target table, e.g. airlines.flights")
    parser.add_argument("--checkpoint-dir", help="Checkpoint directory for this pipeline")
    parser.add_argument("--schema-file", help="YAML schema declaration; airline schema by default")
    parser.add_argument("--table-location", help="Data path used when the table is created")
    parser.add_argument("--delimiter", default=DEFAULT_DELIMITER, help="Field delimiter")
    parser.add_argument(
        "--no-header",
        action="store_true",
        help=(
            "Source files have no header line. Without this flag the first line of "
            "every file is skipped, so a headerless file loses its first row"
        ),
    )
    parser.add_argument(
        "--max-files-per-trigger",
        help="Read at most this many new files; overrides AIRLIFT_MAX_FILES_PER_TRIGGER",
    )


def _add_checkpoint_command(subparsers: Any) -> None:
    """Register checkpoint subcommand."""
    parser = subparsers.add_parser("checkpoint", help="Show or reset the stored pipeline checkpoint")
    parser.add_argument("--table", required=True, help="Target table of the pipeline")
    parser.add_argument("--checkpoint-dir", help="Checkpoint directory for this pipeline")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete the checkpoint; the next trigger rescans the source",
    )


def _add_databases_command(subparsers: Any) -> None:
    subparsers.add_parser("databases", help="List catalog databases")


def _add_tables_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("tables", help="List tables in a database")
    parser.add_argument("--database", help="Database name; default database when omitted")


def _add_versions_command(subparsers: Any) -> None:
    """Register versions subcommand."""
    parser = subparsers.add_parser("versions", help="List table versions")
    parser.add_argument("--table", required=True, help="Table name")


def _add_head_command(subparsers: Any) -> None:
    """Register head subcommand."""
    parser = subparsers.add_parser("head", help="Print the first rows of a table")
    parser.add_argument("--table", required=True, help="Table name")
    parser.add_argument("--rows", type=int, default=DEFAULT_HEAD_ROWS, help="Rows to print")


def _add_extract_command(subparsers: Any) -> None:
    """Register extract subcommand."""
    parser = subparsers.add_parser(
        "extract",
        help="Copy filtered rows of a table into a derived table",
    )
    parser.add_argument("--table", required=True, help="Source table name")
    parser.add_argument("--target", required=True, help="Derived table name")
    parser.add_argument(
        "--where",
        action="append",
        default=[],
        metavar="COLUMN=VALUE",
        help="Equality constraint; repeat to combine with AND",
    )
    parser.add_argument("--target-location", help="Data path used when the target is created")


def _add_optimize_command(subparsers: Any) -> None:
    parser = subparsers.add_parser("optimize", help="Compact small files in each partition")
    parser.add_argument("--table", required=True, help="Table name")


def _add_summary_command(subparsers: Any) -> None:
    """Register summary subcommand."""
    parser = subparsers.add_parser("summary", help="Print per-day grouped counts")
    parser.add_argument("--table", required=True, help="Table name")
    parser.add_argument(
        "--group-column",
        default=DEFAULT_SUMMARY_GROUP_COLUMN,
        help="Column grouped within each day",
    )
    parser.add_argument(
        "--flag-column",
        default=DEFAULT_SUMMARY_FLAG_COLUMN,
        help="0/1 column counted per group",
    )
    parser.add_argument(
        "--where",
        action="append",
        default=[],
        metavar="COLUMN=VALUE",
        help="Equality constraint; repeat to combine with AND",
    )
    parser.add_argument("--plot", help="Directory receiving a stacked bar chart PNG")


def _run_trigger_command(client: AirliftClient, args: argparse.Namespace) -> int:
    """Handle trigger command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    options = PipelineOptions(
        source_uri=args.source,
        table_name=args.table,
        checkpoint_dir=args.checkpoint_dir,
        schema_path=args.schema_file,
        header=not args.no_header,
        delimiter=args.delimiter,
        max_files_per_trigger=parse_max_files_per_trigger(
            args.max_files_per_trigger, setting="--max-files-per-trigger"
        ),
        table_location=args.table_location,
    )
    result = client.trigger(options)
    batch_id = result.checkpoint.batch_id if result.checkpoint else "-"
    print(f"batch_id={batch_id}")
    print(f"files_scanned={result.files_scanned}")
    print(f"files_written={result.files_written}")
    print(f"duplicates_skipped={result.duplicates_skipped}")
    print(f"rows_written={result.rows_written}")
    print(f"table_version={result.table_version}")
    return 0


def _run_checkpoint_command(client: AirliftClient, args: argparse.Namespace) -> int:
    """Handle checkpoint command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    if args.reset:
        client.reset_checkpoint(args.table, args.checkpoint_dir)
        print("checkpoint=reset")
        return 0
    checkpoint = client.checkpoint(args.table, args.checkpoint_dir)
    if checkpoint is None:
        print("checkpoint=none")
        return 0
    print(f"source_uri={checkpoint.source_uri}")
    print(f"batch_id={checkpoint.batch_id}")
    print(f"table_version={checkpoint.table_version}")
    print(f"committed_at={checkpoint.committed_at.isoformat()}")
    print(f"committed_sources={len(checkpoint.committed_sources)}")
    return 0


def _run_databases_command(client: AirliftClient) -> int:
    for database in client.list_databases():
        print(database)
    return 0


def _run_tables_command(client: AirliftClient, args: argparse.Namespace) -> int:
    for table in client.list_tables(args.database):
        print(table)
    return 0


def _run_versions_command(client: AirliftClient, args: argparse.Namespace) -> int:
    """Handle versions command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    for version in client.table(args.table).list_versions():
        parent = "-" if version.parent_version is None else version.parent_version
        print(
            f"{version.version}\t"
            f"{version.operation}\t"
            f"{version.record_count}\t"
            f"{version.created_at.isoformat()}\t"
            f"{parent}"
        )
    return 0


def _run_head_command(client: AirliftClient, args: argparse.Namespace) -> int:
    _print_rows(client.table(args.table).head(args.rows))
    return 0


def _run_extract_command(client: AirliftClient, args: argparse.Namespace) -> int:
    """Handle extract command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    table = client.table(args.table)
    table_filter = _parse_where(table, args.where)
    version = table.extract_to(args.target, table_filter, args.target_location)
    print(f"target={args.target}")
    print(f"table_version={version.version}")
    print(f"record_count={version.record_count}")
    return 0


def _run_optimize_command(client: AirliftClient, args: argparse.Namespace) -> int:
    version = client.table(args.table).optimize()
    if version is None:
        print("optimized=false")
        return 0
    print("optimized=true")
    print(f"table_version={version.version}")
    return 0


def _run_summary_command(client: AirliftClient, args: argparse.Namespace) -> int:
    """Handle summary command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    table = client.table(args.table)
    table_filter = _parse_where(table, args.where)
    summary = table.daily_summary(args.group_column, args.flag_column, table_filter)
    _print_rows(summary)
    if args.plot:
        plot_path = table.plot(args.plot, args.group_column, args.flag_column, table_filter)
        print(f"plot_path={plot_path or '-'}")
    return 0


def _parse_where(table: TableHandle, clauses: Sequence[str]) -> TableFilter:
    """Parse ``COLUMN=VALUE`` clauses into a typed table filter.

    Raises:
        AirliftConfigError: If a clause has no ``=``.
        SchemaDriftError: If a column is unknown or a value has the wrong type.
    """
    record_schema = table.schema
    equals: dict[str, Any] = {}
    for clause in clauses:
        name, separator, raw_value = clause.partition("=")
        if not separator or not name.strip():
            raise AirliftConfigError(
                f"Invalid --where clause '{clause}': expected COLUMN=VALUE."
            )
        equals[name.strip()] = record_schema.coerce_value(name.strip(), raw_value.strip())
    return TableFilter(equals=equals)


def _print_rows(rows: pa.Table) -> None:
    """Print rows as tab-separated values with a header line."""
    print("\t".join(rows.column_names))
    for row in rows.to_pylist():
        print("\t".join("" if value is None else str(value) for value in row.values()))
