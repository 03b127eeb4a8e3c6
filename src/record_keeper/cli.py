#!/usr/bin/env python3
"""Command line tools for record-keeper databases.

Usage:
    record-keeper word-count FILE
    record-keeper export --db PATH --entity NAME --output FILE
    record-keeper bond-summary --db PATH

Options:
    --log-level LEVEL   Logging level (default: WARNING)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from record_keeper.models import BOND_LOG, BOND_STYLING_CONFIG, POKEMON, SCHEMAS, EntitySchema
from record_keeper.persistence import (
    JsonlExporter,
    JsonlExporterConfig,
    SqliteRecordStore,
    SqliteRecordStoreConfig,
)
from record_keeper.trackers.bond import summarize_bonds
from record_keeper.trackers.word_counter import word_count_label


def _store(db_path: Path, schema: EntitySchema) -> SqliteRecordStore:
    return SqliteRecordStore(SqliteRecordStoreConfig(db_path=db_path, schema=schema))


async def export_entity(db_path: Path, entity: str, output: Path) -> int:
    """Export every record of `entity` to a JSONL file.

    Returns:
        Number of records exported.
    """
    schema = SCHEMAS[entity]
    async with _store(db_path, schema) as store:
        records = await store.find_all()
    config = JsonlExporterConfig(file_path=output, key_column=schema.key_column)
    async with JsonlExporter(config) as exporter:
        return await exporter.write_batch(records)


async def bond_summary_lines(db_path: Path) -> list[str]:
    """One "label: total (n logs)" line per Pokemon."""
    async with (
        _store(db_path, BOND_LOG) as log_store,
        _store(db_path, BOND_STYLING_CONFIG) as config_store,
        _store(db_path, POKEMON) as pokemon_store,
    ):
        rows = summarize_bonds(
            await log_store.find_all(),
            await config_store.find_all(),
            await pokemon_store.find_all(),
        )
    return [f"{row.label}: {row.total} ({row.log_count} logs)" for row in rows]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="record-keeper",
        description="Inspect and export record-keeper databases",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    word_count = subparsers.add_parser("word-count", help="Count words in a text file")
    word_count.add_argument("file", type=Path, help="Text file to count")

    default_db = Path(os.getenv("RECORD_KEEPER_DB_PATH", "record_keeper.db"))

    export = subparsers.add_parser("export", help="Export an entity table to JSON lines")
    export.add_argument("--db", type=Path, default=default_db, help="SQLite database path")
    export.add_argument("--entity", required=True, choices=sorted(SCHEMAS), help="Entity table")
    export.add_argument("--output", type=Path, required=True, help="Output JSONL file")

    bond = subparsers.add_parser("bond-summary", help="Print bond totals per Pokemon")
    bond.add_argument("--db", type=Path, default=default_db, help="SQLite database path")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level))

    try:
        if args.command == "word-count":
            print(word_count_label(args.file.read_text(encoding="utf-8")))
        elif args.command == "export":
            count = asyncio.run(export_entity(args.db, args.entity, args.output))
            print(f"Exported {count} {args.entity} records to {args.output}")
        elif args.command == "bond-summary":
            for line in asyncio.run(bond_summary_lines(args.db)):
                print(line)
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
