"""CLI for importing Strong-app workout CSV exports into storage.

Usage:
    statusbot-import-lifts [--dry-run] [--table TABLE] [--redis-url URL] workouts.csv

Record ids are derived from natural keys, so re-running an import
overwrites existing records instead of duplicating them.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from statusbot.config import Settings, configure_logging
from statusbot.errors import CancellationError, MarshalError, ValidationError
from statusbot.lifts import Lift, parse_lifts_csv
from statusbot.models import BATCH_WRITE_MAX_ITEMS
from statusbot.storage.batch import BatchWriteReport, BatchWriter
from statusbot.storage.protocol import StorageClient
from statusbot.storage.redis_store import RedisStorage


def print_stats(lifts: list[Lift]) -> None:
    workouts = {lift.date for lift in lifts}
    exercises = {lift.exercise_name for lift in lifts}
    print(f"Parsed {len(lifts)} sets across {len(workouts)} workouts and {len(exercises)} exercises")
    if lifts:
        print(f"Date range: {lifts[0].date} to {lifts[-1].date}")
        print(f"Sample ID: {lifts[0].id}")


def import_lifts(client: StorageClient, table: str, lifts: list[Lift]) -> BatchWriteReport:
    """Write ``lifts``, continuing past failed chunks so all offsets are reported."""
    writer = BatchWriter(client)
    return writer.batch_write(table, lifts, stop_on_error=False)


def print_report(report: BatchWriteReport, total: int, table: str) -> None:
    print(f"Done. Imported {report.written} of {total} lift sets into {table} ({report.calls} batch calls).")
    for err in report.errors:
        print(f"FAILED chunk at offset {err.chunk_offset}: {err.message}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="statusbot-import-lifts",
        description="Import a Strong-app CSV export",
    )
    parser.add_argument("csv_file", help="Path to the CSV export")
    parser.add_argument("--dry-run", action="store_true", help="Parse and report stats without writing")
    parser.add_argument("--table", default="", help="Table name (defaults to TABLE_NAME)")
    parser.add_argument("--redis-url", default="", help="Redis URL (defaults to REDIS_URL)")
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(settings.log_level)
    table = args.table or settings.table_name

    csv_path = Path(args.csv_file)
    if not csv_path.exists():
        print(f"ERROR: CSV file not found: {csv_path}", file=sys.stderr)
        return 1

    try:
        with csv_path.open(newline="", encoding="utf-8") as fh:
            lifts = parse_lifts_csv(fh)
    except ValidationError as exc:
        print(f"ERROR: parse CSV: {exc}", file=sys.stderr)
        return 1

    print_stats(lifts)
    if args.dry_run:
        print("Dry run complete. No data written.")
        return 0

    client = RedisStorage.from_url(args.redis_url or settings.redis_url)
    print(f"Writing {len(lifts)} items to {table} in batches of {BATCH_WRITE_MAX_ITEMS}...")
    try:
        report = import_lifts(client, table, lifts)
    except (MarshalError, CancellationError) as exc:
        print(f"ERROR: batch write: {exc}", file=sys.stderr)
        return 1

    print_report(report, len(lifts), table)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
