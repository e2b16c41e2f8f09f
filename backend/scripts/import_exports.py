#!/usr/bin/env python3
"""
Import collection exports into the Stockflow database.

Reads <collection>.json/.csv/.xlsx files from a directory and replaces
the stored collection with each file found. Collections with no file
are left alone.

Writes go straight to the database, not through SqliteRecordSource, so
an API server that is already running keeps serving its cached
reconciliation until its next write through the API, a call to
SqliteRecordSource.notify_all(), or a restart.

Usage:
    python backend/scripts/import_exports.py exports/
"""

import sys
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from backend.core.db import init_db, replace_collection
from stockflow.reconcile import Collection, FileRecordSource


def present_collections(data_dir: Path) -> list:
    """Collections that have an export file in data_dir."""
    found = []
    for collection in Collection:
        if any((data_dir / f"{collection.value}{suffix}").exists() for suffix in FileRecordSource.SUFFIXES):
            found.append(collection)
    return found


def import_directory(data_dir: Path) -> int:
    """Replace every collection that has a file. Returns records imported."""
    source = FileRecordSource(data_dir)
    total = 0

    for collection in present_collections(data_dir):
        records = source.fetch(collection)
        count = replace_collection(collection.value, records)
        print(f"  {collection.value}: {count} records")
        total += count

    return total


def main():
    """Main import function."""
    if len(sys.argv) != 2:
        print(f"Usage: {sys.argv[0]} EXPORT_DIR", file=sys.stderr)
        sys.exit(1)

    data_dir = Path(sys.argv[1])
    if not data_dir.is_dir():
        print(f"ERROR: Export directory not found: {data_dir}", file=sys.stderr)
        sys.exit(1)

    print("=" * 60)
    print(f"Importing collections from {data_dir}")
    print("=" * 60)

    init_db()
    total = import_directory(data_dir)

    print("\n" + "=" * 60)
    print(f"COMPLETE: {total} records imported")
    print("Running API servers pick up the change on their next write or restart.")
    print("=" * 60)


if __name__ == "__main__":
    main()
