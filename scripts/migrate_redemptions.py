#!/usr/bin/env python3
"""
Copy redemptions from the JSON file store into the DynamoDB table.

Existing codes in the table are never overwritten, so the script can be
re-run safely after a partial migration.

Usage:
    # Dry run (shows what would be copied)
    python scripts/migrate_redemptions.py data/used-codes.json --dry-run

    # Copy into a specific table
    python scripts/migrate_redemptions.py data/used-codes.json --table goldenticket-redemptions
"""

import argparse
import os
import sys

# Add functions directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../functions"))

from shared.code_validator import stringify_value  # noqa: E402
from shared.redemption_store import (  # noqa: E402
    DynamoDBRedemptionStore,
    JsonFileRedemptionStore,
    PersistenceError,
)


def migrate(source: JsonFileRedemptionStore, target: DynamoDBRedemptionStore, dry_run: bool = False) -> dict:
    """
    Insert every record of `source` that `target` does not have yet.

    Returns:
        Counts of copied, skipped (already present) and failed records
    """
    records = source.load()
    if source.degraded:
        raise SystemExit(f"Source {source.path} is unreadable or corrupt, aborting")

    counts = {"copied": 0, "skipped": 0, "failed": 0}
    existing = set() if not dry_run else set(target.load())

    for code, record in records.items():
        if not isinstance(record, dict):
            print(f"  {code}: not a record, skipping")
            counts["failed"] += 1
            continue

        item = {key: stringify_value(value) for key, value in record.items() if value is not None}
        item["code"] = code

        if dry_run:
            if code in existing:
                counts["skipped"] += 1
            else:
                print(f"  would copy {code} ({item.get('campaign', 'unknown')})")
                counts["copied"] += 1
            continue

        try:
            if target.insert_if_absent(item):
                counts["copied"] += 1
            else:
                counts["skipped"] += 1
        except PersistenceError as e:
            print(f"  {code}: {e}")
            counts["failed"] += 1

    return counts


def main(argv=None):
    parser = argparse.ArgumentParser(description="Copy JSON file redemptions into DynamoDB")
    parser.add_argument("source", help="Path to the used-codes JSON document")
    parser.add_argument("--table", help="Target table (default: REDEMPTIONS_TABLE or goldenticket-redemptions)")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be copied without writing")
    args = parser.parse_args(argv)

    if args.dry_run:
        print("=== DRY RUN MODE - No changes will be made ===\n")

    source = JsonFileRedemptionStore(args.source)
    target = DynamoDBRedemptionStore(args.table)
    print(f"Migrating {source.path} -> {target.table_name}")

    counts = migrate(source, target, dry_run=args.dry_run)

    print(f"\n  Copied: {counts['copied']}")
    print(f"  Already present: {counts['skipped']}")
    print(f"  Failed: {counts['failed']}")

    return 1 if counts["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
