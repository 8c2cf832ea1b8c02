#!/usr/bin/env python3
"""
Pending Sync CLI

Runs one sync pass of the local pending queue for a user and prints the
report.

Usage:
    python -m scripts.sync_pending --user USER_ID
    python -m scripts.sync_pending --user USER_ID --list
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from humidor.config import Config
from humidor.db import ensure_schema
from humidor.routes.dependencies import get_persistence_manager
from humidor.services.errors import QueueCorruptedError


def print_queue(persistence, user_id: str) -> None:
    """Print queued entries for a user."""
    entries = persistence.queue.entries(user_id)
    if not entries:
        print(f"No queued entries for {user_id}.")
        return

    print(f"Queued entries for {user_id}")
    print("=" * 60)
    for i, entry in enumerate(entries, 1):
        rating = entry.overall_rating if entry.overall_rating is not None else "-"
        print(f"{i}. {entry.full_name}  (rating: {rating})")
        print(f"   id: {entry.id}  |  submitted: {entry.submitted_at:%Y-%m-%d %H:%M}")
    print("-" * 60)
    print(f"Total queued: {len(entries)}")


async def run_sync(user_id: str) -> int:
    persistence = get_persistence_manager()
    report = await persistence.sync_pending(user_id)
    await persistence.drain()

    print(f"Synced: {len(report.synced)}")
    for entry_id in report.synced:
        print(f"  + {entry_id}")
    print(f"Still queued: {len(report.failed)}")
    for entry_id in report.failed:
        print(f"  - {entry_id}")
    return 1 if report.failed else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync locally queued humidor entries")
    parser.add_argument("--user", required=True, help="User id whose queue to sync")
    parser.add_argument("--list", action="store_true", help="Only list queued entries")
    parser.add_argument("--db", default=None, help="Local database path (default: DATABASE_PATH)")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, Config.log_level(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.db:
        os.environ["DATABASE_PATH"] = args.db
    ensure_schema(Config.database_path())

    try:
        if args.list:
            print_queue(get_persistence_manager(), args.user)
            return 0
        return asyncio.run(run_sync(args.user))
    except QueueCorruptedError as e:
        print(f"Error: local queue is corrupted: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
