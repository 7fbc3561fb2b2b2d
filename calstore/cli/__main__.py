"""
calstore CLI - inspect, upgrade and reset a calendar database.

Usage:
    calstore [--db PATH] info [--json]
    calstore [--db PATH] upgrade [--json]
    calstore [--db PATH] wipe [--yes]
    calstore schema
    calstore [--db PATH] sync-state clear
"""

import argparse
import json
import logging
import sys
from contextlib import closing
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from calstore.config import load_config
from calstore.protocols import CalendarStoreError
from calstore.storage.database import CalendarDatabase
from calstore.storage.rules import all_triggers
from calstore.storage.schema import (
    DATABASE_VERSION,
    MINIMUM_SUPPORTED_VERSION,
    SCHEMA,
    TABLES,
    table_exists,
)
from calstore.storage.sync_state import SYNC_STATE_TABLE, SyncStateStore
from calstore.storage.utils import get_user_version, open_db, transaction
from calstore.sync import HttpSyncScheduler

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def _open_store(db_path: Path) -> CalendarDatabase:
    config = load_config(db_path)
    return CalendarDatabase(config.db_path, scheduler=HttpSyncScheduler.from_config(config))


def cmd_info(args, db_path: Path):
    """Show the stored version and row counts without upgrading."""
    info: Dict[str, Any] = {
        "path": str(db_path),
        "exists": db_path.exists(),
        "current_version": DATABASE_VERSION,
        "minimum_supported_version": MINIMUM_SUPPORTED_VERSION,
        "stored_version": None,
        "tables": {},
    }
    if db_path.exists():
        with closing(open_db(db_path)) as conn:
            info["stored_version"] = get_user_version(conn)
            for table in TABLES:
                if table_exists(conn, table):
                    info["tables"][table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    if args.json:
        print(json.dumps(info, indent=2))
        return

    print(f"Database: {info['path']}")
    if not info["exists"]:
        print("  (not created yet)")
        return
    stored = info["stored_version"]
    print(f"Version:  {stored} (current {DATABASE_VERSION})")
    if stored and stored < MINIMUM_SUPPORTED_VERSION:
        print("  Upgrading will clear all calendar data.")
    elif stored and stored < DATABASE_VERSION:
        print("  Upgrade pending.")
    for table, count in info["tables"].items():
        print(f"  {table:<20} {count}")


def cmd_upgrade(args, db_path: Path):
    """Open the store, creating or upgrading it as needed."""
    db = _open_store(db_path)
    try:
        db.open()
        result = db.last_result
    finally:
        db.close()

    if args.json:
        print(
            json.dumps(
                {
                    "from_version": result.from_version,
                    "to_version": result.to_version,
                    "outcome": result.outcome.value,
                    "applied_steps": result.applied_steps,
                    "data_cleared": result.data_cleared,
                    "gaps": [asdict(gap) for gap in result.gaps],
                    "sync_requests": len(result.sync_requests),
                },
                indent=2,
            )
        )
        return

    print(result.summary())
    if result.data_cleared:
        print("WARNING: the stored version was too old to upgrade; all calendar data was cleared.")
    for gap in result.gaps:
        print(f"  unfilled: {gap.table}.{gap.column} row {gap.row_id} ({gap.reason})")


def cmd_wipe(args, db_path: Path):
    """Delete every calendar row and request a full sync."""
    if not args.yes:
        answer = input(f"Delete all calendar data in {db_path}? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return
    db = _open_store(db_path)
    try:
        deleted = db.wipe_data()
    finally:
        db.close()
    print(f"Deleted {deleted} rows; full sync requested.")


def cmd_schema(args):
    """Print the DDL of the current schema."""
    print(SCHEMA)
    for _, ddl in all_triggers():
        print(f"{ddl};")


def cmd_sync_state(args, db_path: Path):
    """Handle sync-state subcommands."""
    if args.sync_state_action == "clear":
        if not db_path.exists():
            print(f"No database at {db_path}.")
            return
        with closing(open_db(db_path)) as conn:
            if not table_exists(conn, SYNC_STATE_TABLE):
                print("No sync state to clear.")
                return
            with transaction(conn):
                cleared = SyncStateStore().clear(conn)
        print(f"Cleared sync state for {cleared} accounts.")


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog="calstore",
        description="Calendar database schema manager",
    )
    parser.add_argument("--db", help="Database file (default: $CALSTORE_HOME/calendar2.db)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log upgrade steps")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_info = subparsers.add_parser("info", help="Show version and row counts")
    p_info.add_argument("--json", "-j", action="store_true")

    p_upgrade = subparsers.add_parser("upgrade", help="Create or upgrade the database")
    p_upgrade.add_argument("--json", "-j", action="store_true")

    p_wipe = subparsers.add_parser("wipe", help="Delete all calendar data")
    p_wipe.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    subparsers.add_parser("schema", help="Print the current schema")

    p_sync_state = subparsers.add_parser("sync-state", help="Sync state operations")
    ss_sub = p_sync_state.add_subparsers(dest="sync_state_action", required=True)
    ss_sub.add_parser("clear", help="Forget every account's sync position")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger("calstore").setLevel(logging.INFO)

    db_path = load_config(Path(args.db).expanduser() if args.db else None).db_path

    try:
        if args.command == "info":
            cmd_info(args, db_path)
        elif args.command == "upgrade":
            cmd_upgrade(args, db_path)
        elif args.command == "wipe":
            cmd_wipe(args, db_path)
        elif args.command == "schema":
            cmd_schema(args)
        elif args.command == "sync-state":
            cmd_sync_state(args, db_path)
    except CalendarStoreError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
