"""Sync-state storage for the calendar store.

An opaque per-account cursor owned by the sync adapter. This module only
creates, resets and exposes the table; it never interprets ``data``.
"""

import logging
import sqlite3
from typing import Optional

from calstore.types import Account

logger = logging.getLogger(__name__)

SYNC_STATE_TABLE = "_sync_state"
SYNC_STATE_META_TABLE = "_sync_state_metadata"

# Bumped when the layout below changes; a mismatch on open recreates the tables.
SYNC_STATE_VERSION = 3

SYNC_STATE_SCHEMA = (
    f"""CREATE TABLE {SYNC_STATE_TABLE} (
        _id INTEGER PRIMARY KEY,
        account_name TEXT NOT NULL,
        account_type TEXT NOT NULL,
        data TEXT,
        UNIQUE(account_name, account_type)
    )""",
    f"CREATE TABLE {SYNC_STATE_META_TABLE} (version INTEGER)",
)


class SyncStateStore:
    """Create, reset and access the sync-state tables."""

    def create(self, conn: sqlite3.Connection) -> None:
        """Drop and recreate the sync-state tables, discarding every cursor."""
        conn.execute(f"DROP TABLE IF EXISTS {SYNC_STATE_TABLE}")
        conn.execute(f"DROP TABLE IF EXISTS {SYNC_STATE_META_TABLE}")
        for ddl in SYNC_STATE_SCHEMA:
            conn.execute(ddl)
        conn.execute(
            f"INSERT INTO {SYNC_STATE_META_TABLE} (version) VALUES (?)", (SYNC_STATE_VERSION,)
        )

    def version(self, conn: sqlite3.Connection) -> Optional[int]:
        try:
            row = conn.execute(f"SELECT version FROM {SYNC_STATE_META_TABLE} LIMIT 1").fetchone()
        except sqlite3.OperationalError:
            return None
        return row[0] if row else None

    def on_database_opened(self, conn: sqlite3.Connection) -> bool:
        """Make sure the tables exist at the expected layout.

        Returns:
            True if the tables were (re)created.
        """
        found = self.version(conn)
        if found == SYNC_STATE_VERSION:
            return False
        if found is not None:
            logger.warning(
                f"Sync state layout v{found} does not match v{SYNC_STATE_VERSION}, recreating"
            )
        self.create(conn)
        return True

    def clear(self, conn: sqlite3.Connection) -> int:
        """Delete every cursor so that all records are synced again."""
        return conn.execute(f"DELETE FROM {SYNC_STATE_TABLE}").rowcount

    def get(self, conn: sqlite3.Connection, account: Account) -> Optional[str]:
        row = conn.execute(
            f"SELECT data FROM {SYNC_STATE_TABLE} WHERE account_name = ? AND account_type = ?",
            (account.name, account.type),
        ).fetchone()
        return row[0] if row else None

    def set(self, conn: sqlite3.Connection, account: Account, data: Optional[str]) -> None:
        conn.execute(
            f"""INSERT INTO {SYNC_STATE_TABLE} (account_name, account_type, data)
                VALUES (?, ?, ?)
                ON CONFLICT(account_name, account_type) DO UPDATE SET data = excluded.data""",
            (account.name, account.type, data),
        )
