"""Bootstrap and reset for the calendar store.

Free functions that create the whole schema from the catalog, drop it, or
empty it. Callers own the transaction.
"""

import logging
import sqlite3
from typing import Optional

from .rules import install_rules
from .schema import INDEXES, TABLES, validate_table_name
from .sync_state import SyncStateStore

logger = logging.getLogger(__name__)


def create_schema(conn: sqlite3.Connection, sync_state: Optional[SyncStateStore] = None) -> None:
    """Create every table, index and consistency trigger.

    The store must be empty: tables are created without IF NOT EXISTS, so an
    existing table raises ``sqlite3.OperationalError``.
    """
    logger.info("Bootstrapping calendar database")
    (sync_state or SyncStateStore()).create(conn)
    for ddl in TABLES.values():
        conn.execute(ddl)
    for _, ddl in INDEXES.values():
        conn.execute(ddl)
    install_rules(conn)


def drop_tables(conn: sqlite3.Connection) -> None:
    """Drop every catalog table (their indexes and triggers go with them)."""
    for table in TABLES:
        conn.execute(f"DROP TABLE IF EXISTS {table}")


def reset_schema(conn: sqlite3.Connection, sync_state: Optional[SyncStateStore] = None) -> None:
    """Drop everything, including sync state, and recreate an empty schema."""
    logger.warning("Dropping all calendar data and recreating the schema")
    drop_tables(conn)
    create_schema(conn, sync_state)


def wipe_all(conn: sqlite3.Connection) -> int:
    """Delete every row from every catalog table, keeping the structure.

    The caller must follow up with a full sync request.

    Returns:
        Total number of rows deleted from the catalog tables.
    """
    deleted = 0
    # Children first, so cascades find nothing left and the count stays exact
    for table in reversed(list(TABLES)):
        validate_table_name(table)
        deleted += conn.execute(f"DELETE FROM {table}").rowcount
    logger.info(f"Wiped {deleted} rows from the calendar database")
    return deleted
