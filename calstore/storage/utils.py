"""
SQLite helpers for the calendar store: connections, pragmas, transactions
and the stored schema version.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

__all__ = [
    "open_db",
    "transaction",
    "get_user_version",
    "set_user_version",
]

# Milliseconds to wait on a locked database before giving up
BUSY_TIMEOUT_MS = 5000

_SAVEPOINT = "calstore_txn"


def open_db(path: str | Path) -> sqlite3.Connection:
    """Open (creating if needed) a database with the store's defaults.

    The connection runs in autocommit mode; every write the store makes goes
    through ``transaction()``.
    """
    if str(path) == ":memory:":
        conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
    else:
        conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    if str(path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def transaction(
    conn: sqlite3.Connection,
    *,
    begin: str = "BEGIN IMMEDIATE",
) -> Iterator[sqlite3.Connection]:
    """
    Commit on success and roll back on error.

    If the caller already has a transaction open, the block runs inside a
    savepoint of that transaction instead.
    """
    if conn.in_transaction:
        conn.execute(f"SAVEPOINT {_SAVEPOINT}")
        try:
            yield conn
        except Exception:
            conn.execute(f"ROLLBACK TO {_SAVEPOINT}")
            conn.execute(f"RELEASE {_SAVEPOINT}")
            raise
        conn.execute(f"RELEASE {_SAVEPOINT}")
        return

    conn.execute(begin)
    try:
        yield conn
    except Exception:
        # SQLite may already have rolled back on its own (e.g. disk full)
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def get_user_version(conn: sqlite3.Connection) -> int:
    """Return the PRAGMA user_version value."""

    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def set_user_version(conn: sqlite3.Connection, version: int) -> None:
    """Update the PRAGMA user_version value."""

    conn.execute(f"PRAGMA user_version = {int(version)}")
