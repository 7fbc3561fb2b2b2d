"""Open helper for the calendar store.

CalendarDatabase owns the single connection a process uses. The first call to
``open()`` (or ``connection``) opens the file, bootstraps an empty store or
upgrades an existing one, and only then hands the connection out. Concurrent
callers wait on the instance lock and see the finished store.

A process-wide instance is available through ``get_instance()``; it is
created lazily from ``load_config()`` and closed at interpreter exit.
"""

import atexit
import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from calstore.config import load_config
from calstore.protocols import MigrationError, OpenFailure, SyncScheduler
from calstore.sync import HttpSyncScheduler, SyncNotificationHook
from calstore.types import Account, SyncRequest, UpgradeOutcome, UpgradeResult

from .bootstrap import create_schema, wipe_all
from .migrations import upgrade
from .schema import DATABASE_VERSION, get_columns, validate_table_name
from .sync_state import SyncStateStore
from .utils import get_user_version, open_db, set_user_version, transaction

logger = logging.getLogger(__name__)

_instance: Optional["CalendarDatabase"] = None
_instance_lock = threading.Lock()


class CalendarDatabase:
    """The calendar store of one process.

    Args:
        path: Database file, or ":memory:".
        scheduler: Receives sync requests; logged only when omitted.
        version: Version to upgrade to. New stores are only created at
            DATABASE_VERSION, and a store that needs a reset is always
            rebuilt at DATABASE_VERSION, so a lower version only limits
            how far existing stores are upgraded.

    Raises:
        ValueError: ``version`` is newer than DATABASE_VERSION.
    """

    def __init__(
        self,
        path: Union[str, Path],
        scheduler: Optional[SyncScheduler] = None,
        version: int = DATABASE_VERSION,
    ):
        if version > DATABASE_VERSION:
            raise ValueError(f"Unknown database version {version} (newest is {DATABASE_VERSION})")
        self.path = path if str(path) == ":memory:" else Path(path)
        self.version = version
        self.hook = SyncNotificationHook(scheduler)
        self.sync_state = SyncStateStore()
        self.last_result: Optional[UpgradeResult] = None
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        """The open, current-version connection (opened on first use)."""
        return self.open()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> sqlite3.Connection:
        """Open the store, creating or upgrading it on the first call.

        Raises:
            OpenFailure: The file cannot be opened or is not a database.
            MigrationError: The upgrade failed; the store is unchanged.
        """
        with self._lock:
            if self._conn is not None:
                return self._conn

            conn = self._connect()
            try:
                self.last_result = self._create_or_upgrade(conn)
            except Exception:
                conn.close()
                raise
            self._conn = conn
            return conn

    def _connect(self) -> sqlite3.Connection:
        try:
            if isinstance(self.path, Path):
                self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = open_db(self.path)
            # Fails here, not later, when the file is not a database
            get_user_version(conn)
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Cannot open calendar database {self.path}: {e}")
            raise OpenFailure(f"Cannot open calendar database {self.path}: {e}") from e
        return conn

    def _create_or_upgrade(self, conn: sqlite3.Connection) -> UpgradeResult:
        current = get_user_version(conn)
        if current == 0:
            if self.version != DATABASE_VERSION:
                raise MigrationError(
                    f"Cannot create a v{self.version} store; new stores are created at v{DATABASE_VERSION}",
                    from_version=0,
                )
            with transaction(conn):
                create_schema(conn, self.sync_state)
                set_user_version(conn, self.version)
            result = UpgradeResult(0, self.version, UpgradeOutcome.CREATED)
            result.sync_requests = self.hook.notify_full_sync_needed()
        else:
            if current <= self.version:
                # Older stores may predate the sync-state tables
                with transaction(conn):
                    self.sync_state.on_database_opened(conn)
            result = upgrade(
                conn,
                current,
                self.version,
                hook=self.hook,
                sync_state=self.sync_state,
            )
        logger.info(f"Calendar database {self.path} ready: {result.summary()}")
        return result

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in a write transaction on the store's connection."""
        conn = self.open()
        with self._lock:
            with transaction(conn):
                yield conn

    # === Row helpers ===

    def _checked_columns(self, table: str, values: Dict[str, Any]) -> str:
        validate_table_name(table)
        if not values:
            raise ValueError(f"No values to write to {table}")
        known = get_columns(self.connection, table)
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown columns for {table}: {', '.join(sorted(unknown))}")
        return ", ".join(values)

    def _write(self, verb: str, table: str, values: Dict[str, Any]) -> int:
        columns = self._checked_columns(table, values)
        placeholders = ", ".join("?" for _ in values)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"{verb} INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            return cursor.lastrowid

    def insert(self, table: str, values: Dict[str, Any]) -> int:
        """Insert one row and return its rowid."""
        return self._write("INSERT", table, values)

    def replace(self, table: str, values: Dict[str, Any]) -> int:
        """Insert or replace one row (EventsRawTimes is keyed by event_id)."""
        return self._write("INSERT OR REPLACE", table, values)

    # === Sync and reset ===

    def schedule_sync(
        self,
        account: Optional[Account] = None,
        upload_only: bool = False,
        calendar_url: Optional[str] = None,
    ) -> None:
        """Ask the sync adapter to sync ``account`` (every account when None)."""
        self.hook.dispatch(SyncRequest(account, upload_only, calendar_url))

    def wipe_data(self) -> int:
        """Delete every calendar row and request a full sync.

        Returns:
            Number of rows deleted.
        """
        with self.transaction() as conn:
            deleted = wipe_all(conn)
            self.sync_state.clear(conn)
        self.hook.notify_full_sync_needed()
        return deleted

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "CalendarDatabase":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def get_instance() -> CalendarDatabase:
    """Return the process-wide store, opening it on first use."""
    global _instance
    with _instance_lock:
        if _instance is None:
            config = load_config()
            db = CalendarDatabase(config.db_path, scheduler=HttpSyncScheduler.from_config(config))
            db.open()
            _instance = db
        return _instance


def close_instance() -> None:
    """Close the process-wide store; the next get_instance() reopens it."""
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.close()
            _instance = None


atexit.register(close_instance)
