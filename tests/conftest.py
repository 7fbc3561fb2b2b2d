"""
Pytest fixtures and test configuration for calstore tests.
"""

import sqlite3
from unittest.mock import MagicMock

import pytest

from calstore.storage.bootstrap import create_schema
from calstore.storage.schema import DATABASE_VERSION
from calstore.storage.utils import open_db, set_user_version, transaction
from calstore.sync import SyncNotificationHook
from calstore.testing.legacy import create_legacy_store

CALSTORE_ENV = (
    "CALSTORE_HOME",
    "CALSTORE_DB_PATH",
    "CALSTORE_SYNC_URL",
    "CALSTORE_SYNC_TOKEN",
    "CALSTORE_SYNC_TIMEOUT",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test away from the user's real config and database."""
    for name in CALSTORE_ENV:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "calstore-home"
    monkeypatch.setenv("CALSTORE_HOME", str(home))
    return home


@pytest.fixture
def scheduler():
    """Sync scheduler double; assert on scheduler.schedule_sync calls."""
    return MagicMock()


@pytest.fixture
def hook(scheduler):
    return SyncNotificationHook(scheduler)


@pytest.fixture
def conn():
    """In-memory store at the current version."""
    connection = open_db(":memory:")
    with transaction(connection):
        create_schema(connection)
        set_user_version(connection, DATABASE_VERSION)
    yield connection
    connection.close()


@pytest.fixture
def fresh_conn():
    """Second current-version store, for comparing against upgraded ones."""
    connection = open_db(":memory:")
    with transaction(connection):
        create_schema(connection)
        set_user_version(connection, DATABASE_VERSION)
    yield connection
    connection.close()


@pytest.fixture
def legacy_conn():
    """Factory for in-memory stores at an older version."""
    connections = []

    def _make(version: int) -> sqlite3.Connection:
        connection = open_db(":memory:")
        create_legacy_store(connection, version)
        connections.append(connection)
        return connection

    yield _make
    for connection in connections:
        connection.close()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "calendar2.db"

