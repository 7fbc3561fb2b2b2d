"""
calstore - versioned SQLite schema manager for a local calendar store.

Creates the calendar database, upgrades older stores to the current schema
and keeps its tables consistent.
"""

from .protocols import (
    CalendarStoreError,
    DowngradeError,
    MigrationError,
    OpenFailure,
    StructuralError,
    SyncScheduler,
)
from .storage import DATABASE_VERSION, CalendarDatabase, get_instance
from .types import Account, SyncRequest, UpgradeOutcome, UpgradeResult

try:
    from importlib.metadata import version

    __version__ = version("calstore")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "DATABASE_VERSION",
    "Account",
    "CalendarDatabase",
    "CalendarStoreError",
    "DowngradeError",
    "MigrationError",
    "OpenFailure",
    "StructuralError",
    "SyncRequest",
    "SyncScheduler",
    "UpgradeOutcome",
    "UpgradeResult",
    "get_instance",
]
