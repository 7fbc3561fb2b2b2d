"""
calstore Protocol Definitions
=============================

Interface contracts between the calendar store and its collaborators.

Components and their roles:
- Store (this package): owns the on-disk schema, its version and its
  consistency rules. Creates, upgrades and wipes.
- Query layer (external): issues row-level reads and writes against a
  connection obtained after the store has been opened.
- Sync adapter (external): receives opaque "schedule a sync" requests and
  owns the contents of the sync-state table.

Error handling philosophy:
- Open/create failures raise OpenFailure and are not retried
- DDL failures during an upgrade raise StructuralError (fatal for that attempt)
- Any other failure inside an upgrade raises MigrationError; the upgrade
  transaction is rolled back so the store stays at its previous version
- Rows a backfill cannot fill in are recorded as DataIntegrityGap, never raised
- A lossy reset is a result, not an error (UpgradeOutcome.RESET)
- Invalid table names raise ValueError
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from calstore.types import Account

# =============================================================================
# ERRORS
# =============================================================================


class CalendarStoreError(Exception):
    """Base for all calstore errors."""

    pass


class OpenFailure(CalendarStoreError):
    """Raised when the store cannot be opened or created at all."""

    pass


class MigrationError(CalendarStoreError):
    """Raised when an upgrade step fails.

    ``from_version`` is the source version of the step that failed (or the
    stored version when the failure happened before any step ran).
    """

    def __init__(self, message: str, from_version: Optional[int] = None):
        super().__init__(message)
        self.from_version = from_version


class StructuralError(MigrationError):
    """Raised when a DDL statement fails during an upgrade."""

    pass


class DowngradeError(MigrationError):
    """Raised when the stored version is newer than this build understands."""

    pass


# =============================================================================
# SYNC SCHEDULER
# =============================================================================


@runtime_checkable
class SyncScheduler(Protocol):
    """Outward callback used to request an asynchronous sync.

    Implementations must not block on the sync itself. Nothing is returned
    and the store observes no delivery guarantee.
    """

    def schedule_sync(
        self,
        account: Optional[Account],
        upload_only: bool,
        calendar_url: Optional[str] = None,
    ) -> None:
        """Request a sync.

        Args:
            account: Account to sync, or None for every account.
            upload_only: Only send local changes up to the server.
            calendar_url: Feed URL of a single calendar to sync, if known.
        """
        ...
