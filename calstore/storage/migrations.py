"""Schema migration for existing calendar databases.

Upgrades a store from any stored version to the current one by applying an
ordered table of version steps, N -> N+1, inside a single transaction.

Each step is tagged with what it does:
- STRUCTURAL: add columns, create/drop indexes or triggers (guarded, so a
  step can be re-run against a store it already touched)
- DATA_TRANSFORM: rewrite or backfill rows
- RESYNC_TRIGGER: discard local sync state and re-request a two-way sync of
  every calendar once the upgrade commits
- LOSSY_RESET: drop everything and recreate an empty schema; no further
  steps run

Stores older than MINIMUM_SUPPORTED_VERSION take the lossy path directly.
"""

import contextlib
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from calstore.feeds import FULL_PROJECTION, SELF_ATTENDANCE_PROJECTION, calendar_email_from_feed_url
from calstore.protocols import DowngradeError, MigrationError, StructuralError
from calstore.sync import SyncNotificationHook
from calstore.types import (
    DEFAULT_ACCOUNT_TYPE,
    Account,
    AttendeeRelationship,
    DataIntegrityGap,
    StepKind,
    UpgradeOutcome,
    UpgradeResult,
)

from .bootstrap import reset_schema
from .rules import dirty_propagation_suppressed, install_cascade_rule, install_rules
from .schema import (
    DATABASE_VERSION,
    INDEXES,
    MINIMUM_SUPPORTED_VERSION,
    get_columns,
    get_index_sql,
    get_indexes,
)
from .sync_state import SyncStateStore
from .utils import set_user_version, transaction

logger = logging.getLogger(__name__)


@dataclass
class MigrationContext:
    """State shared by the steps of one upgrade run."""

    conn: sqlite3.Connection
    sync_state: SyncStateStore
    version: int
    gaps: List[DataIntegrityGap] = field(default_factory=list)
    resync: bool = False


StepFn = Callable[[MigrationContext], None]


@dataclass(frozen=True)
class MigrationStep:
    """One version step, ``from_version`` -> ``from_version + 1``.

    Args:
        from_version: Stored version this step upgrades from.
        kind: What the step does.
        description: Short summary for logs and the CLI.
        apply: Step body; None for lossy steps.
        suppress_dirty: Run with dirty propagation disabled.
        resync: Discard sync state and request a two-way sync after commit.
    """

    from_version: int
    kind: StepKind
    description: str
    apply: Optional[StepFn] = None
    suppress_dirty: bool = False
    resync: bool = False

    @property
    def to_version(self) -> int:
        return self.from_version + 1

    @property
    def lossy(self) -> bool:
        return self.kind == StepKind.LOSSY_RESET


# === Guarded DDL helpers ===


@contextlib.contextmanager
def _structural(ctx: MigrationContext, what: str) -> Iterator[None]:
    """Report schema-changing statements that fail as StructuralError."""
    try:
        yield
    except sqlite3.OperationalError as e:
        raise StructuralError(f"v{ctx.version}: {what} failed: {e}", from_version=ctx.version) from e


def _ddl(ctx: MigrationContext, sql: str) -> None:
    with _structural(ctx, f"DDL {sql.strip()}"):
        ctx.conn.execute(sql)


def _add_column(ctx: MigrationContext, table: str, column: str, decl: str) -> bool:
    """Add ``column`` to ``table`` unless it is already there."""
    if column in get_columns(ctx.conn, table):
        logger.debug(f"v{ctx.version}: {table}.{column} already present")
        return False
    _ddl(ctx, f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
    logger.debug(f"v{ctx.version}: added {table}.{column}")
    return True


def _create_index(ctx: MigrationContext, name: str, sql: str) -> bool:
    if name in get_indexes(ctx.conn):
        return False
    _ddl(ctx, sql)
    return True


# === Steps ===


def _upgrade_46(ctx: MigrationContext) -> None:
    logger.warning("Upgrading CalendarAlerts table")
    # reminder_id is retired; it stays in the table (see LEGACY_COLUMNS) but unused
    if "reminder_id" in get_columns(ctx.conn, "CalendarAlerts"):
        ctx.conn.execute("UPDATE CalendarAlerts SET reminder_id = NULL")
    _add_column(ctx, "CalendarAlerts", "minutes", "INTEGER DEFAULT 0")


def _upgrade_49(ctx: MigrationContext) -> None:
    logger.warning("Upgrading DeletedEvents table")
    # Old tombstones get NULL: they are transient and calendar_id is only
    # consulted when a calendar is deleted.
    _add_column(ctx, "DeletedEvents", "calendar_id", "INTEGER")
    with _structural(ctx, "calendar_cleanup trigger"):
        install_cascade_rule(ctx.conn, "Calendars")
    _ddl(ctx, "DROP TRIGGER IF EXISTS event_to_deleted")


def _upgrade_50(ctx: MigrationContext) -> None:
    # Should have gone in the v49 step
    _ddl(ctx, "DROP TRIGGER IF EXISTS event_to_deleted")


def _upgrade_51(ctx: MigrationContext) -> None:
    _add_column(ctx, "Events", "originalAllDay", "INTEGER")

    exceptions = ctx.conn.execute(
        "SELECT _id, originalEvent FROM Events WHERE originalEvent IS NOT NULL"
    ).fetchall()
    filled = 0
    for row in exceptions:
        event_id, original_event = row[0], row[1]
        recur = ctx.conn.execute(
            "SELECT allDay FROM Events WHERE _sync_id = ? LIMIT 1", (original_event,)
        ).fetchone()
        if recur is None:
            # Base event deleted, or never synced: leave originalAllDay NULL
            gap = DataIntegrityGap(
                table="Events",
                row_id=event_id,
                column="originalAllDay",
                reason=f"recurring event {original_event!r} not found",
            )
            ctx.gaps.append(gap)
            logger.info(f"v51: event {event_id}: {gap.reason}, originalAllDay left unset")
            continue
        ctx.conn.execute(
            "UPDATE Events SET originalAllDay = ? WHERE _id = ?", (recur[0], event_id)
        )
        filled += 1
    logger.info(f"v51: backfilled originalAllDay for {filled}/{len(exceptions)} exceptions")


def _upgrade_52(ctx: MigrationContext) -> None:
    logger.warning("Upgrading CalendarAlerts table")
    for column in ("creationTime", "receivedTime", "notifyTime"):
        _add_column(ctx, "CalendarAlerts", column, "INTEGER DEFAULT 0")


def _upgrade_53(ctx: MigrationContext) -> None:
    logger.warning("adding eventSyncAccountAndIdIndex")
    _create_index(
        ctx,
        "eventSyncAccountAndIdIndex",
        "CREATE INDEX eventSyncAccountAndIdIndex ON Events (_sync_account, _sync_id)",
    )


def _upgrade_54(ctx: MigrationContext) -> None:
    for table in ("Calendars", "Events", "DeletedEvents"):
        _add_column(ctx, table, "_sync_account_type", "TEXT")
        ctx.conn.execute(
            f"UPDATE {table} SET _sync_account_type = ?"
            " WHERE _sync_account IS NOT NULL AND _sync_account_type IS NULL",
            (DEFAULT_ACCOUNT_TYPE,),
        )

    name = "eventSyncAccountAndIdIndex"
    _, catalog_sql = INDEXES[name]
    if get_index_sql(ctx.conn, name) != catalog_sql:
        logger.warning("re-creating eventSyncAccountAndIdIndex")
        _ddl(ctx, f"DROP INDEX IF EXISTS {name}")
        _ddl(ctx, catalog_sql)


def _upgrade_55(ctx: MigrationContext) -> None:
    conn = ctx.conn
    _add_column(ctx, "Calendars", "ownerAccount", "TEXT")
    _add_column(ctx, "Events", "hasAttendeeData", "INTEGER")

    # Clear _sync_dirty so no upload overwrites server attendees, clear
    # _sync_version so the server copy (with attendees) is pulled again, and
    # move every feed from the self-attendance projection to the full one.
    conn.execute(
        """UPDATE Events SET
               _sync_dirty = 0,
               _sync_version = NULL,
               _sync_id = REPLACE(_sync_id, ?, ?),
               commentsUri = REPLACE(commentsUri, ?, ?)""",
        (SELF_ATTENDANCE_PROJECTION, FULL_PROJECTION) * 2,
    )
    conn.execute(
        "UPDATE Calendars SET url = REPLACE(url, ?, ?)",
        (SELF_ATTENDANCE_PROJECTION, FULL_PROJECTION),
    )

    for row in conn.execute("SELECT _id, url FROM Calendars").fetchall():
        owner = calendar_email_from_feed_url(row[1])
        if owner is None:
            ctx.gaps.append(
                DataIntegrityGap("Calendars", row[0], "ownerAccount", "no owner in feed URL")
            )
            continue
        conn.execute("UPDATE Calendars SET ownerAccount = ? WHERE _id = ?", (owner, row[0]))


def _upgrade_56(ctx: MigrationContext) -> None:
    _add_column(ctx, "Events", "guestsCanModify", "INTEGER NOT NULL DEFAULT 0")
    _add_column(ctx, "Events", "guestsCanInviteOthers", "INTEGER NOT NULL DEFAULT 1")
    _add_column(ctx, "Events", "guestsCanSeeGuests", "INTEGER NOT NULL DEFAULT 1")
    _add_column(ctx, "Events", "organizer", "STRING")

    updated = ctx.conn.execute(
        """UPDATE Events SET organizer = (
               SELECT attendeeEmail FROM Attendees
               WHERE Attendees.event_id = Events._id AND Attendees.attendeeRelationship = ?
               ORDER BY Attendees._id LIMIT 1)
           WHERE organizer IS NULL AND EXISTS (
               SELECT 1 FROM Attendees
               WHERE Attendees.event_id = Events._id AND Attendees.attendeeRelationship = ?)""",
        (int(AttendeeRelationship.ORGANIZER), int(AttendeeRelationship.ORGANIZER)),
    ).rowcount
    logger.info(f"v56: backfilled organizer for {updated} events")


def _upgrade_57(ctx: MigrationContext) -> None:
    # Stores created at v57 declare the ExtendedProperties insert/delete
    # triggers as UPDATE triggers; replace every rule with the catalog's.
    with _structural(ctx, "consistency triggers"):
        install_rules(ctx.conn)


STEPS: Dict[int, MigrationStep] = {
    step.from_version: step
    for step in (
        MigrationStep(46, StepKind.STRUCTURAL, "CalendarAlerts: retire reminder_id, add minutes", _upgrade_46),
        MigrationStep(47, StepKind.LOSSY_RESET, "forced data wipe"),
        MigrationStep(48, StepKind.LOSSY_RESET, "forced data wipe"),
        MigrationStep(49, StepKind.STRUCTURAL, "DeletedEvents.calendar_id, calendar_cleanup trigger", _upgrade_49),
        MigrationStep(50, StepKind.STRUCTURAL, "drop event_to_deleted trigger", _upgrade_50),
        MigrationStep(
            51,
            StepKind.DATA_TRANSFORM,
            "Events.originalAllDay backfilled from recurring events",
            _upgrade_51,
            suppress_dirty=True,
        ),
        MigrationStep(52, StepKind.STRUCTURAL, "CalendarAlerts creation/received/notify times", _upgrade_52),
        MigrationStep(53, StepKind.STRUCTURAL, "eventSyncAccountAndIdIndex", _upgrade_53),
        MigrationStep(
            54,
            StepKind.DATA_TRANSFORM,
            "_sync_account_type columns, index keyed by account type",
            _upgrade_54,
            suppress_dirty=True,
        ),
        MigrationStep(
            55,
            StepKind.RESYNC_TRIGGER,
            "ownerAccount, hasAttendeeData, full-projection feeds",
            _upgrade_55,
            suppress_dirty=True,
            resync=True,
        ),
        MigrationStep(
            56,
            StepKind.RESYNC_TRIGGER,
            "guest permissions, organizer backfilled from attendees",
            _upgrade_56,
            suppress_dirty=True,
            resync=True,
        ),
        MigrationStep(57, StepKind.STRUCTURAL, "reinstall consistency triggers", _upgrade_57),
    )
}


# === Engine ===


def apply_step(ctx: MigrationContext, step: MigrationStep) -> None:
    """Run one non-lossy step. The caller owns the transaction and version bump."""
    logger.info(f"Applying v{step.from_version} -> v{step.to_version}: {step.description}")
    try:
        if step.resync:
            # Local cursors can no longer be trusted to match the server incrementally
            ctx.sync_state.clear(ctx.conn)
            ctx.resync = True
        with contextlib.ExitStack() as stack:
            if step.suppress_dirty:
                with _structural(ctx, "dropping dirty triggers"):
                    stack.enter_context(dirty_propagation_suppressed(ctx.conn))
            step.apply(ctx)
            with _structural(ctx, "restoring dirty triggers"):
                stack.close()
    except MigrationError:
        raise
    except (sqlite3.Error, ValueError, TypeError) as e:
        raise MigrationError(
            f"Upgrade step v{step.from_version} -> v{step.to_version} failed: {e}",
            from_version=step.from_version,
        ) from e


def _synced_calendars(conn: sqlite3.Connection) -> Tuple[Set[Account], Dict[Account, List[Optional[str]]]]:
    """Accounts that own calendars, and each account's feed URLs."""
    accounts: Set[Account] = set()
    urls: Dict[Account, List[Optional[str]]] = {}
    rows = conn.execute(
        "SELECT _sync_account, _sync_account_type, url FROM Calendars ORDER BY _id"
    ).fetchall()
    for row in rows:
        if row[0] is None:
            continue  # local-only calendar, nothing to sync
        account = Account(row[0], row[1] or DEFAULT_ACCOUNT_TYPE)
        accounts.add(account)
        feeds = urls.setdefault(account, [])
        if row[2] not in feeds:
            feeds.append(row[2])
    return accounts, urls


def _lossy_reset(ctx: MigrationContext, result: UpgradeResult, reason: str) -> None:
    # reset_schema can only build the catalog version
    if result.to_version != DATABASE_VERSION:
        raise MigrationError(
            f"v{result.from_version} needs a reset, which only reaches v{DATABASE_VERSION}, "
            f"not v{result.to_version}",
            from_version=result.from_version,
        )
    logger.warning(f"Lossy upgrade from v{result.from_version}: {reason}; all calendar data is dropped")
    reset_schema(ctx.conn, ctx.sync_state)
    result.outcome = UpgradeOutcome.RESET
    result.to_version = DATABASE_VERSION


def upgrade(
    conn: sqlite3.Connection,
    current_version: int,
    target_version: int = DATABASE_VERSION,
    hook: Optional[SyncNotificationHook] = None,
    sync_state: Optional[SyncStateStore] = None,
) -> UpgradeResult:
    """Upgrade a store from ``current_version`` to ``target_version``.

    All steps and the version bump run in one transaction; if any step fails
    the store is left exactly as it was and the error propagates. Sync
    requests are delivered through ``hook`` only after the commit.

    Args:
        conn: Open connection to the store.
        current_version: Version read from the store.
        target_version: Version to reach (the catalog version by default).
        hook: Receives sync requests; defaults to a logging-only hook.
        sync_state: Sync-state accessor; defaults to SyncStateStore().

    Returns:
        UpgradeResult describing what happened.

    Raises:
        DowngradeError: The store is newer than ``target_version``.
        StructuralError: A DDL statement failed.
        MigrationError: Any other step failure, a gap in the step table, or a
            reset needed while ``target_version`` is below the catalog version.
    """
    if current_version == target_version:
        return UpgradeResult(current_version, target_version, UpgradeOutcome.UNCHANGED)
    if current_version > target_version:
        raise DowngradeError(
            f"Cannot downgrade database from v{current_version} to v{target_version}",
            from_version=current_version,
        )

    logger.info(f"Upgrading DB from version {current_version} to {target_version}")
    hook = hook or SyncNotificationHook()
    ctx = MigrationContext(conn=conn, sync_state=sync_state or SyncStateStore(), version=current_version)
    result = UpgradeResult(current_version, target_version, UpgradeOutcome.UPGRADED)

    accounts: Set[Account] = set()
    calendar_urls: Dict[Account, List[Optional[str]]] = {}
    with transaction(conn):
        if current_version < MINIMUM_SUPPORTED_VERSION:
            _lossy_reset(ctx, result, f"older than v{MINIMUM_SUPPORTED_VERSION}")
        else:
            while ctx.version < target_version:
                step = STEPS.get(ctx.version)
                if step is None:
                    raise MigrationError(
                        f"No upgrade step from version {ctx.version}", from_version=ctx.version
                    )
                if step.lossy:
                    _lossy_reset(ctx, result, f"step v{step.from_version} {step.description}")
                    break
                apply_step(ctx, step)
                result.applied_steps.append(step.from_version)
                ctx.version = step.to_version
            if ctx.resync and result.outcome != UpgradeOutcome.RESET:
                accounts, calendar_urls = _synced_calendars(conn)
        result.gaps = ctx.gaps
        set_user_version(conn, result.to_version)

    if result.outcome == UpgradeOutcome.RESET:
        result.sync_requests = hook.notify_full_sync_needed()
    elif accounts:
        result.sync_requests = hook.notify_resync_needed(accounts, calendar_urls)
    logger.info(f"Upgrade finished: {result.summary()}")
    return result
