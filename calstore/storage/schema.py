"""Schema catalog for the calendar store.

Contains:
- Schema version tracking (DATABASE_VERSION, MINIMUM_SUPPORTED_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Table and index DDL for the current version (TABLES, INDEXES, SCHEMA)
- Columns older stores may still carry (LEGACY_COLUMNS)
- Live schema inspection (get_columns, get_indexes, get_triggers, describe_schema)

Consistency triggers are declared in rules.py; the sync-state tables in
sync_state.py.
"""

import logging
import sqlite3
from typing import Dict, FrozenSet, Set, Tuple

from calstore.types import METHOD_DEFAULT

logger = logging.getLogger(__name__)

# Schema version for migrations. Stored in PRAGMA user_version.
DATABASE_VERSION = 58  # v58: reinstall consistency triggers (extended property insert/delete)

# Stores older than this are wiped and recreated rather than upgraded
MINIMUM_SUPPORTED_VERSION = 46

ACCOUNT_NAME = "_sync_account"
ACCOUNT_TYPE = "_sync_account_type"

# Allowed table names for SQL queries (security: prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "Calendars",
        "Events",
        "EventsRawTimes",
        "DeletedEvents",
        "Instances",
        "CalendarMetaData",
        "BusyBits",
        "Attendees",
        "Reminders",
        "CalendarAlerts",
        "ExtendedProperties",
        "_sync_state",  # owned by the sync adapter
        "_sync_state_metadata",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Args:
        table: Table name to validate

    Returns:
        The validated table name

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


# Table DDL in creation order. Names, column types and defaults are part of
# the on-disk contract with other readers of calendar2.db.
TABLES: Dict[str, str] = {
    "Calendars": f"""
CREATE TABLE Calendars (
    _id INTEGER PRIMARY KEY,
    {ACCOUNT_NAME} TEXT,
    {ACCOUNT_TYPE} TEXT,
    _sync_id TEXT,
    _sync_version TEXT,
    _sync_time TEXT,            -- UTC
    _sync_local_id INTEGER,
    _sync_dirty INTEGER,
    _sync_mark INTEGER,         -- used to filter out new rows
    url TEXT,
    name TEXT,
    displayName TEXT,
    hidden INTEGER NOT NULL DEFAULT 0,
    color INTEGER,
    access_level INTEGER,
    selected INTEGER NOT NULL DEFAULT 1,
    sync_events INTEGER NOT NULL DEFAULT 0,
    location TEXT,
    timezone TEXT,
    ownerAccount TEXT
)""",
    "Events": f"""
CREATE TABLE Events (
    _id INTEGER PRIMARY KEY,
    {ACCOUNT_NAME} TEXT,
    {ACCOUNT_TYPE} TEXT,
    _sync_id TEXT,
    _sync_version TEXT,
    _sync_time TEXT,            -- UTC
    _sync_local_id INTEGER,
    _sync_dirty INTEGER,
    _sync_mark INTEGER,
    calendar_id INTEGER NOT NULL,
    htmlUri TEXT,
    title TEXT,
    eventLocation TEXT,
    description TEXT,
    eventStatus INTEGER,
    selfAttendeeStatus INTEGER NOT NULL DEFAULT 0,
    commentsUri TEXT,
    dtstart INTEGER,            -- millis since epoch
    dtend INTEGER,              -- millis since epoch
    eventTimezone TEXT,
    duration TEXT,
    allDay INTEGER NOT NULL DEFAULT 0,
    visibility INTEGER NOT NULL DEFAULT 0,
    transparency INTEGER NOT NULL DEFAULT 0,
    hasAlarm INTEGER NOT NULL DEFAULT 0,
    hasExtendedProperties INTEGER NOT NULL DEFAULT 0,
    rrule TEXT,
    rdate TEXT,
    exrule TEXT,
    exdate TEXT,
    originalEvent TEXT,         -- _sync_id of the recurring event
    originalInstanceTime INTEGER,
    originalAllDay INTEGER,     -- cached allDay of the recurring event
    lastDate INTEGER,
    hasAttendeeData INTEGER,
    guestsCanModify INTEGER NOT NULL DEFAULT 0,
    guestsCanInviteOthers INTEGER NOT NULL DEFAULT 1,
    guestsCanSeeGuests INTEGER NOT NULL DEFAULT 1,
    organizer STRING
)""",
    "EventsRawTimes": """
CREATE TABLE EventsRawTimes (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER NOT NULL,
    dtstart2445 TEXT,
    dtend2445 TEXT,
    originalInstanceTime2445 TEXT,
    lastDate2445 TEXT,
    UNIQUE (event_id)
)""",
    "DeletedEvents": f"""
CREATE TABLE DeletedEvents (
    _sync_id TEXT,
    _sync_version TEXT,
    {ACCOUNT_NAME} TEXT,
    {ACCOUNT_TYPE} TEXT,
    _sync_mark INTEGER,
    calendar_id INTEGER
)""",
    "Instances": """
CREATE TABLE Instances (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    begin INTEGER,              -- UTC millis
    end INTEGER,                -- UTC millis
    startDay INTEGER,           -- Julian start day
    endDay INTEGER,             -- Julian end day
    startMinute INTEGER,        -- minutes from midnight
    endMinute INTEGER,          -- minutes from midnight
    UNIQUE (event_id, begin, end)
)""",
    "CalendarMetaData": """
CREATE TABLE CalendarMetaData (
    _id INTEGER PRIMARY KEY,
    localTimezone TEXT,
    minInstance INTEGER,        -- UTC millis
    maxInstance INTEGER,        -- UTC millis
    minBusyBits INTEGER,        -- UTC millis
    maxBusyBits INTEGER         -- UTC millis
)""",
    "BusyBits": """
CREATE TABLE BusyBits (
    day INTEGER PRIMARY KEY,    -- Julian day
    busyBits INTEGER,           -- 24 bits for 60-minute intervals
    allDayCount INTEGER
)""",
    "Attendees": """
CREATE TABLE Attendees (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    attendeeName TEXT,
    attendeeEmail TEXT,
    attendeeStatus INTEGER,
    attendeeRelationship INTEGER,
    attendeeType INTEGER
)""",
    "Reminders": f"""
CREATE TABLE Reminders (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    minutes INTEGER,
    method INTEGER NOT NULL DEFAULT {int(METHOD_DEFAULT)}
)""",
    "CalendarAlerts": """
CREATE TABLE CalendarAlerts (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    begin INTEGER NOT NULL,     -- UTC millis
    end INTEGER NOT NULL,       -- UTC millis
    alarmTime INTEGER NOT NULL,
    creationTime INTEGER NOT NULL,
    receivedTime INTEGER NOT NULL,
    notifyTime INTEGER NOT NULL,
    state INTEGER NOT NULL,
    minutes INTEGER,
    UNIQUE (alarmTime, begin, event_id)
)""",
    "ExtendedProperties": """
CREATE TABLE ExtendedProperties (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    name TEXT,
    value TEXT
)""",
}

# Index name -> (table, DDL)
INDEXES: Dict[str, Tuple[str, str]] = {
    "eventSyncAccountAndIdIndex": (
        "Events",
        f"CREATE INDEX eventSyncAccountAndIdIndex ON Events "
        f"({ACCOUNT_TYPE}, {ACCOUNT_NAME}, _sync_id)",
    ),
    "eventsCalendarIdIndex": (
        "Events",
        "CREATE INDEX eventsCalendarIdIndex ON Events (calendar_id)",
    ),
    "instancesStartDayIndex": (
        "Instances",
        "CREATE INDEX instancesStartDayIndex ON Instances (startDay)",
    ),
    "attendeesEventIdIndex": (
        "Attendees",
        "CREATE INDEX attendeesEventIdIndex ON Attendees (event_id)",
    ),
    "remindersEventIdIndex": (
        "Reminders",
        "CREATE INDEX remindersEventIdIndex ON Reminders (event_id)",
    ),
    "calendarAlertsEventIdIndex": (
        "CalendarAlerts",
        "CREATE INDEX calendarAlertsEventIdIndex ON CalendarAlerts (event_id)",
    ),
    "extendedPropertiesEventIdIndex": (
        "ExtendedProperties",
        "CREATE INDEX extendedPropertiesEventIdIndex ON ExtendedProperties (event_id)",
    ),
}

# Columns retired by an upgrade step but not droppable in place. A store
# upgraded from an old version keeps them; a fresh store never has them.
LEGACY_COLUMNS: Dict[str, FrozenSet[str]] = {
    "CalendarAlerts": frozenset({"reminder_id"}),
}

# Full DDL script for display and tooling
SCHEMA = ";\n".join(
    [ddl.strip() for ddl in TABLES.values()] + [ddl for _, ddl in INDEXES.values()]
) + ";\n"


# === Live schema inspection ===


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def get_columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    """Return the column names of ``table`` (empty set if it does not exist)."""
    validate_table_name(table)
    cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {c[1] for c in cols}


def get_indexes(conn: sqlite3.Connection) -> Set[str]:
    """Return the names of explicitly created indexes."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' AND sql IS NOT NULL"
    ).fetchall()
    return {r[0] for r in rows}


def get_index_sql(conn: sqlite3.Connection, name: str) -> "str | None":
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='index' AND name=?", (name,)
    ).fetchone()
    return row[0] if row else None


def get_triggers(conn: sqlite3.Connection) -> Set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='trigger'").fetchall()
    return {r[0] for r in rows}


def describe_schema(conn: sqlite3.Connection, *, include_legacy: bool = False) -> Dict[str, object]:
    """Snapshot the live catalog tables, their columns, indexes and triggers.

    Legacy columns are left out unless ``include_legacy`` is set, so a store
    upgraded from an old version compares equal to a fresh one.
    """
    tables: Dict[str, FrozenSet[str]] = {}
    for table in TABLES:
        if not table_exists(conn, table):
            continue
        cols = get_columns(conn, table)
        if not include_legacy:
            cols -= LEGACY_COLUMNS.get(table, frozenset())
        tables[table] = frozenset(cols)
    return {
        "tables": tables,
        "indexes": frozenset(get_indexes(conn)),
        "triggers": frozenset(get_triggers(conn)),
    }
