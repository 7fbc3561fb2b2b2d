"""Historical calendar stores for upgrade testing.

``create_legacy_store(conn, version)`` builds a store at any supported
version, 46 through the one before DATABASE_VERSION: it lays down the v46
schema and replays the non-lossy upgrade steps up to ``version``. Steps that
wipe the store (47, 48) change no structure, so they are skipped.

The trigger set matches what the historical code installed, including the
extended-property triggers declared on UPDATE for all three events.
"""

import logging
import sqlite3
from typing import Dict

from calstore.storage.migrations import STEPS, MigrationContext, apply_step
from calstore.storage.schema import DATABASE_VERSION, MINIMUM_SUPPORTED_VERSION
from calstore.storage.sync_state import SyncStateStore
from calstore.storage.utils import set_user_version, transaction

logger = logging.getLogger(__name__)

LEGACY_BASE_VERSION = MINIMUM_SUPPORTED_VERSION

V46_TABLES: Dict[str, str] = {
    "Calendars": """
CREATE TABLE Calendars (
    _id INTEGER PRIMARY KEY,
    _sync_account TEXT,
    _sync_id TEXT,
    _sync_version TEXT,
    _sync_time TEXT,
    _sync_local_id INTEGER,
    _sync_dirty INTEGER,
    _sync_mark INTEGER,
    url TEXT,
    name TEXT,
    displayName TEXT,
    hidden INTEGER NOT NULL DEFAULT 0,
    color INTEGER,
    access_level INTEGER,
    selected INTEGER NOT NULL DEFAULT 1,
    sync_events INTEGER NOT NULL DEFAULT 0,
    location TEXT,
    timezone TEXT
)""",
    "Events": """
CREATE TABLE Events (
    _id INTEGER PRIMARY KEY,
    _sync_account TEXT,
    _sync_id TEXT,
    _sync_version TEXT,
    _sync_time TEXT,
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
    dtstart INTEGER,
    dtend INTEGER,
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
    originalEvent TEXT,
    originalInstanceTime INTEGER,
    lastDate INTEGER
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
    "DeletedEvents": """
CREATE TABLE DeletedEvents (
    _sync_id TEXT,
    _sync_version TEXT,
    _sync_account TEXT,
    _sync_mark INTEGER
)""",
    "Instances": """
CREATE TABLE Instances (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    begin INTEGER,
    end INTEGER,
    startDay INTEGER,
    endDay INTEGER,
    startMinute INTEGER,
    endMinute INTEGER,
    UNIQUE (event_id, begin, end)
)""",
    "CalendarMetaData": """
CREATE TABLE CalendarMetaData (
    _id INTEGER PRIMARY KEY,
    localTimezone TEXT,
    minInstance INTEGER,
    maxInstance INTEGER,
    minBusyBits INTEGER,
    maxBusyBits INTEGER
)""",
    "BusyBits": """
CREATE TABLE BusyBits (
    day INTEGER PRIMARY KEY,
    busyBits INTEGER,
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
    "Reminders": """
CREATE TABLE Reminders (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    minutes INTEGER,
    method INTEGER NOT NULL DEFAULT 0
)""",
    "CalendarAlerts": """
CREATE TABLE CalendarAlerts (
    _id INTEGER PRIMARY KEY,
    event_id INTEGER,
    begin INTEGER NOT NULL,
    end INTEGER NOT NULL,
    alarmTime INTEGER NOT NULL,
    state INTEGER NOT NULL,
    reminder_id INTEGER,
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

V46_INDEXES = (
    "CREATE INDEX eventsCalendarIdIndex ON Events (calendar_id)",
    "CREATE INDEX instancesStartDayIndex ON Instances (startDay)",
    "CREATE INDEX attendeesEventIdIndex ON Attendees (event_id)",
    "CREATE INDEX remindersEventIdIndex ON Reminders (event_id)",
    "CREATE INDEX calendarAlertsEventIdIndex ON CalendarAlerts (event_id)",
    "CREATE INDEX extendedPropertiesEventIdIndex ON ExtendedProperties (event_id)",
)

V46_TRIGGERS = (
    """CREATE TRIGGER calendar_cleanup DELETE ON Calendars BEGIN
        DELETE FROM Events WHERE calendar_id = old._id;
    END""",
    """CREATE TRIGGER event_to_deleted DELETE ON Events WHEN old._sync_id NOT NULL BEGIN
        INSERT INTO DeletedEvents (_sync_id, _sync_version, _sync_account)
        VALUES (old._sync_id, old._sync_version, old._sync_account);
    END""",
    """CREATE TRIGGER events_cleanup_delete DELETE ON Events BEGIN
        DELETE FROM Instances WHERE event_id = old._id;
        DELETE FROM EventsRawTimes WHERE event_id = old._id;
        DELETE FROM Attendees WHERE event_id = old._id;
        DELETE FROM Reminders WHERE event_id = old._id;
        DELETE FROM CalendarAlerts WHERE event_id = old._id;
        DELETE FROM ExtendedProperties WHERE event_id = old._id;
    END""",
    "CREATE TRIGGER attendees_update UPDATE ON Attendees BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=old.event_id; END",
    "CREATE TRIGGER attendees_insert INSERT ON Attendees BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=new.event_id; END",
    "CREATE TRIGGER attendees_delete DELETE ON Attendees BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=old.event_id; END",
    "CREATE TRIGGER reminders_update UPDATE ON Reminders BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=old.event_id; END",
    "CREATE TRIGGER reminders_insert INSERT ON Reminders BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=new.event_id; END",
    "CREATE TRIGGER reminders_delete DELETE ON Reminders BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=old.event_id; END",
)

# All three are UPDATE triggers: inserting or deleting a property never dirties
BROKEN_EXTENDED_PROPERTY_TRIGGERS = (
    "CREATE TRIGGER extended_properties_update UPDATE ON ExtendedProperties BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=old.event_id; END",
    "CREATE TRIGGER extended_properties_insert UPDATE ON ExtendedProperties BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=new.event_id; END",
    "CREATE TRIGGER extended_properties_delete UPDATE ON ExtendedProperties BEGIN "
    "UPDATE Events SET _sync_dirty=1 WHERE Events._id=old.event_id; END",
)


def install_broken_extended_property_triggers(conn: sqlite3.Connection) -> None:
    for ddl in BROKEN_EXTENDED_PROPERTY_TRIGGERS:
        name = ddl.split()[2]
        conn.execute(f"DROP TRIGGER IF EXISTS {name}")
        conn.execute(ddl)


def create_v46_store(conn: sqlite3.Connection) -> None:
    """Lay down the v46 schema, sync-state tables and triggers."""
    with transaction(conn):
        SyncStateStore().create(conn)
        for ddl in V46_TABLES.values():
            conn.execute(ddl)
        for ddl in V46_INDEXES:
            conn.execute(ddl)
        for ddl in V46_TRIGGERS:
            conn.execute(ddl)
        install_broken_extended_property_triggers(conn)
        set_user_version(conn, LEGACY_BASE_VERSION)


def create_legacy_store(conn: sqlite3.Connection, version: int = LEGACY_BASE_VERSION) -> None:
    """Build an empty store as the code of ``version`` would have left it.

    Raises:
        ValueError: ``version`` is outside the supported upgrade range.
    """
    if not LEGACY_BASE_VERSION <= version < DATABASE_VERSION:
        raise ValueError(
            f"Legacy stores span v{LEGACY_BASE_VERSION}..v{DATABASE_VERSION - 1}, got v{version}"
        )
    create_v46_store(conn)
    ctx = MigrationContext(conn=conn, sync_state=SyncStateStore(), version=LEGACY_BASE_VERSION)
    with transaction(conn):
        while ctx.version < version:
            step = STEPS[ctx.version]
            if not step.lossy:
                apply_step(ctx, step)
            ctx.version = step.to_version
        if version == DATABASE_VERSION - 1:
            # Stores created by the last release carry the broken triggers again
            install_broken_extended_property_triggers(conn)
        set_user_version(conn, version)
    logger.debug(f"Built legacy calendar store at v{version}")
