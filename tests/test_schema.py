"""Tests for the schema catalog (calstore.storage.schema)."""

import sqlite3

import pytest

from calstore.storage.rules import TRIGGER_NAMES
from calstore.storage.schema import (
    ALLOWED_TABLES,
    DATABASE_VERSION,
    INDEXES,
    LEGACY_COLUMNS,
    SCHEMA,
    TABLES,
    describe_schema,
    get_columns,
    get_index_sql,
    get_indexes,
    get_triggers,
    table_exists,
    validate_table_name,
)
from calstore.storage.utils import get_user_version
from calstore.testing.rows import insert, value
from calstore.types import ReminderMethod


class TestCatalog:
    def test_every_catalog_table_is_allowed(self):
        assert set(TABLES) <= ALLOWED_TABLES

    def test_indexes_reference_catalog_tables(self):
        for name, (table, ddl) in INDEXES.items():
            assert table in TABLES
            assert f"INDEX {name} ON {table}" in ddl

    def test_schema_script_contains_all_ddl(self):
        for table in TABLES:
            assert f"CREATE TABLE {table} (" in SCHEMA
        for name in INDEXES:
            assert f"CREATE INDEX {name}" in SCHEMA

    def test_sync_index_is_keyed_by_account_type(self):
        _, ddl = INDEXES["eventSyncAccountAndIdIndex"]
        assert ddl.endswith("(_sync_account_type, _sync_account, _sync_id)")


class TestValidateTableName:
    def test_accepts_known_table(self):
        assert validate_table_name("Events") == "Events"

    @pytest.mark.parametrize("name", ["events", "Events; DROP TABLE Events", "sqlite_master", ""])
    def test_rejects_unknown_table(self, name):
        with pytest.raises(ValueError, match="Invalid table name"):
            validate_table_name(name)

    def test_get_columns_validates(self, conn):
        with pytest.raises(ValueError):
            get_columns(conn, "NotATable")


class TestFreshSchema:
    def test_version_is_current(self, conn):
        assert get_user_version(conn) == DATABASE_VERSION

    def test_all_tables_exist(self, conn):
        for table in TABLES:
            assert table_exists(conn, table)

    def test_all_indexes_exist(self, conn):
        assert get_indexes(conn) == set(INDEXES)
        for name, (_, ddl) in INDEXES.items():
            assert get_index_sql(conn, name) == ddl

    def test_all_triggers_exist(self, conn):
        assert get_triggers(conn) == TRIGGER_NAMES

    def test_fresh_store_has_no_legacy_columns(self, conn):
        for table, legacy in LEGACY_COLUMNS.items():
            assert not (get_columns(conn, table) & legacy)

    def test_events_columns(self, conn):
        cols = get_columns(conn, "Events")
        for column in (
            "_sync_account",
            "_sync_account_type",
            "originalAllDay",
            "hasAttendeeData",
            "guestsCanModify",
            "guestsCanInviteOthers",
            "guestsCanSeeGuests",
            "organizer",
        ):
            assert column in cols


class TestColumnDefaults:
    def test_calendar_defaults(self, conn):
        cal_id = insert(conn, "Calendars", name="Work")
        assert value(conn, "Calendars", "hidden", cal_id) == 0
        assert value(conn, "Calendars", "selected", cal_id) == 1
        assert value(conn, "Calendars", "sync_events", cal_id) == 0

    def test_event_defaults(self, conn):
        cal_id = insert(conn, "Calendars", name="Work")
        event_id = insert(conn, "Events", calendar_id=cal_id, title="Standup")
        assert value(conn, "Events", "selfAttendeeStatus", event_id) == 0
        assert value(conn, "Events", "allDay", event_id) == 0
        assert value(conn, "Events", "visibility", event_id) == 0
        assert value(conn, "Events", "transparency", event_id) == 0
        assert value(conn, "Events", "hasAlarm", event_id) == 0
        assert value(conn, "Events", "hasExtendedProperties", event_id) == 0
        assert value(conn, "Events", "guestsCanModify", event_id) == 0
        assert value(conn, "Events", "guestsCanInviteOthers", event_id) == 1
        assert value(conn, "Events", "guestsCanSeeGuests", event_id) == 1
        assert value(conn, "Events", "hasAttendeeData", event_id) is None

    def test_event_requires_calendar(self, conn):
        with pytest.raises(sqlite3.IntegrityError):
            insert(conn, "Events", title="orphan")

    def test_reminder_method_default(self, conn):
        cal_id = insert(conn, "Calendars", name="Work")
        event_id = insert(conn, "Events", calendar_id=cal_id)
        reminder_id = insert(conn, "Reminders", event_id=event_id, minutes=10)
        assert value(conn, "Reminders", "method", reminder_id) == ReminderMethod.DEFAULT


class TestUniqueness:
    def test_duplicate_instance_rejected(self, conn):
        insert(conn, "Instances", event_id=1, begin=1000, end=2000)
        with pytest.raises(sqlite3.IntegrityError):
            insert(conn, "Instances", event_id=1, begin=1000, end=2000)

    def test_instances_differing_in_end_allowed(self, conn):
        insert(conn, "Instances", event_id=1, begin=1000, end=2000)
        insert(conn, "Instances", event_id=1, begin=1000, end=3000)

    def test_duplicate_raw_times_rejected(self, conn):
        insert(conn, "EventsRawTimes", event_id=7, dtstart2445="20090101T100000")
        with pytest.raises(sqlite3.IntegrityError):
            insert(conn, "EventsRawTimes", event_id=7, dtstart2445="20090102T100000")

    def test_duplicate_alert_rejected(self, conn):
        row = dict(
            event_id=1,
            begin=1000,
            end=2000,
            alarmTime=900,
            creationTime=0,
            receivedTime=0,
            notifyTime=0,
            state=0,
        )
        insert(conn, "CalendarAlerts", **row)
        with pytest.raises(sqlite3.IntegrityError):
            insert(conn, "CalendarAlerts", **row)


class TestDescribeSchema:
    def test_legacy_columns_hidden_by_default(self, legacy_conn):
        old = legacy_conn(49)
        assert "reminder_id" not in describe_schema(old)["tables"]["CalendarAlerts"]
        assert "reminder_id" in describe_schema(old, include_legacy=True)["tables"]["CalendarAlerts"]

    def test_two_fresh_stores_match(self, conn, fresh_conn):
        assert describe_schema(conn) == describe_schema(fresh_conn)

    def test_reports_missing_tables_as_absent(self, conn):
        conn.execute("DROP TABLE BusyBits")
        assert "BusyBits" not in describe_schema(conn)["tables"]
