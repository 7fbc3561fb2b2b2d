"""Consistency rules for the calendar store.

Two rule families keep the tables consistent after any mutation:

- Cascade-delete: deleting a Calendar removes its Events and DeletedEvents;
  deleting an Event removes its Instances, EventsRawTimes, Attendees,
  Reminders, CalendarAlerts and ExtendedProperties.
- Dirty propagation: inserting, updating or deleting an Attendee, Reminder or
  ExtendedProperty marks the parent Event dirty (_sync_dirty=1).

The rules are declared once, as data, and rendered into SQLite triggers so
they fire inside the statement (and transaction) that caused them, whichever
code path issued it. Nested trigger firing gives the transitive cascade
Calendar -> Event -> children.
"""

import contextlib
import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .schema import validate_table_name

logger = logging.getLogger(__name__)


class Mutation(str, Enum):
    """Mutation classes that have dependent-table effects."""

    DELETE_CALENDAR = "delete_calendar"
    DELETE_EVENT = "delete_event"
    MODIFY_CHILD_ROW = "modify_child_row"


@dataclass(frozen=True)
class DependentOperation:
    """One statement applied because of a mutation.

    ``sql`` refers to the triggering row through ``old.`` / ``new.``, the
    way a trigger body does.
    """

    table: str
    sql: str


@dataclass(frozen=True)
class CascadeRule:
    """Deleting a ``parent`` row deletes rows in ``children`` whose ``key`` matches."""

    trigger: str
    parent: str
    children: Tuple[str, ...]
    key: str

    def operations(self) -> List[DependentOperation]:
        return [
            DependentOperation(child, f"DELETE FROM {child} WHERE {self.key} = old._id")
            for child in self.children
        ]


@dataclass(frozen=True)
class DirtyRule:
    """Any write to ``child`` marks the owning Event dirty."""

    child: str
    trigger_prefix: str

    def operations(self, event: str) -> List[DependentOperation]:
        if event == "INSERT":
            where = "Events._id = new.event_id"
        elif event == "DELETE":
            where = "Events._id = old.event_id"
        else:
            # An update may move the row to another event; both are dirty.
            where = "Events._id IN (old.event_id, new.event_id)"
        return [DependentOperation("Events", f"UPDATE Events SET _sync_dirty = 1 WHERE {where}")]


CASCADE_RULES: Tuple[CascadeRule, ...] = (
    CascadeRule(
        trigger="calendar_cleanup",
        parent="Calendars",
        children=("Events", "DeletedEvents"),
        key="calendar_id",
    ),
    CascadeRule(
        trigger="events_cleanup_delete",
        parent="Events",
        children=(
            "Instances",
            "EventsRawTimes",
            "Attendees",
            "Reminders",
            "CalendarAlerts",
            "ExtendedProperties",
        ),
        key="event_id",
    ),
)

DIRTY_RULES: Tuple[DirtyRule, ...] = (
    DirtyRule("Attendees", "attendees"),
    DirtyRule("Reminders", "reminders"),
    DirtyRule("ExtendedProperties", "extended_properties"),
)

DIRTY_EVENTS = ("INSERT", "UPDATE", "DELETE")

# Child tables whose writes dirty their Event
DIRTY_TABLES = frozenset(rule.child for rule in DIRTY_RULES)


def cascade_rule(parent: str) -> CascadeRule:
    for rule in CASCADE_RULES:
        if rule.parent == parent:
            return rule
    raise ValueError(f"No cascade rule for table: {parent}")


def dependent_operations(
    mutation: Mutation,
    table: Optional[str] = None,
    event: str = "UPDATE",
) -> List[DependentOperation]:
    """Return the dependent-table operations a mutation requires.

    Args:
        mutation: The mutation class.
        table: Child table, required for MODIFY_CHILD_ROW.
        event: INSERT, UPDATE or DELETE, for MODIFY_CHILD_ROW.

    Raises:
        ValueError: For an unknown child table or event.
    """
    if mutation == Mutation.DELETE_CALENDAR:
        return cascade_rule("Calendars").operations()
    if mutation == Mutation.DELETE_EVENT:
        return cascade_rule("Events").operations()

    if table is None:
        raise ValueError("MODIFY_CHILD_ROW requires a child table")
    validate_table_name(table)
    if event not in DIRTY_EVENTS:
        raise ValueError(f"Invalid child row event: {event}")
    for rule in DIRTY_RULES:
        if rule.child == table:
            return rule.operations(event)
    # Writes to other child tables (Instances, CalendarAlerts, ...) do not dirty
    return []


# === Trigger rendering ===


def _trigger_sql(name: str, event: str, table: str, ops: List[DependentOperation]) -> str:
    body = " ".join(f"{op.sql};" for op in ops)
    return f"CREATE TRIGGER {name} {event} ON {table} BEGIN {body} END"


def cascade_triggers() -> List[Tuple[str, str]]:
    """(name, DDL) for every cascade-delete trigger."""
    return [
        (rule.trigger, _trigger_sql(rule.trigger, "DELETE", rule.parent, rule.operations()))
        for rule in CASCADE_RULES
    ]


def dirty_triggers() -> List[Tuple[str, str]]:
    """(name, DDL) for every dirty-propagation trigger."""
    triggers = []
    for rule in DIRTY_RULES:
        for event in DIRTY_EVENTS:
            name = f"{rule.trigger_prefix}_{event.lower()}"
            triggers.append((name, _trigger_sql(name, event, rule.child, rule.operations(event))))
    return triggers


def all_triggers() -> List[Tuple[str, str]]:
    return cascade_triggers() + dirty_triggers()


TRIGGER_NAMES = frozenset(name for name, _ in all_triggers())


def _replace_triggers(conn: sqlite3.Connection, triggers: List[Tuple[str, str]]) -> None:
    for name, ddl in triggers:
        conn.execute(f"DROP TRIGGER IF EXISTS {name}")
        conn.execute(ddl)


def install_rules(conn: sqlite3.Connection) -> None:
    """Create (or recreate) every consistency trigger."""
    _replace_triggers(conn, all_triggers())
    logger.debug(f"Installed {len(TRIGGER_NAMES)} consistency triggers")


def install_cascade_rule(conn: sqlite3.Connection, parent: str) -> None:
    """Create (or recreate) the cascade trigger for one parent table."""
    rule = cascade_rule(parent)
    _replace_triggers(
        conn, [(rule.trigger, _trigger_sql(rule.trigger, "DELETE", rule.parent, rule.operations()))]
    )


def install_dirty_rules(conn: sqlite3.Connection) -> None:
    _replace_triggers(conn, dirty_triggers())


def drop_dirty_rules(conn: sqlite3.Connection) -> None:
    for name, _ in dirty_triggers():
        conn.execute(f"DROP TRIGGER IF EXISTS {name}")


@contextlib.contextmanager
def dirty_propagation_suppressed(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block without dirty propagation.

    Used by backfill steps so that rewriting child rows during an upgrade
    does not mark every touched Event for upload. The triggers are restored
    when the block completes; if it raises, the enclosing transaction's
    rollback restores them.
    """
    drop_dirty_rules(conn)
    yield conn
    install_dirty_rules(conn)
