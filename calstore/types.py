"""
Shared types for calstore.

Dataclasses and enums used by the schema catalog, the migration engine and
the sync hook. These are the contract between the storage layer and the
collaborators that sit around it (query layer, sync adapter, host process).
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional

# Account type stamped onto rows that predate multi-account support.
DEFAULT_ACCOUNT_TYPE = "com.google"


# === Column value constants ===


class AttendeeRelationship(IntEnum):
    """Values stored in Attendees.attendeeRelationship."""

    NONE = 0
    ATTENDEE = 1
    ORGANIZER = 2
    PERFORMER = 3
    SPEAKER = 4


class ReminderMethod(IntEnum):
    """Values stored in Reminders.method."""

    DEFAULT = 0
    ALERT = 1
    EMAIL = 2
    SMS = 3


# Default for Reminders.method when the caller does not supply one
METHOD_DEFAULT = ReminderMethod.DEFAULT


class AlertState(IntEnum):
    """Lifecycle of a CalendarAlerts row."""

    SCHEDULED = 0
    FIRED = 1
    DISMISSED = 2


# === Accounts and sync requests ===


@dataclass(frozen=True)
class Account:
    """A sync account: the (_sync_account, _sync_account_type) pair."""

    name: str
    type: str = DEFAULT_ACCOUNT_TYPE

    def __str__(self) -> str:
        return f"{self.name} ({self.type})"


@dataclass(frozen=True)
class SyncRequest:
    """A request handed to the sync scheduler.

    ``account`` is None for "every account" requests (full sync after a
    bootstrap or reset).
    """

    account: Optional[Account]
    upload_only: bool = False
    calendar_url: Optional[str] = None


# === Migration results ===


class StepKind(str, Enum):
    """What a migration step does to the store."""

    STRUCTURAL = "structural"
    DATA_TRANSFORM = "data_transform"
    LOSSY_RESET = "lossy_reset"
    RESYNC_TRIGGER = "resync_trigger"


class UpgradeOutcome(str, Enum):
    """How an open-and-upgrade call left the store."""

    CREATED = "created"  # empty store bootstrapped at the current version
    UPGRADED = "upgraded"  # steps applied, data preserved
    RESET = "reset"  # lossy path: schema recreated, data cleared
    UNCHANGED = "unchanged"  # already at the target version


@dataclass
class DataIntegrityGap:
    """A row a data-transforming step could not fill in.

    Not an error: the field is left NULL and the upgrade carries on.
    """

    table: str
    row_id: int
    column: str
    reason: str


@dataclass
class UpgradeResult:
    """Summary of one open-and-upgrade call."""

    from_version: int
    to_version: int
    outcome: UpgradeOutcome
    applied_steps: List[int] = field(default_factory=list)
    gaps: List[DataIntegrityGap] = field(default_factory=list)
    sync_requests: List[SyncRequest] = field(default_factory=list)

    @property
    def data_cleared(self) -> bool:
        """True when the lossy reset path ran and user data is gone."""
        return self.outcome == UpgradeOutcome.RESET

    def summary(self) -> str:
        line = f"{self.outcome.value}: v{self.from_version} -> v{self.to_version}"
        if self.applied_steps:
            line += f" ({len(self.applied_steps)} steps)"
        if self.gaps:
            line += f", {len(self.gaps)} unfilled rows"
        return line
