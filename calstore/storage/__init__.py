"""calstore storage layer.

Schema catalog, consistency rules, bootstrap/reset and the migration engine
for the on-disk calendar store.
"""

from .bootstrap import create_schema, drop_tables, reset_schema, wipe_all
from .database import CalendarDatabase, close_instance, get_instance
from .migrations import STEPS, MigrationStep, upgrade
from .rules import (
    CASCADE_RULES,
    DIRTY_RULES,
    Mutation,
    dependent_operations,
    dirty_propagation_suppressed,
    install_rules,
)
from .schema import (
    ALLOWED_TABLES,
    DATABASE_VERSION,
    INDEXES,
    LEGACY_COLUMNS,
    MINIMUM_SUPPORTED_VERSION,
    TABLES,
    describe_schema,
    validate_table_name,
)
from .sync_state import SyncStateStore
from .utils import get_user_version, open_db, set_user_version, transaction

__all__ = [
    # Catalog
    "ALLOWED_TABLES",
    "DATABASE_VERSION",
    "INDEXES",
    "LEGACY_COLUMNS",
    "MINIMUM_SUPPORTED_VERSION",
    "TABLES",
    "describe_schema",
    "validate_table_name",
    # Rules
    "CASCADE_RULES",
    "DIRTY_RULES",
    "Mutation",
    "dependent_operations",
    "dirty_propagation_suppressed",
    "install_rules",
    # Bootstrap / migration
    "create_schema",
    "drop_tables",
    "reset_schema",
    "wipe_all",
    "STEPS",
    "MigrationStep",
    "upgrade",
    # Open helper
    "CalendarDatabase",
    "close_instance",
    "get_instance",
    "SyncStateStore",
    "get_user_version",
    "open_db",
    "set_user_version",
    "transaction",
]
