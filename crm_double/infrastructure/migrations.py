"""
Versioned schema migrations for the record engine.

Each entry of MIGRATIONS is a group of statements applied together in one
transaction; its version is the 1-based position in the list. Applied
versions are tracked in `schema_migrations`, so `migrate()` can be run on
every startup.
"""

from __future__ import annotations

from typing import List, Sequence

from crm_double.infrastructure.db_factory import Database
from crm_double.utils.logging import get_logger

log = get_logger(__name__)

_CORE_TABLES: Sequence[str] = (
    """
    CREATE TABLE object_types (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        label_singular TEXT NOT NULL,
        label_plural TEXT NOT NULL,
        primary_display_property TEXT,
        is_custom INTEGER NOT NULL DEFAULT 0,
        fully_qualified_name TEXT,
        description TEXT,
        archived INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX idx_object_types_live_name ON object_types(name) WHERE archived = 0",
    """
    CREATE TABLE property_definitions (
        object_type_id TEXT NOT NULL,
        name TEXT NOT NULL,
        label TEXT NOT NULL,
        type TEXT NOT NULL,
        field_type TEXT NOT NULL,
        group_name TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        display_order INTEGER NOT NULL DEFAULT 0,
        has_unique_value INTEGER NOT NULL DEFAULT 0,
        hidden INTEGER NOT NULL DEFAULT 0,
        form_field INTEGER NOT NULL DEFAULT 0,
        calculated INTEGER NOT NULL DEFAULT 0,
        external_options INTEGER NOT NULL DEFAULT 0,
        hubspot_defined INTEGER NOT NULL DEFAULT 0,
        options TEXT NOT NULL DEFAULT '[]',
        archived INTEGER NOT NULL DEFAULT 0,
        archived_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (object_type_id, name)
    )
    """,
    """
    CREATE TABLE property_groups (
        object_type_id TEXT NOT NULL,
        name TEXT NOT NULL,
        label TEXT NOT NULL,
        display_order INTEGER NOT NULL DEFAULT 0,
        archived INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (object_type_id, name)
    )
    """,
    """
    CREATE TABLE objects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        object_type_id TEXT NOT NULL,
        archived INTEGER NOT NULL DEFAULT 0,
        archived_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        merged_into_id INTEGER
    )
    """,
    "CREATE INDEX idx_objects_type ON objects(object_type_id, archived)",
    """
    CREATE TABLE property_values (
        object_id INTEGER NOT NULL,
        property_name TEXT NOT NULL,
        value TEXT,
        updated_at TEXT NOT NULL,
        source TEXT DEFAULT 'API',
        source_id TEXT,
        PRIMARY KEY (object_id, property_name),
        FOREIGN KEY (object_id) REFERENCES objects(id)
    )
    """,
    "CREATE INDEX idx_property_values_value ON property_values(property_name, value)",
    """
    CREATE TABLE property_value_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        object_id INTEGER NOT NULL,
        property_name TEXT NOT NULL,
        value TEXT,
        timestamp TEXT NOT NULL,
        source TEXT DEFAULT 'API',
        source_id TEXT,
        FOREIGN KEY (object_id) REFERENCES objects(id)
    )
    """,
    "CREATE INDEX idx_prop_history ON property_value_history(object_id, property_name, timestamp)",
    """
    CREATE TABLE association_types (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        from_object_type TEXT NOT NULL,
        to_object_type TEXT NOT NULL,
        category TEXT NOT NULL,
        label TEXT,
        inverse_label TEXT,
        UNIQUE (from_object_type, to_object_type, category, label)
    )
    """,
    """
    CREATE TABLE associations (
        from_object_id INTEGER NOT NULL,
        to_object_id INTEGER NOT NULL,
        association_type_id INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (from_object_id, to_object_id, association_type_id),
        FOREIGN KEY (from_object_id) REFERENCES objects(id),
        FOREIGN KEY (to_object_id) REFERENCES objects(id)
    )
    """,
    "CREATE INDEX idx_assoc_from ON associations(from_object_id, association_type_id)",
    "CREATE INDEX idx_assoc_to ON associations(to_object_id)",
)

MIGRATIONS: List[Sequence[str]] = [_CORE_TABLES]


def current_version(db: Database) -> int:
    """Highest applied migration version, 0 for a fresh database."""
    with db.connection() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        row = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()
    return int(row[0])


def migrate(db: Database) -> int:
    """
    Apply every pending migration.

    Parameters
    ----------
    db : Database
        Target database.

    Returns
    -------
    int
        Number of migrations applied by this call.
    """
    applied = 0
    start = current_version(db)
    for index, statements in enumerate(MIGRATIONS):
        version = index + 1
        if version <= start:
            continue
        with db.transaction() as conn:
            for statement in statements:
                conn.execute(statement)
            conn.execute("INSERT INTO schema_migrations (version) VALUES (?)", (version,))
        applied += 1
        log.info("Applied migration", extra={"version": version, "statements": len(statements)})
    return applied


__all__ = ["MIGRATIONS", "current_version", "migrate"]
