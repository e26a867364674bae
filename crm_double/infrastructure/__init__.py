"""
Infrastructure package for crm-double.

Database connection lifecycle, schema migrations and catalog seeding.
"""

from crm_double.infrastructure.db_factory import (
    Database,
    DatabaseManager,
    get_database,
    open_database,
)
from crm_double.infrastructure.migrations import migrate
from crm_double.infrastructure.seed import seed

__all__ = [
    "Database",
    "DatabaseManager",
    "get_database",
    "migrate",
    "open_database",
    "seed",
]
