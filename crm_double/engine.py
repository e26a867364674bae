"""
Engine facade wiring the five components onto one database.

Usage:
    from crm_double.engine import open_engine

    engine = open_engine(":memory:")
    contact = engine.records.create("contacts", {"email": "ada@example.com"})
    engine.search.search("contacts", {"query": "ada"})
    engine.close()
"""

from __future__ import annotations

from typing import Optional

from crm_double.config import get_settings
from crm_double.infrastructure.db_factory import Database, open_database
from crm_double.infrastructure.migrations import migrate
from crm_double.infrastructure.seed import seed as seed_catalog
from crm_double.store.associations import AssociationGraph
from crm_double.store.properties import PropertyCatalog
from crm_double.store.records import RecordStore
from crm_double.store.search import SearchService
from crm_double.store.types import TypeRegistry
from crm_double.utils.clock import Clock
from crm_double.utils.logging import get_logger

log = get_logger(__name__)


class CrmEngine:
    """
    The record engine: Type Registry, Property Catalog, Record Store,
    Association Graph and Search sharing one Database and Clock.

    Parameters
    ----------
    db : Database
        A migrated database.
    clock : Clock, optional
        Timestamp source shared by every component.
    """

    def __init__(self, db: Database, clock: Optional[Clock] = None) -> None:
        self.db = db
        self.clock = clock or Clock()
        self.types = TypeRegistry(db, self.clock)
        self.properties = PropertyCatalog(db, self.types, self.clock)
        self.records = RecordStore(db, self.types, self.properties, self.clock)
        self.associations = AssociationGraph(db, self.types, self.records, self.clock)
        self.search = SearchService(db, self.types, self.properties, self.records, self.clock)

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "CrmEngine":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def open_engine(
    db_path: Optional[str] = None,
    seed: Optional[bool] = None,
    clock: Optional[Clock] = None,
) -> CrmEngine:
    """
    Open (creating if needed) a database, migrate it and optionally seed it.

    Parameters
    ----------
    db_path : str, optional
        SQLite path or ":memory:"; defaults to settings.db_path.
    seed : bool, optional
        Seed the standard catalog; defaults to settings.seed_on_startup.
    clock : Clock, optional
        Timestamp source, e.g. a FrozenClock in tests.
    """
    settings = get_settings()
    if seed is None:
        seed = settings.seed_on_startup
    db = open_database(db_path)
    applied = migrate(db)
    clock = clock or Clock()
    if seed:
        seed_catalog(db, clock)
    log.info(
        "Engine ready",
        extra={"db_path": db.path, "migrations_applied": applied, "seeded": bool(seed)},
    )
    return CrmEngine(db, clock)


__all__ = ["CrmEngine", "open_engine"]
