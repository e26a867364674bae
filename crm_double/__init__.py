"""
crm-double - a local, HubSpot-compatible CRM record engine on SQLite.

This package provides the record engine behind a CRM API double:

- Type Registry for built-in and custom object types
- Property Catalog with per-type definitions and value validation
- Record Store with CRUD, batch CRUD, archive, merge and value history
- Association Graph of directed, labeled edges between records
- Search Compiler turning filter/sort/query requests into SQL

Everything runs against one serialized SQLite connection; `open_engine()`
migrates and seeds a database and wires the components together.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from crm_double.config import Settings, get_settings
from crm_double.engine import CrmEngine, open_engine
from crm_double.errors import ConflictError, CrmError, NotFoundError, ValidationError
from crm_double.utils.clock import Clock, FrozenClock
from crm_double.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Engine
    "CrmEngine",
    "open_engine",
    # Errors
    "ConflictError",
    "CrmError",
    "NotFoundError",
    "ValidationError",
    # Time
    "Clock",
    "FrozenClock",
    # Logging
    "configure_logging",
    "get_logger",
]
