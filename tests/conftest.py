"""
Pytest configuration for crm-double.

Provides fixtures for:
- An in-memory engine (migrated and seeded) with a pinned clock
- Small seeded datasets for the record, association and search tests
- Settings override for tests that read the environment
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Generator, List

import pytest

from crm_double.config import Settings, get_settings
from crm_double.domain.models import Record
from crm_double.engine import CrmEngine, open_engine
from crm_double.infrastructure.db_factory import MEMORY_PATH
from crm_double.utils.clock import FrozenClock

CLOCK_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FrozenClock:
    """
    Clock starting at 2024-01-01T12:00:00Z and advancing 1ms per read.
    """
    return FrozenClock(CLOCK_START)


@pytest.fixture
def engine(clock: FrozenClock) -> Generator[CrmEngine, None, None]:
    """
    Fresh in-memory engine per test, with the standard catalog seeded.
    """
    eng = open_engine(MEMORY_PATH, seed=True, clock=clock)
    try:
        yield eng
    finally:
        eng.close()


@pytest.fixture
def contacts(engine: CrmEngine) -> List[Record]:
    """
    Three contacts with distinct emails, created in order.
    """
    return [
        engine.records.create("contacts", {"email": "a@x.com", "firstname": "Ada", "lastname": "Lovelace"}),
        engine.records.create("contacts", {"email": "b@x.com", "firstname": "Barbara", "lastname": "Liskov"}),
        engine.records.create("contacts", {"email": "c@x.com", "firstname": "Charles", "lastname": "Babbage"}),
    ]


@pytest.fixture
def companies(engine: CrmEngine) -> List[Record]:
    """
    Two companies.
    """
    return [
        engine.records.create("companies", {"name": "Acme", "domain": "acme.example.com"}),
        engine.records.create("companies", {"name": "Globex", "domain": "globex.example.com"}),
    ]


@pytest.fixture
def settings_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """
    Clear the cached settings around a test that sets environment variables.
    """
    for name in ("DB_PATH", "DB_BUSY_TIMEOUT_MS", "APP_ENV", "LOG_LEVEL", "LOG_JSON", "SEED_ON_STARTUP"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings pointing at an in-memory database.
    """
    return Settings(DB_PATH=MEMORY_PATH, LOG_LEVEL="DEBUG")
