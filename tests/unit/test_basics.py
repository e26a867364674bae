from datetime import datetime, timedelta, timezone

import pytest

from crm_double import config
from crm_double.errors import ConflictError, ErrorDetail, NotFoundError, ValidationError
from crm_double.utils.clock import Clock, FrozenClock, format_timestamp
from scripts import generate_data

DEFAULT_BUSY_TIMEOUT_MS = 5000


def test_get_settings_defaults(settings_env):
    settings = config.get_settings()
    assert settings.db_path == "crm_double.db"
    assert settings.db_busy_timeout_ms == DEFAULT_BUSY_TIMEOUT_MS
    assert settings.log_level == "INFO"
    assert settings.log_json is False
    assert settings.seed_on_startup is True


def test_get_settings_reads_environment(settings_env, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DB_PATH", "/tmp/crm-test.db")
    monkeypatch.setenv("LOG_JSON", "true")
    monkeypatch.setenv("SEED_ON_STARTUP", "0")
    settings = config.get_settings()
    assert settings.db_path == "/tmp/crm-test.db"
    assert settings.log_json is True
    assert settings.seed_on_startup is False


def test_log_level_is_normalised(settings_env, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LOG_LEVEL", " debug ")
    assert config.get_settings().log_level == "DEBUG"


def test_unknown_log_level_is_rejected():
    with pytest.raises(ValueError):
        config.Settings(LOG_LEVEL="chatty")


def test_get_settings_is_cached(settings_env):
    assert config.get_settings() is config.get_settings()


def test_format_timestamp_renders_milliseconds_in_utc():
    moment = datetime(2024, 1, 31, 9, 15, 2, 123456, tzinfo=timezone.utc)
    assert format_timestamp(moment) == "2024-01-31T09:15:02.123Z"


def test_clock_never_runs_backwards():
    readings = iter(
        [
            datetime(2024, 1, 1, 12, 0, 1, tzinfo=timezone.utc),
            datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
        ]
    )
    clock = Clock(source=lambda: next(readings))
    first = clock.now()
    second = clock.now()
    assert second == first


def test_frozen_clock_advances_one_step_per_read():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    clock = FrozenClock(start, step=timedelta(seconds=1))
    assert clock.timestamp() == "2024-01-01T00:00:00.000Z"
    assert clock.timestamp() == "2024-01-01T00:00:01.000Z"


def test_error_to_dict_carries_category_and_details():
    err = ValidationError("bad values", [ErrorDetail("amount is not a number", code="INVALID_NUMBER")])
    payload = err.to_dict()
    assert payload["status"] == "error"
    assert payload["category"] == "VALIDATION_ERROR"
    assert payload["errors"] == [{"message": "amount is not a number", "code": "INVALID_NUMBER"}]
    assert NotFoundError("x").category == "OBJECT_NOT_FOUND"
    assert ConflictError("x").category == "CONFLICT"


def test_generate_data_is_deterministic():
    first = generate_data._generate_companies(5, seed=123)
    second = generate_data._generate_companies(5, seed=123)
    assert first == second
    assert len({company["domain"] for company in first}) == 5


def test_generate_data_contacts_have_unique_emails():
    domains = [company["domain"] for company in generate_data._generate_companies(3, seed=7)]
    contacts = generate_data._generate_contacts(10, domains, seed=7)
    assert len(contacts) == 10
    assert len({contact["email"] for contact in contacts}) == 10
    assert contacts[0]["email"].endswith("@" + domains[0])


def test_generate_data_chunks_respect_size():
    chunks = list(generate_data._chunks(list(range(250)), 100))
    assert [len(chunk) for chunk in chunks] == [100, 100, 50]
