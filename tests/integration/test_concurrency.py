"""Test that one engine can be shared across threads."""

from __future__ import annotations

import threading
from typing import List

import pytest

from crm_double.engine import open_engine

THREADS = 8
ROUNDS = 20


@pytest.fixture
def file_engine(tmp_path, settings_env):
    eng = open_engine(str(tmp_path / "crm.db"), seed=True)
    try:
        yield eng
    finally:
        eng.close()


def test_mixed_writes_and_searches_from_many_threads(file_engine):
    """Every write lands exactly once while threads interleave."""
    errors: List[Exception] = []
    start = threading.Barrier(THREADS)

    def worker(n: int) -> None:
        try:
            start.wait()
            for i in range(ROUNDS):
                record = file_engine.records.create("contacts", {"email": f"t{n}-{i}@example.com"})
                file_engine.records.update("contacts", record.id, {"firstname": f"Worker{n}"})
                file_engine.search.search("contacts", {"query": f"t{n}-"})
                batch = file_engine.records.batch_create(
                    "contacts", [{"properties": {"email": f"b{n}-{i}@example.com", "firstname": f"Worker{n}"}}]
                )
                assert batch.num_errors == 0
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(THREADS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    everyone = {"filterGroups": [{"filters": [{"propertyName": "email", "operator": "HAS_PROPERTY"}]}]}
    assert file_engine.search.search("contacts", everyone).total == THREADS * ROUNDS * 2
    for n in range(THREADS):
        mine = {"filterGroups": [{"filters": [{"propertyName": "firstname", "operator": "EQ", "value": f"Worker{n}"}]}]}
        assert file_engine.search.search("contacts", mine).total == ROUNDS * 2


def test_failed_transaction_in_one_thread_leaves_others_intact(file_engine):
    """A rollback on one thread never discards another thread's commit."""
    done = threading.Event()

    def failing() -> None:
        with pytest.raises(RuntimeError):
            with file_engine.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO objects (object_type_id, created_at, updated_at) VALUES ('0-1', 'x', 'x')"
                )
                raise RuntimeError("boom")
        done.set()

    thread = threading.Thread(target=failing)
    thread.start()
    kept = file_engine.records.create("contacts", {"email": "kept@example.com"})
    thread.join()

    assert done.is_set()
    assert file_engine.records.get("contacts", kept.id).id == kept.id
    listed = file_engine.records.list("contacts", limit=100).results
    assert [r.id for r in listed] == [kept.id]
