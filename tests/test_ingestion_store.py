"""
tests/test_ingestion_store.py

SQLAlchemyIngestionStore against an in-memory SQLite database.

Coverage
--------
- insert then update by source_url (idempotent row count)
- created_at preserved, updated_at refreshed, nulls never overwrite
- in-batch duplicate URLs counted as skipped
- a failing write rolls back the whole batch; retry succeeds
- concurrent batches on the same URL never duplicate the row
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.scraping.errors import StorageError
from app.scraping.storage import KeyedLockPool, SQLAlchemyIngestionStore
from app.scraping.types import UpsertCounts
from conftest import make_record
from db.models import PropertyListing

URL_A = "https://listings.example.com/listing/a"
URL_B = "https://listings.example.com/listing/b"
URL_C = "https://listings.example.com/listing/c"


@pytest.fixture()
def store(session_factory: sessionmaker[Session]) -> SQLAlchemyIngestionStore:
    return SQLAlchemyIngestionStore(session_factory=session_factory)


def _row_count(session_factory: sessionmaker[Session]) -> int:
    with session_factory() as session:
        return int(session.scalar(select(func.count(PropertyListing.id))) or 0)


# ---------------------------------------------------------------------------
# Upsert semantics
# ---------------------------------------------------------------------------


def test_insert_then_update_is_idempotent(
    store: SQLAlchemyIngestionStore,
    session_factory: sessionmaker[Session],
) -> None:
    first = store.upsert_batch([make_record(URL_A, price=100), make_record(URL_B)])
    second = store.upsert_batch([make_record(URL_A, price=100), make_record(URL_B)])

    assert first == UpsertCounts(new=2, updated=0, skipped=0)
    assert second == UpsertCounts(new=0, updated=2, skipped=0)
    assert _row_count(session_factory) == 2


def test_update_preserves_created_at_and_keeps_known_values(store: SQLAlchemyIngestionStore) -> None:
    store.put(make_record(URL_A, title="Old title", price=1_000_000, city="Cape Town", bedrooms=3))
    before = store.get(URL_A)
    assert before is not None

    store.put(make_record(URL_A, title="New title", price=None, bedrooms=4))
    after = store.get(URL_A)
    assert after is not None

    assert after["id"] == before["id"]
    assert after["created_at"] == before["created_at"]
    assert after["updated_at"] >= before["updated_at"]
    assert after["title"] == "New title"
    assert after["bedrooms"] == 4
    assert after["price"] == 1_000_000
    assert after["city"] == "Cape Town"


def test_duplicate_urls_in_one_batch_are_skipped(
    store: SQLAlchemyIngestionStore,
    session_factory: sessionmaker[Session],
) -> None:
    counts = store.upsert_batch(
        [
            make_record(URL_A, title="first"),
            make_record(URL_A, title="second"),
            make_record(URL_B),
        ]
    )

    assert counts == UpsertCounts(new=2, updated=0, skipped=1)
    assert counts.ingested == 2
    assert store.get(URL_A)["title"] == "first"  # type: ignore[index]
    assert _row_count(session_factory) == 2


def test_get_unknown_url_is_none(store: SQLAlchemyIngestionStore) -> None:
    assert store.get("https://listings.example.com/missing") is None


def test_empty_batch_is_a_no_op(store: SQLAlchemyIngestionStore) -> None:
    assert store.upsert_batch([]) == UpsertCounts()


# ---------------------------------------------------------------------------
# Atomicity
# ---------------------------------------------------------------------------


def test_failed_batch_rolls_back_and_retry_succeeds(
    store: SQLAlchemyIngestionStore,
    session_factory: sessionmaker[Session],
    engine: Engine,
) -> None:
    store.put(make_record(URL_A, title="Original"))

    state = {"armed": True}

    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if state["armed"] and statement.lstrip().upper().startswith("INSERT INTO PROPERTIES"):
            state["armed"] = False
            raise OperationalError(statement, parameters, Exception("simulated write failure"))

    event.listen(engine, "before_cursor_execute", _before_cursor_execute)
    try:
        batch = [
            make_record(URL_A, title="Changed"),
            make_record(URL_B),
            make_record(URL_C),
        ]
        with pytest.raises(StorageError):
            store.upsert_batch(batch)

        assert store.get(URL_A)["title"] == "Original"  # type: ignore[index]
        assert store.get(URL_B) is None
        assert _row_count(session_factory) == 1

        counts = store.upsert_batch(batch)
    finally:
        event.remove(engine, "before_cursor_execute", _before_cursor_execute)

    assert counts == UpsertCounts(new=2, updated=1, skipped=0)
    assert store.get(URL_A)["title"] == "Changed"  # type: ignore[index]
    assert _row_count(session_factory) == 3


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_batches_on_same_url_never_duplicate(
    session_factory: sessionmaker[Session],
) -> None:
    lock_pool = KeyedLockPool()
    store = SQLAlchemyIngestionStore(session_factory=session_factory, lock_pool=lock_pool)
    results: list[UpsertCounts] = []
    errors: list[BaseException] = []
    start = threading.Barrier(4)

    def worker(title: str) -> None:
        try:
            start.wait()
            results.append(store.upsert_batch([make_record(URL_A, title=title)]))
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(f"t{i}",)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert sum(counts.new for counts in results) == 1
    assert sum(counts.updated for counts in results) == 3
    assert _row_count(session_factory) == 1
    assert lock_pool.active_keys() == 0
