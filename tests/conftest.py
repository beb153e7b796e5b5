"""
tests/conftest.py

Shared fixtures: an in-memory SQLite database, job definitions and
in-process stand-ins for the fetcher and ingestion store.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Sequence
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.scraping.errors import FetchError
from app.scraping.storage.base import IngestionStore
from app.scraping.types import ExtractedRecord, ScrapeJobDefinition, UpsertCounts
from db.base import Base
from db.models import PropertyListing, ScrapeJob, ScrapeRun
from db.session import build_session_factory


LISTING_PAGE = """
<html><body>
  <div class="results">
    <div class="property-item">
      <h2 class="title">Sunny 3 bed house</h2>
      <span class="price">R 1,250,000</span>
      <div class="address">12 Oak Street, Rondebosch</div>
      <span class="beds">3 bedrooms</span>
      <a href="/listing/1">View</a>
    </div>
    <div class="property-item">
      <h2 class="title">Modern flat</h2>
      <span class="price">R 899 000</span>
      <div class="address">4 Beach Road, Sea Point</div>
      <a href="/listing/2">View</a>
    </div>
  </div>
</body></html>
"""

LISTING_SELECTORS: dict[str, list[str]] = {
    "title": ["h2.title"],
    "price": ["span.price"],
    "address": ["div.address"],
    "bedrooms": ["span.beds"],
}


def make_job(**overrides: Any) -> ScrapeJobDefinition:
    values: dict[str, Any] = {
        "name": "Example listings",
        "target_url": "https://listings.example.com/search",
        "schedule": "0 0 2 * * *",
        "selectors": {field: list(candidates) for field, candidates in LISTING_SELECTORS.items()},
    }
    values.update(overrides)
    return ScrapeJobDefinition(**values)


def make_record(source_url: str, **overrides: Any) -> ExtractedRecord:
    values: dict[str, Any] = {
        "title": "Listing",
        "address": "1 Main Road",
        "source_url": source_url,
    }
    values.update(overrides)
    return ExtractedRecord(**values)


class StaticFetcher:
    """
    Returns canned markup, or raises a canned FetchError.
    """

    def __init__(
        self,
        markup: str = LISTING_PAGE,
        *,
        error: FetchError | None = None,
        before_return: Callable[[], None] | None = None,
    ) -> None:
        self.markup = markup
        self.error = error
        self.before_return = before_return
        self.calls: list[str] = []

    def fetch(self, url: str, *, rate_limit_per_second: float | None = None, control: Any = None) -> str:
        self.calls.append(url)
        if self.before_return is not None:
            self.before_return()
        if self.error is not None:
            raise self.error
        return self.markup


class RecordingStore(IngestionStore):
    """
    Keeps upserted records in a dict keyed by source URL.
    """

    def __init__(self) -> None:
        self.rows: dict[str, ExtractedRecord] = {}
        self.batches: list[list[ExtractedRecord]] = []
        self._lock = threading.Lock()

    def upsert_batch(self, records: Sequence[ExtractedRecord]) -> UpsertCounts:
        with self._lock:
            self.batches.append(list(records))
            new = updated = skipped = 0
            seen: set[str] = set()
            for record in records:
                if record.source_url in seen:
                    skipped += 1
                    continue
                seen.add(record.source_url)
                if record.source_url in self.rows:
                    updated += 1
                else:
                    new += 1
                self.rows[record.source_url] = record
            return UpsertCounts(new=new, updated=updated, skipped=skipped)

    def get(self, source_url: str) -> dict[str, Any] | None:
        record = self.rows.get(source_url)
        return record.as_row() if record is not None else None


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(
        engine,
        tables=[PropertyListing.__table__, ScrapeJob.__table__, ScrapeRun.__table__],
    )
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def recording_store() -> RecordingStore:
    return RecordingStore()
