"""
SQLAlchemy-backed ingestion store for scraped listings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.repositories.property_repository import PropertyRepository
from app.scraping.errors import StorageError
from app.scraping.logging_utils import log_event
from app.scraping.storage.base import IngestionStore
from app.scraping.storage.locks import KeyedLockPool
from app.scraping.types import ExtractedRecord, UpsertCounts

logger = logging.getLogger(__name__)


class SQLAlchemyIngestionStore(IngestionStore):
    """
    Upsert listings by `source_url`, one transaction per batch.

    Batches touching the same URL are serialized through a per-URL lock
    pool; batches over disjoint URLs run concurrently.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        lock_pool: KeyedLockPool | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._locks = lock_pool or KeyedLockPool()

    def upsert_batch(self, records: Sequence[ExtractedRecord]) -> UpsertCounts:
        if not records:
            return UpsertCounts()

        unique, skipped = self._dedupe(records)
        source_urls = [record.source_url for record in unique]

        with self._locks.hold(source_urls):
            session = self._session_factory()
            try:
                with session.begin():
                    repository = PropertyRepository(session)
                    existing = repository.find_by_source_urls(source_urls, for_update=True)
                    new = updated = 0
                    for record in unique:
                        row = existing.get(record.source_url)
                        if row is None:
                            repository.insert(record)
                            new += 1
                        else:
                            repository.apply_update(row, record)
                            updated += 1
            except SQLAlchemyError as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "ingestion_batch_rolled_back",
                    batch_size=len(unique),
                    error=str(exc),
                )
                raise StorageError(f"Batch upsert of {len(unique)} listing(s) failed: {exc}") from exc
            finally:
                session.close()

        counts = UpsertCounts(new=new, updated=updated, skipped=skipped)
        log_event(
            logger,
            logging.INFO,
            "ingestion_batch_applied",
            new=counts.new,
            updated=counts.updated,
            skipped=counts.skipped,
        )
        return counts

    def get(self, source_url: str) -> dict[str, Any] | None:
        session = self._session_factory()
        try:
            row = PropertyRepository(session).get_by_source_url(source_url)
            if row is None:
                return None
            return {
                attr.key: getattr(row, attr.key)
                for attr in inspect(row).mapper.column_attrs
            }
        finally:
            session.close()

    @staticmethod
    def _dedupe(records: Sequence[ExtractedRecord]) -> tuple[list[ExtractedRecord], int]:
        seen: set[str] = set()
        unique: list[ExtractedRecord] = []
        for record in records:
            if record.source_url in seen:
                continue
            seen.add(record.source_url)
            unique.append(record)
        return unique, len(records) - len(unique)
