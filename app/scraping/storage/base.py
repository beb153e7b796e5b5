"""
Storage layer interfaces for scraped property listings.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from app.scraping.types import ExtractedRecord, UpsertCounts


class IngestionStore(ABC):
    """
    Single writer of persisted listings, keyed by `source_url`.
    """

    @abstractmethod
    def upsert_batch(self, records: Sequence[ExtractedRecord]) -> UpsertCounts:
        """
        Atomically insert or update every record and return the counts.

        Raises StorageError after rolling back if any write fails.
        """

    @abstractmethod
    def get(self, source_url: str) -> dict[str, Any] | None:
        """
        Return the persisted listing for a URL as a plain dict.
        """

    def put(self, record: ExtractedRecord) -> UpsertCounts:
        return self.upsert_batch([record])
