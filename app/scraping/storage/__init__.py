"""
Storage layer exports.
"""

from app.scraping.storage.base import IngestionStore
from app.scraping.storage.locks import KeyedLockPool
from app.scraping.storage.sqlalchemy_storage import SQLAlchemyIngestionStore

__all__ = ["IngestionStore", "KeyedLockPool", "SQLAlchemyIngestionStore"]
