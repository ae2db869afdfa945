"""Local persistence layer: SQLite storage engine, cached tables and entry cache."""

from learnstore.core.config import Settings
from learnstore.core.database import Database
from learnstore.core.exceptions import (
    ConnectionNotReadyError,
    MissingTableError,
    NotFoundError,
    StaleEntryError,
    StorageError,
    TableOwnershipError,
)
from learnstore.models.cache import CacheEntry, entry_cache_schema
from learnstore.models.schema import ColumnSchema, ColumnType, ForeignKeySchema, TableSchema
from learnstore.services import CachedTable, EntryCache

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "CachedTable",
    "ColumnSchema",
    "ColumnType",
    "ConnectionNotReadyError",
    "Database",
    "EntryCache",
    "ForeignKeySchema",
    "MissingTableError",
    "NotFoundError",
    "Settings",
    "StaleEntryError",
    "StorageError",
    "TableOwnershipError",
    "TableSchema",
    "entry_cache_schema",
]
