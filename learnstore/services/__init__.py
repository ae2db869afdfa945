"""Feature-facing caches built on the storage engine."""

from .cached_table import CachedTable
from .entry_cache import EntryCache

__all__ = ["CachedTable", "EntryCache"]
