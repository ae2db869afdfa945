"""Keyed, mergeable cache of JSON payloads stored in one database table.

The backing table is expected to exist already (see ``entry_cache_schema``).
Payloads are kept as opaque JSON text; merging happens on the decoded dict
in memory and the whole row is written back.
"""

import json
from typing import Any, Dict, Mapping, Optional

from learnstore.core.database import Database
from learnstore.core.exceptions import NotFoundError, StaleEntryError
from learnstore.core.logging import get_logger, log_cache_operation
from learnstore.models.cache import CacheEntry, now_ms

logger = get_logger(__name__)


class EntryCache:
    """Entry cache over one three-column table (id, data, timemodified)."""

    def __init__(self, database: Database, table_name: str):
        self.database = database
        self.table_name = table_name

    async def get_entry(self, entry_id: int) -> CacheEntry:
        """Get an entry. Raises NotFoundError if missing or not decodable."""
        try:
            record = await self.database.get_record(self.table_name, {"id": entry_id})
        except NotFoundError:
            log_cache_operation(logger, "get", entry_id, hit=False, table=self.table_name)
            raise

        try:
            value = json.loads(record["data"])
        except (TypeError, ValueError) as e:
            log_cache_operation(logger, "get", entry_id, hit=False, table=self.table_name, error=str(e))
            raise NotFoundError(f"Cache entry {entry_id} could not be decoded") from e
        if not isinstance(value, dict):
            log_cache_operation(logger, "get", entry_id, hit=False, table=self.table_name)
            raise NotFoundError(f"Cache entry {entry_id} is not an object")

        log_cache_operation(logger, "get", entry_id, hit=True, table=self.table_name)
        return CacheEntry(id=record["id"], value=value, timemodified=record["timemodified"] or 0)

    async def get_value(self, entry_id: int, max_age: Optional[int] = None) -> Dict[str, Any]:
        """Get an entry's payload.

        Args:
            entry_id: Entry id
            max_age: Maximum accepted age in milliseconds. Invalidated entries
                never satisfy it.

        Raises:
            NotFoundError: No usable entry
            StaleEntryError: The entry exists but is too old
        """
        entry = await self.get_entry(entry_id)
        if max_age is not None and entry.is_stale(max_age):
            raise StaleEntryError(entry_id, entry.timemodified)
        return entry.value

    async def set_entry(self, entry_id: int, value: Mapping[str, Any]) -> CacheEntry:
        """Merge value over the stored payload and rewrite the whole row.

        New keys overwrite stored ones, other stored keys are kept.
        """
        try:
            current = (await self.get_entry(entry_id)).value
        except NotFoundError:
            current = {}
        merged = {**current, **value}

        entry = CacheEntry(id=entry_id, value=merged, timemodified=now_ms())
        await self.database.insert_record(self.table_name, {
            "id": entry.id,
            "data": json.dumps(entry.value),
            "timemodified": entry.timemodified,
        })

        log_cache_operation(logger, "set", entry_id, table=self.table_name, keys=len(value))
        return entry

    async def invalidate(self, entry_id: int) -> None:
        """Mark an entry stale. Its value stays readable."""
        await self.database.update_records(self.table_name, {"timemodified": 0}, {"id": entry_id})
        log_cache_operation(logger, "invalidate", entry_id, table=self.table_name)

    async def invalidate_all(self) -> int:
        updated = await self.database.update_records(self.table_name, {"timemodified": 0})
        log_cache_operation(logger, "invalidate_all", self.table_name, updated=updated)
        return updated

    async def delete_entry(self, entry_id: int) -> None:
        deleted = await self.database.delete_records(self.table_name, {"id": entry_id})
        log_cache_operation(logger, "delete", entry_id, table=self.table_name, deleted=bool(deleted))

    async def clear(self) -> None:
        """Delete every entry."""
        deleted = await self.database.delete_records(self.table_name)
        log_cache_operation(logger, "clear", self.table_name, deleted=deleted)
