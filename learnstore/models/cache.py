"""Entry cache row model and the schema of its backing table.

Every entry cache table has the same three columns: an integer id, the JSON
payload, and the last modification time in epoch milliseconds.
"""

import time
from typing import Any, Dict, Optional
from sqlmodel import SQLModel, Field

from learnstore.models.schema import ColumnSchema, ColumnType, TableSchema


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class CacheEntry(SQLModel):
    """A decoded entry cache row.

    A timemodified of 0 means the entry was invalidated: the value is still
    the last one stored, but callers should treat it as stale.
    """

    id: int
    value: Dict[str, Any] = Field(default_factory=dict)
    timemodified: int = Field(default=0, ge=0)

    @property
    def invalidated(self) -> bool:
        return self.timemodified == 0

    def is_stale(self, max_age: int, now: Optional[int] = None) -> bool:
        """Whether the entry is invalidated or older than max_age milliseconds."""
        if self.invalidated:
            return True
        now = now_ms() if now is None else now
        return now - self.timemodified > max_age


def entry_cache_schema(table_name: str) -> TableSchema:
    """Schema of an entry cache backing table."""
    return TableSchema(
        name=table_name,
        columns=(
            ColumnSchema(name="id", type=ColumnType.INTEGER, primary_key=True),
            ColumnSchema(name="data", type=ColumnType.TEXT),
            ColumnSchema(name="timemodified", type=ColumnType.INTEGER),
        ),
    )
