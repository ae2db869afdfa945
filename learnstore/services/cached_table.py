"""In-memory mirror of one database table.

A ``CachedTable`` loads the whole table once and then answers lookups from
memory. Every mutation is written to the database first; the mirror only
changes after the write succeeded, and it is refreshed from the rows as they
were stored, so a failed write never leaves a record that exists in memory
alone.

Lookups compare values the way SQLite does: a value is converted with its
column's type affinity before it is compared or used as a key, so ``"1"`` and
``1`` name the same row of an INTEGER column.

The mirror is only accurate while the cached table is the sole writer of its
table. Two cached tables cannot claim the same table on one database; writes
made through the raw ``Database`` helpers are not detected.
"""

import json
import re
from typing import Dict, List, Mapping, Optional, Sequence

from learnstore.core.database import Conditions, Database
from learnstore.core.logging import get_logger
from learnstore.models.database import Record, RecordValue

logger = get_logger(__name__)

# Alias under which the rowid is selected next to the record's own columns
_ROWID = "learnstore_rowid"

_INTEGER_TEXT = re.compile(r"[+-]?\d+")
_NUMERIC_TEXT = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_INT64_MIN, _INT64_MAX = -(2 ** 63), 2 ** 63 - 1


def column_affinity(declared_type: Optional[str]) -> str:
    """SQLite type affinity of a declared column type."""
    declared = (declared_type or "").upper()
    if "INT" in declared:
        return "INTEGER"
    if "CHAR" in declared or "CLOB" in declared or "TEXT" in declared:
        return "TEXT"
    if "BLOB" in declared or not declared:
        return "BLOB"
    if "REAL" in declared or "FLOA" in declared or "DOUB" in declared:
        return "REAL"
    return "NUMERIC"


def _real_text(value: float) -> str:
    text = f"{value:.15g}"
    if not any(char in text for char in ".en"):
        text += ".0"
    return text


def apply_affinity(affinity: Optional[str], value: RecordValue) -> RecordValue:
    """Convert value the way SQLite does when storing it in a column of affinity."""
    if isinstance(value, bool):
        value = int(value)
    if value is None or affinity is None or affinity == "BLOB":
        return value

    if affinity == "TEXT":
        if isinstance(value, float):
            return _real_text(value)
        if isinstance(value, int):
            return str(value)
        return value

    number = value
    if isinstance(value, str):
        text = value.strip()
        if _INTEGER_TEXT.fullmatch(text):
            number = int(text)
        elif _NUMERIC_TEXT.fullmatch(text):
            number = float(text)
        else:
            return value

    if isinstance(number, int) and not _INT64_MIN <= number <= _INT64_MAX:
        number = float(number)
    if affinity == "REAL":
        return float(number)
    if isinstance(number, float) and number.is_integer() and _INT64_MIN <= number <= _INT64_MAX:
        return int(number)
    return number


def _normalize_key_value(value: RecordValue) -> RecordValue:
    # SQLite compares 1, 1.0 and True equal as keys
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def encode_primary_key(values: Sequence[RecordValue]) -> str:
    """Injective string form of an ordered primary key tuple."""
    return json.dumps([_normalize_key_value(value) for value in values], separators=(",", ":"))


class CachedTable:
    """Read-through, write-through cache of one table, keyed by primary key.

    Usage:
        table = await CachedTable.create(database, "sites", ["id"])
        await table.insert({"id": 1, "url": "https://school.example"})
        site = table.find_by_primary_key({"id": 1})
    """

    def __init__(self, database: Database, table_name: str,
                 primary_key_columns: Sequence[str] = ("id",)):
        if not primary_key_columns:
            raise ValueError("A cached table needs at least one primary key column")
        self.database = database
        self.table_name = table_name
        self.primary_key_columns = list(primary_key_columns)
        self._records: Dict[str, Record] = {}
        self._affinities: Dict[str, str] = {}
        self._rowid_alias: Optional[str] = None

    @classmethod
    async def create(cls, database: Database, table_name: str,
                     primary_key_columns: Sequence[str] = ("id",)) -> "CachedTable":
        """Build a cached table and load it before handing it out."""
        table = cls(database, table_name, primary_key_columns)
        database.claim_table(table_name, table)
        try:
            await table.initialize()
        except Exception:
            database.release_table(table_name, table)
            raise
        return table

    def release(self) -> None:
        """Give up ownership of the table so another cached table may claim it."""
        self.database.release_table(self.table_name, self)

    async def initialize(self) -> None:
        """(Re)load every row and the column types, replacing the current mirror."""
        records = await self.database.get_records(self.table_name)
        columns = await self.database.get_records_sql(f"PRAGMA table_info({self.table_name})")

        self._affinities = {column["name"]: column_affinity(column["type"]) for column in columns}
        key_columns = [column for column in columns if column["pk"]]
        if len(key_columns) == 1 and (key_columns[0]["type"] or "").upper() == "INTEGER":
            self._rowid_alias = key_columns[0]["name"]
        else:
            self._rowid_alias = None

        self._records = {self.serialize_primary_key(record): record for record in records}
        logger.debug("Cached table loaded", table=self.table_name, records=len(self._records))

    # ============================================================================
    # Reads (memory only)
    # ============================================================================

    def _matches(self, record: Mapping[str, RecordValue], conditions: Conditions) -> bool:
        if not conditions:
            return True
        return all(
            record.get(field) == apply_affinity(self._affinities.get(field), value)
            for field, value in conditions.items()
        )

    def find(self, conditions: Conditions) -> Optional[Record]:
        """First record equal to every condition, in no particular order."""
        for record in self._records.values():
            if self._matches(record, conditions):
                return dict(record)
        return None

    def find_many(self, conditions: Conditions = None) -> List[Record]:
        return [dict(record) for record in self._records.values() if self._matches(record, conditions)]

    def find_by_primary_key(self, primary_key: Mapping[str, RecordValue]) -> Optional[Record]:
        record = self._records.get(self.serialize_primary_key(primary_key))
        return dict(record) if record is not None else None

    def count(self, conditions: Conditions = None) -> int:
        if not conditions:
            return len(self._records)
        return sum(1 for record in self._records.values() if self._matches(record, conditions))

    def is_empty(self) -> bool:
        return not self._records

    # ============================================================================
    # Writes (database first, then memory)
    # ============================================================================

    async def _select_with_rowid(self, where: str, params: Sequence[RecordValue]) -> Dict[int, Record]:
        rows = await self.database.get_records_select(
            self.table_name, where, params, fields=f"rowid AS {_ROWID}, *",
        )
        return {row.pop(_ROWID): row for row in rows}

    async def _select_rowids(self, rowids: Sequence[int]) -> List[Record]:
        if not rowids:
            return []
        fragment, params = self.database.get_in_or_equal(list(rowids))
        return list((await self._select_with_rowid(f"rowid {fragment}", params)).values())

    async def insert(self, record: Record) -> None:
        """Insert or replace a record.

        The key may be left out only when it is an INTEGER PRIMARY KEY; the
        row then gets the rowid SQLite assigned. The mirror stores the row as
        read back from disk.
        """
        missing = [column for column in self.primary_key_columns if record.get(column) is None]
        if missing and missing != [self._rowid_alias]:
            raise KeyError(f"Missing primary key columns for {self.table_name}: {', '.join(missing)}")

        insert_id = await self.database.insert_record(self.table_name, dict(record))
        for stored in await self._select_rowids([insert_id]):
            self._records[self.serialize_primary_key(stored)] = stored

    async def update(self, data: Record, conditions: Conditions = None) -> int:
        """Update matching records; returns the number of affected rows."""
        if not data:
            return await self.database.update_records(self.table_name, data, conditions)

        where, params = self.database.where_clause(conditions)
        before = await self._select_with_rowid(where, params)
        affected = await self.database.update_records_where(self.table_name, data, where, params)

        if any(column in data for column in self.primary_key_columns):
            # Rows were re-keyed, and an INTEGER PRIMARY KEY moves the rowid too
            await self.initialize()
            return affected

        for record in before.values():
            self._records.pop(self.serialize_primary_key(record), None)
        for record in await self._select_rowids(list(before)):
            self._records[self.serialize_primary_key(record)] = record

        return affected

    async def delete(self, conditions: Conditions = None) -> int:
        """Delete matching records; no conditions empties the table."""
        if not conditions:
            deleted = await self.database.delete_records(self.table_name)
            self._records = {}
            return deleted

        where, params = self.database.where_clause(conditions)
        doomed = await self._select_with_rowid(where, params)
        deleted = await self.database.delete_records_select(self.table_name, where, params)
        for record in doomed.values():
            self._records.pop(self.serialize_primary_key(record), None)

        return deleted

    async def delete_by_primary_key(self, primary_key: Mapping[str, RecordValue]) -> int:
        return await self.delete(self.primary_key_conditions(primary_key))

    # ============================================================================
    # Primary keys
    # ============================================================================

    def primary_key_conditions(self, primary_key: Mapping[str, RecordValue]) -> Record:
        """Restrict a mapping to the primary key columns, in key order."""
        missing = [column for column in self.primary_key_columns if column not in primary_key]
        if missing:
            raise KeyError(f"Missing primary key columns for {self.table_name}: {', '.join(missing)}")
        return {column: primary_key[column] for column in self.primary_key_columns}

    def serialize_primary_key(self, primary_key: Mapping[str, RecordValue]) -> str:
        """Mirror key of a record or of a primary key mapping."""
        conditions = self.primary_key_conditions(primary_key)
        return encode_primary_key([
            apply_affinity(self._affinities.get(column), value) for column, value in conditions.items()
        ])
