"""Async SQLite storage engine.

One ``Database`` owns one datastore file. It opens lazily: the first call to
``ready()`` (which every operation awaits) starts the connection task, so no
statement ever reaches the connection before it exists.
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import OperationalError

from learnstore.core import query
from learnstore.core.config import Settings
from learnstore.core.connection import LoggedConnection, QueryLogger, SQLiteConnection
from learnstore.core.exceptions import ConnectionNotReadyError, MissingTableError, NotFoundError, TableOwnershipError
from learnstore.core.logging import get_logger
from learnstore.models.database import BatchStatement, QueryParams, QueryResult, Record, RecordValue
from learnstore.models.schema import ColumnSchema, ColumnType, ForeignKeySchema, TableSchema

logger = get_logger(__name__)

Conditions = Optional[Mapping[str, RecordValue]]


class Database:
    """Async storage engine over one SQLite datastore."""

    # Pure translators, exposed on the engine for callers composing raw SQL
    get_in_or_equal = staticmethod(query.get_in_or_equal)
    where_clause = staticmethod(query.where_clause)
    where_clause_list = staticmethod(query.where_clause_list)
    build_create_table_sql = staticmethod(query.build_create_table_sql)
    normalise_limit_from_num = staticmethod(query.normalise_limit_from_num)

    def __init__(self, name: str, settings: Optional[Settings] = None,
                 query_logger: Optional[QueryLogger] = None):
        self.name = name
        self.settings = settings or Settings()
        self.query_logger = query_logger
        self._connection: Optional[Union[SQLiteConnection, LoggedConnection]] = None
        self._ready_task: Optional[asyncio.Task] = None
        self._owned_tables: Dict[str, object] = {}

    # ============================================================================
    # Lifecycle
    # ============================================================================

    def ready(self) -> "asyncio.Task[None]":
        """Readiness barrier; opening starts on the first call."""
        if self._ready_task is None:
            self._ready_task = asyncio.ensure_future(self._create_connection())
        return self._ready_task

    async def _create_connection(self) -> None:
        path = self.settings.database_path(self.name)
        connection = SQLiteConnection(
            path,
            echo=self.settings.database_echo,
            foreign_keys=self.settings.database_foreign_keys,
        )
        if self.settings.database_logging_enabled or self.query_logger is not None:
            connection = LoggedConnection(connection, self.name, self.query_logger)

        # Fail here rather than on the first real statement
        try:
            await connection.execute("SELECT 1")
        except Exception:
            # The next ready() starts over instead of replaying this failure
            self._ready_task = None
            await connection.close()
            raise

        self._connection = connection
        logger.info("Database opened", db_name=self.name, path=path)

    @property
    def connection(self) -> Union[SQLiteConnection, LoggedConnection]:
        if self._connection is None:
            raise ConnectionNotReadyError(self.name)
        return self._connection

    async def open(self) -> None:
        """Open the database. Only needed after close(); it opens on first use."""
        await self.ready()

    async def close(self) -> None:
        """Close the connection. A later operation reopens it."""
        await self.ready()
        connection = self.connection
        self._connection = None
        self._ready_task = None
        await connection.close()
        logger.info("Database closed", db_name=self.name)

    def get_name(self) -> str:
        return self.name

    # ============================================================================
    # Raw execution
    # ============================================================================

    async def execute(self, sql: str, params: Optional[Sequence[RecordValue]] = None) -> QueryResult:
        """Execute a SQL statement.

        Use only when none of the other helpers fits.
        """
        await self.ready()
        return await self.connection.execute(sql, params)

    async def execute_batch(self, statements: Sequence[BatchStatement]) -> List[QueryResult]:
        """Execute a list of statements atomically: all commit or none does."""
        await self.ready()
        return await self.connection.execute_batch(list(statements))

    # ============================================================================
    # Schema
    # ============================================================================

    async def create_table(
        self,
        name: str,
        columns: Sequence[ColumnSchema],
        primary_keys: Optional[Sequence[str]] = None,
        unique_keys: Optional[Sequence[Sequence[str]]] = None,
        foreign_keys: Optional[Sequence[ForeignKeySchema]] = None,
        table_check: Optional[str] = None,
    ) -> None:
        """Create a table if it doesn't exist."""
        sql = self.build_create_table_sql(name, columns, primary_keys, unique_keys, foreign_keys, table_check)
        await self.execute(sql)

    async def create_table_from_schema(self, table: TableSchema) -> None:
        await self.create_table(
            table.name,
            table.columns,
            table.primary_keys,
            table.unique_keys,
            table.foreign_keys,
            table.table_check,
        )

    async def create_tables_from_schema(self, tables: Iterable[TableSchema]) -> None:
        """Create tables in order, stopping at the first failure."""
        for table in tables:
            await self.create_table_from_schema(table)

    async def add_column(self, table: str, column: str, type: Union[ColumnType, str],
                         constraints: str = "") -> None:
        """Add a column to an existing table. Re-adding an existing column is a no-op."""
        column_type = type.value if isinstance(type, ColumnType) else type
        try:
            await self.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type} {constraints}".rstrip())
        except OperationalError as e:
            if "duplicate column name" in str(e.orig):
                logger.debug("Column already exists", table=table, column=column)
                return
            raise

    async def drop_table(self, name: str) -> None:
        await self.execute(f"DROP TABLE IF EXISTS {name}")

    async def ensure_table_exists(self, name: str) -> None:
        """Raise MissingTableError unless the table exists."""
        try:
            await self.record_exists("sqlite_master", {"type": "table", "tbl_name": name})
        except NotFoundError:
            raise MissingTableError(name) from None

    async def table_exists(self, name: str) -> bool:
        try:
            await self.ensure_table_exists(name)
        except MissingTableError:
            return False
        return True

    async def migrate_table(
        self,
        old_table: str,
        new_table: str,
        map_callback: Optional[Callable[[Record], Record]] = None,
    ) -> None:
        """Move every row of old_table into new_table and drop old_table.

        Does nothing when old_table does not exist.
        """
        try:
            await self.ensure_table_exists(old_table)
        except MissingTableError:
            return

        records = await self.get_all_records(old_table)
        if map_callback:
            records = [map_callback(record) for record in records]

        await self.insert_records(new_table, records)
        await self.drop_table(old_table)

        logger.info("Table migrated", old_table=old_table, new_table=new_table, records=len(records))

    # ============================================================================
    # Writes
    # ============================================================================

    async def insert_record(self, table: str, data: Record) -> Optional[int]:
        """Insert or replace one record. Returns SQLite's internal rowid."""
        sql, params = query.build_insert_query(table, data)
        result = await self.execute(sql, params)
        return result.insert_id

    async def insert_records(self, table: str, records: Iterable[Record]) -> None:
        """Insert or replace several records in one atomic batch."""
        statements = []
        for record in records:
            sql, params = query.build_insert_query(table, record)
            statements.append((sql, params))

        if statements:
            await self.execute_batch(statements)

    async def insert_records_from(self, table: str, source: str) -> None:
        """Copy every record of source into table."""
        records = await self.get_all_records(source)
        await self.insert_records(table, records)

    async def update_records(self, table: str, data: Record, conditions: Conditions = None) -> int:
        """Update the rows matching conditions. Returns the number of affected rows."""
        where, params = self.where_clause(conditions)
        return await self.update_records_where(table, data, where, params)

    async def update_records_where(
        self,
        table: str,
        data: Record,
        where: Optional[str] = None,
        where_params: Optional[Sequence[RecordValue]] = None,
    ) -> int:
        """Update rows matching a raw WHERE fragment (without the WHERE keyword)."""
        if not data:
            return 0

        sets = ", ".join(f"{field} = ?" for field in data)
        sql = f"UPDATE {table} SET {sets}"
        params = list(data.values())
        if where:
            sql += f" WHERE {where}"
            params.extend(where_params or ())

        result = await self.execute(sql, params)
        return result.rows_affected

    async def delete_records(self, table: str, conditions: Conditions = None) -> int:
        """Delete rows matching conditions; no conditions empties the table."""
        if not conditions:
            result = await self.execute(f"DELETE FROM {table}")
            return result.rows_affected

        select, params = self.where_clause(conditions)
        return await self.delete_records_select(table, select, params)

    async def delete_records_list(self, table: str, field: str, values: Sequence[RecordValue]) -> int:
        select, params = self.where_clause_list(field, values)
        return await self.delete_records_select(table, select, params)

    async def delete_records_select(self, table: str, select: str = "",
                                    params: Optional[Sequence[RecordValue]] = None) -> int:
        sql = f"DELETE FROM {table}"
        if select:
            sql += f" WHERE {select}"
        result = await self.execute(sql, params)
        return result.rows_affected

    # ============================================================================
    # Reads
    # ============================================================================

    async def get_all_records(self, table: str) -> List[Record]:
        return await self.get_records(table)

    async def get_record(self, table: str, conditions: Conditions = None, fields: str = "*") -> Record:
        """Get one record. Raises NotFoundError when no row matches."""
        select, params = self.where_clause(conditions)
        return await self.get_record_select(table, select, params, fields)

    async def get_record_select(self, table: str, select: str = "",
                                params: Optional[Sequence[RecordValue]] = None,
                                fields: str = "*") -> Record:
        sql = f"SELECT {fields} FROM {table}"
        if select:
            sql += f" WHERE {select}"
        return await self.get_record_sql(sql, params)

    async def get_record_sql(self, sql: str, params: Optional[Sequence[RecordValue]] = None) -> Record:
        records = await self.get_records_sql(sql, params, 0, 1)
        if not records:
            raise NotFoundError("No records found.")
        return records[0]

    async def get_records(
        self,
        table: str,
        conditions: Conditions = None,
        sort: str = "",
        fields: str = "*",
        limit_from: int = 0,
        limit_num: int = 0,
    ) -> List[Record]:
        """Get every record matching conditions; an empty list when none does."""
        select, params = self.where_clause(conditions)
        return await self.get_records_select(table, select, params, sort, fields, limit_from, limit_num)

    async def get_records_list(
        self,
        table: str,
        field: str,
        values: Sequence[RecordValue],
        sort: str = "",
        fields: str = "*",
        limit_from: int = 0,
        limit_num: int = 0,
    ) -> List[Record]:
        select, params = self.where_clause_list(field, values)
        return await self.get_records_select(table, select, params, sort, fields, limit_from, limit_num)

    async def get_records_select(
        self,
        table: str,
        select: str = "",
        params: Optional[Sequence[RecordValue]] = None,
        sort: str = "",
        fields: str = "*",
        limit_from: int = 0,
        limit_num: int = 0,
    ) -> List[Record]:
        sql = f"SELECT {fields} FROM {table}"
        if select:
            sql += f" WHERE {select}"
        if sort:
            sql += f" ORDER BY {sort}"
        return await self.get_records_sql(sql, params, limit_from, limit_num)

    async def get_records_sql(
        self,
        sql: str,
        params: Optional[Sequence[RecordValue]] = None,
        limit_from: Optional[int] = None,
        limit_num: Optional[int] = None,
    ) -> List[Record]:
        limit_from, limit_num = self.normalise_limit_from_num(limit_from, limit_num)
        if limit_from or limit_num:
            # LIMIT -1 means no upper bound in SQLite
            sql += f" LIMIT {limit_num if limit_num > 0 else -1} OFFSET {limit_from}"

        result = await self.execute(sql, params)
        return result.rows

    async def get_field(self, table: str, field: str, conditions: Conditions = None) -> RecordValue:
        select, params = self.where_clause(conditions)
        return await self.get_field_select(table, field, select, params)

    async def get_field_select(self, table: str, field: str, select: str = "",
                               params: Optional[Sequence[RecordValue]] = None) -> RecordValue:
        sql = f"SELECT {field} FROM {table}"
        if select:
            sql += f" WHERE {select}"
        return await self.get_field_sql(sql, params)

    async def get_field_sql(self, sql: str, params: Optional[Sequence[RecordValue]] = None) -> RecordValue:
        """First column of the first row. Raises NotFoundError when there is no row."""
        record = await self.get_record_sql(sql, params)
        return next(iter(record.values()))

    async def count_records(self, table: str, conditions: Conditions = None) -> int:
        select, params = self.where_clause(conditions)
        return await self.count_records_select(table, select, params)

    async def count_records_select(self, table: str, select: str = "",
                                   params: Optional[Sequence[RecordValue]] = None,
                                   count_item: str = "COUNT('x')") -> int:
        sql = f"SELECT {count_item} FROM {table}"
        if select:
            sql += f" WHERE {select}"
        return await self.count_records_sql(sql, params)

    async def count_records_sql(self, sql: str, params: Optional[Sequence[RecordValue]] = None) -> int:
        count = await self.get_field_sql(sql, params)
        if not isinstance(count, int) or count < 0:
            return 0
        return count

    async def record_exists(self, table: str, conditions: Conditions = None) -> None:
        """Raise NotFoundError unless a record matches conditions."""
        await self.get_record(table, conditions)

    async def record_exists_select(self, table: str, select: str = "",
                                   params: Optional[Sequence[RecordValue]] = None) -> None:
        await self.get_record_select(table, select, params)

    async def record_exists_sql(self, sql: str, params: Optional[Sequence[RecordValue]] = None) -> None:
        await self.get_record_sql(sql, params)

    # ============================================================================
    # Cached table ownership
    # ============================================================================

    def claim_table(self, table: str, owner: Any) -> None:
        """Register owner as the only in-memory mirror of table on this database."""
        current = self._owned_tables.get(table)
        if current is not None and current is not owner:
            raise TableOwnershipError(table)
        self._owned_tables[table] = owner

    def release_table(self, table: str, owner: Any) -> None:
        if self._owned_tables.get(table) is owner:
            del self._owned_tables[table]

    def table_owner(self, table: str) -> Optional[Any]:
        return self._owned_tables.get(table)
