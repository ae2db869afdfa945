"""Connections to one SQLite datastore file.

``SQLiteConnection`` owns a SQLAlchemy async engine (aiosqlite driver) bound to
a single pooled connection and serializes every statement over it.
``LoggedConnection`` exposes the same surface and reports each statement to a
query logger without changing results or errors.
"""

import asyncio
import time
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from learnstore.core.logging import get_logger, log_query
from learnstore.models.database import BatchStatement, QueryLog, QueryResult, RecordValue

logger = get_logger(__name__)

QueryLogger = Callable[[QueryLog], None]
StatementHook = Callable[..., None]


def _split_statement(statement: BatchStatement) -> Tuple[str, Tuple[RecordValue, ...]]:
    if isinstance(statement, str):
        return statement, ()
    sql, params = statement
    return sql, tuple(params or ())


class SQLiteConnection:
    """Async connection to one datastore file."""

    def __init__(self, path: str, echo: bool = False, foreign_keys: bool = True):
        self.path = path
        self.engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{path}",
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        self._lock = asyncio.Lock()
        self._install_pragmas(foreign_keys)

    def _install_pragmas(self, foreign_keys: bool) -> None:
        """Let BEGIN cover every statement, DDL included, so batches are atomic."""

        @event.listens_for(self.engine.sync_engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            # Disable the driver's own transaction handling, BEGIN is emitted below
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA foreign_keys={'ON' if foreign_keys else 'OFF'}")
            cursor.close()

        @event.listens_for(self.engine.sync_engine, "begin")
        def on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    async def _run(self, conn: AsyncConnection, sql: str,
                   params: Sequence[RecordValue]) -> QueryResult:
        result = await conn.exec_driver_sql(sql, tuple(params))
        if result.returns_rows:
            rows = [dict(row) for row in result.mappings().all()]
            return QueryResult(rows=rows, rows_affected=0, insert_id=None)
        return QueryResult(
            rows=[],
            rows_affected=max(result.rowcount, 0),
            insert_id=result.lastrowid,
        )

    async def execute(self, sql: str, params: Optional[Sequence[RecordValue]] = None) -> QueryResult:
        """Execute one statement in its own transaction."""
        async with self._lock:
            async with self.engine.begin() as conn:
                return await self._run(conn, sql, params or ())

    async def execute_batch(self, statements: Sequence[BatchStatement],
                            on_statement: Optional[StatementHook] = None) -> List[QueryResult]:
        """Execute statements in one transaction; any failure rolls back all.

        on_statement, when given, is called after each statement with its
        SQL, parameters, start time and the error it raised (if any).
        """
        async with self._lock:
            async with self.engine.begin() as conn:
                results = []
                for statement in statements:
                    sql, params = _split_statement(statement)
                    start = time.perf_counter()
                    try:
                        result = await self._run(conn, sql, params)
                    except Exception as e:
                        if on_statement:
                            on_statement(sql, list(params), start, e)
                        raise
                    if on_statement:
                        on_statement(sql, list(params), start)
                    results.append(result)
                return results

    async def close(self) -> None:
        async with self._lock:
            await self.engine.dispose()


class LoggedConnection:
    """Decorates a connection, reporting every statement to a query logger."""

    def __init__(self, connection: SQLiteConnection, db_name: str,
                 query_logger: Optional[QueryLogger] = None):
        self.connection = connection
        self.db_name = db_name
        self.query_logger = query_logger or (lambda query: log_query(logger, query))

    @property
    def engine(self) -> AsyncEngine:
        return self.connection.engine

    def _report(self, sql: str, params, start: float, error: Optional[BaseException] = None) -> None:
        self.query_logger(QueryLog(
            db_name=self.db_name,
            sql=sql,
            params=params,
            duration_ms=(time.perf_counter() - start) * 1000,
            error=error,
        ))

    async def execute(self, sql: str, params: Optional[Sequence[RecordValue]] = None) -> QueryResult:
        start = time.perf_counter()
        try:
            result = await self.connection.execute(sql, params)
        except Exception as e:
            self._report(sql, params, start, e)
            raise
        self._report(sql, params, start)
        return result

    async def execute_batch(self, statements: Sequence[BatchStatement]) -> List[QueryResult]:
        """Reports each statement of the batch on its own."""
        return await self.connection.execute_batch(statements, on_statement=self._report)

    async def close(self) -> None:
        await self.connection.close()
