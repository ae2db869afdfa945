"""Storage layer exception hierarchy.

Engine faults (constraint violations, SQL errors, I/O errors) are not wrapped:
they surface as the SQLAlchemy ``DBAPIError`` subclasses raised by the engine.
"""


class StorageError(Exception):
    """Base exception for all storage-layer errors."""


class ConnectionNotReadyError(StorageError):
    """The connection was used before the database finished opening."""

    def __init__(self, db_name: str):
        self.db_name = db_name
        super().__init__(f"Database '{db_name}' is not ready")


class NotFoundError(StorageError):
    """A query expected a row and found none."""


class MissingTableError(NotFoundError):
    """The requested table does not exist."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Table '{table}' does not exist")


class StaleEntryError(StorageError):
    """A cache entry exists but is older than the caller accepts."""

    def __init__(self, entry_id: int, timemodified: int):
        self.entry_id = entry_id
        self.timemodified = timemodified
        super().__init__(f"Cache entry {entry_id} is stale (timemodified={timemodified})")


class TableOwnershipError(StorageError):
    """The table is already mirrored by another cached table on this database."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Table '{table}' is already owned by a cached table")
