"""Value types exchanged with the storage engine."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

RecordValue = Union[str, int, float, None]
Record = Dict[str, RecordValue]

# A batch statement is raw SQL or a (sql, params) pair.
BatchStatement = Union[str, Tuple[str, Sequence[RecordValue]]]


class QueryParams(NamedTuple):
    """A SQL fragment and the parameters bound to its placeholders."""
    sql: str
    params: List[RecordValue]


@dataclass
class QueryResult:
    """Outcome of one executed statement."""
    rows: List[Record] = field(default_factory=list)
    rows_affected: int = 0
    insert_id: Optional[int] = None


@dataclass
class QueryLog:
    """Instrumentation record for one executed statement."""
    db_name: str
    sql: str
    duration_ms: float
    params: Optional[Sequence[Any]] = None
    error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.error is not None
