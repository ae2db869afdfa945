"""Pure SQL fragment builders used by the storage engine.

Nothing here touches a connection: each helper turns plain Python values into
SQL text plus the list of parameters bound to its ``?`` placeholders.
"""

from typing import List, Mapping, Optional, Sequence, Tuple, Union

from learnstore.models.database import QueryParams, Record, RecordValue
from learnstore.models.schema import ColumnSchema, ForeignKeySchema


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Default of get_in_or_equal's on_empty_items: None there means "IS NULL".
UNSET = _Unset()

ALWAYS_TRUE = "1 = 1"
ALWAYS_FALSE = "1 = 2"
NEVER_MATCHES = "IN ()"


def _placeholders(count: int) -> str:
    return ",".join("?" * count)


def get_in_or_equal(
    items: Union[RecordValue, Sequence[RecordValue]],
    equal: bool = True,
    on_empty_items=UNSET,
) -> QueryParams:
    """Build an ``= ?`` or ``IN (...)`` fragment to append after a field name.

    Args:
        items: A single value or a sequence of values
        equal: False negates the fragment (``<> ?`` / ``NOT IN (...)``)
        on_empty_items: What an empty sequence compiles to. Unset gives a
            fragment that never matches, None gives ``IS NULL`` /
            ``IS NOT NULL``, anything else is used as the single item.

    Returns:
        QueryParams with the fragment and its parameters
    """
    if isinstance(items, (list, tuple)):
        values = list(items)
    else:
        values = [items]

    if not values:
        if on_empty_items is UNSET:
            return QueryParams(NEVER_MATCHES, [])
        if on_empty_items is None:
            return QueryParams("IS NULL" if equal else "IS NOT NULL", [])
        values = [on_empty_items]

    if len(values) == 1:
        return QueryParams("= ?" if equal else "<> ?", values)

    prefix = "" if equal else "NOT "
    return QueryParams(f"{prefix}IN ({_placeholders(len(values))})", values)


def where_clause(conditions: Optional[Mapping[str, RecordValue]] = None) -> QueryParams:
    """Translate ``{field: value}`` into ANDed equality tests.

    Empty conditions match every row. None values compile to ``IS NULL``
    and are never bound as parameters.
    """
    if not conditions:
        return QueryParams(ALWAYS_TRUE, [])

    parts = []
    params: List[RecordValue] = []
    for field, value in conditions.items():
        if value is None:
            parts.append(f"{field} IS NULL")
        else:
            parts.append(f"{field} = ?")
            params.append(value)

    return QueryParams(" AND ".join(parts), params)


def where_clause_list(field: str, values: Optional[Sequence[RecordValue]]) -> QueryParams:
    """Translate "field takes one of values" into a WHERE fragment.

    An empty list compiles to a condition that matches no row.
    """
    if not values:
        return QueryParams(ALWAYS_FALSE, [])

    include_null = any(value is None for value in values)
    params = [value for value in values if value is not None]

    if not params:
        return QueryParams(f"{field} IS NULL", [])

    if len(params) == 1:
        sql = f"{field} = ?"
    else:
        sql = f"{field} IN ({_placeholders(len(params))})"

    if include_null:
        sql = f"({field} IS NULL OR {sql})"

    return QueryParams(sql, params)


def build_insert_query(table: str, data: Record) -> QueryParams:
    """INSERT OR REPLACE statement for one record."""
    fields = list(data.keys())
    return QueryParams(
        f"INSERT OR REPLACE INTO {table} ({','.join(fields)}) VALUES ({_placeholders(len(fields))})",
        [data[field] for field in fields],
    )


def build_create_table_sql(
    name: str,
    columns: Sequence[ColumnSchema],
    primary_keys: Optional[Sequence[str]] = None,
    unique_keys: Optional[Sequence[Sequence[str]]] = None,
    foreign_keys: Optional[Sequence[ForeignKeySchema]] = None,
    table_check: Optional[str] = None,
) -> str:
    """CREATE TABLE IF NOT EXISTS statement for the given definition."""
    columns_sql = []
    for column in columns:
        column_sql = column.name
        if column.type:
            column_sql += f" {column.type.value}"
        if column.primary_key:
            column_sql += " PRIMARY KEY"
            if column.auto_increment:
                column_sql += " AUTOINCREMENT"
        if column.not_null:
            column_sql += " NOT NULL"
        if column.unique:
            column_sql += " UNIQUE"
        if column.check:
            column_sql += f" CHECK ({column.check})"
        if column.default is not None:
            column_sql += f" DEFAULT {column.default}"
        columns_sql.append(column_sql)

    structure = ", ".join(columns_sql)

    if primary_keys:
        structure += f", PRIMARY KEY ({', '.join(primary_keys)})"

    for key_set in unique_keys or ():
        if key_set:
            structure += f", UNIQUE ({', '.join(key_set)})"

    if table_check:
        structure += f", CHECK ({table_check})"

    for foreign_key in foreign_keys or ():
        if not foreign_key.columns:
            continue
        structure += f", FOREIGN KEY ({', '.join(foreign_key.columns)}) REFERENCES {foreign_key.table}"
        if foreign_key.foreign_columns:
            structure += f" ({', '.join(foreign_key.foreign_columns)})"
        if foreign_key.actions:
            structure += f" {foreign_key.actions}"

    return f"CREATE TABLE IF NOT EXISTS {name} ({structure})"


def normalise_limit_from_num(limit_from: Optional[int] = None,
                             limit_num: Optional[int] = None) -> Tuple[int, int]:
    """Clamp LIMIT arguments; None and -1 both mean 0."""
    limit_from = 0 if not limit_from or limit_from == -1 else max(0, int(limit_from))
    limit_num = 0 if not limit_num or limit_num == -1 else max(0, int(limit_num))
    return limit_from, limit_num
