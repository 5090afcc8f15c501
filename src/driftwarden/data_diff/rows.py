"""
Row helpers: value normalization, equality, primary-key identity and the
lookup queries issued against the local store.
"""

import json
from collections.abc import Sequence
from datetime import UTC, date, datetime, time
from typing import Any

from ..models import ColumnChange, Row, Scalar
from ..sql_safety import Dialect

PK_SEPARATOR = "|"
NULL_KEY = "NULL"


def normalize_value(value: Scalar) -> str | None:
    """
    Normalize a column value for comparison.

    None stays None, temporal values become ISO-8601 text (aware datetimes
    in UTC), JSON values become canonical JSON text, bytes become hex and
    everything else its string form.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def rows_equal(left: Row, right: Row) -> bool:
    """Rows are equal when their column sets match and every normalized value matches."""
    left_columns = sorted(left)
    right_columns = sorted(right)

    if len(left_columns) != len(right_columns):
        return False

    for left_column, right_column in zip(left_columns, right_columns):
        if left_column != right_column:
            return False
        if normalize_value(left[left_column]) != normalize_value(right[right_column]):
            return False

    return True


def get_row_changes(local: Row, remote: Row) -> list[ColumnChange]:
    """Columns of the remote row whose normalized value differs locally."""
    changes = []
    for column, remote_value in remote.items():
        local_value = local.get(column)
        if normalize_value(local_value) != normalize_value(remote_value):
            changes.append(ColumnChange(column=column, from_value=local_value, to_value=remote_value))
    return changes


def build_primary_key_value(row: Row, primary_key: Sequence[str]) -> str:
    """Ordered, ``|``-joined string of the row's key values."""
    parts = []
    for column in primary_key:
        normalized = normalize_value(row.get(column))
        parts.append(NULL_KEY if normalized is None else normalized)
    return PK_SEPARATOR.join(parts)


def build_batch_lookup_query(
    table: str,
    primary_key: Sequence[str],
    rows: Sequence[Row],
    dialect: Dialect | str = Dialect.MYSQL,
) -> tuple[str, list[Any]]:
    """
    Build one query fetching the local rows matching a chunk of remote rows.

    Single-column keys use an IN list; composite keys use an OR of AND
    conditions.

    Returns:
        (sql, params) with pyformat placeholders
    """
    dialect = Dialect.parse(dialect)
    placeholder = dialect.placeholder
    quoted_table = dialect.quote(table)

    if len(primary_key) == 1:
        column = primary_key[0]
        placeholders = ", ".join(placeholder for _ in rows)
        sql = f"SELECT * FROM {quoted_table} WHERE {dialect.quote(column)} IN ({placeholders})"
        return sql, [row.get(column) for row in rows]

    quoted_columns = [dialect.quote(c) for c in primary_key]
    row_condition = "(" + " AND ".join(f"{c} = {placeholder}" for c in quoted_columns) + ")"
    where_clause = " OR ".join(row_condition for _ in rows)

    params: list[Any] = []
    for row in rows:
        params.extend(row.get(column) for column in primary_key)

    return f"SELECT * FROM {quoted_table} WHERE {where_clause}", params


def build_point_lookup_query(
    table: str,
    primary_key: Sequence[str],
    row: Row,
    dialect: Dialect | str = Dialect.MYSQL,
) -> tuple[str, list[Any]]:
    """Build the single-row lookup used by incremental diffs."""
    dialect = Dialect.parse(dialect)
    where_clause = " AND ".join(
        f"{dialect.quote(column)} = {dialect.placeholder}" for column in primary_key
    )
    sql = f"SELECT * FROM {dialect.quote(table)} WHERE {where_clause}"
    return sql, [row.get(column) for column in primary_key]
