"""
Collaborator protocols for the remote reader and the local store.

The sync engine never opens connections itself; callers hand it objects that
satisfy these protocols (typically thin wrappers around pymysql or psycopg
connections). The source handle is only ever read from.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from .models import Row, TableSchema, TimestampColumns


@runtime_checkable
class SourceReader(Protocol):
    """Read-only access to the remote (production) database."""

    def get_tables(self) -> list[str]: ...

    def get_table_schema(self, name: str) -> TableSchema: ...

    def check_timestamp_columns(self, name: str) -> TimestampColumns: ...

    def get_row_count(self, name: str) -> int: ...

    def get_table_data_chunked(
        self, name: str, chunk_size: int, order_by: str | None = None
    ) -> Iterable[list[Row]]:
        """Lazy sequence of row batches ordered by ``order_by``."""
        ...

    def get_modified_rows(self, name: str, column: str, since: Any) -> list[Row]: ...


@runtime_checkable
class LocalStore(SourceReader, Protocol):
    """Read/write access to the local (development) database."""

    def table_exists(self, name: str) -> bool: ...

    def get_max_timestamp(self, name: str, column: str) -> Any: ...

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[Row]: ...

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a DML statement and return the affected row count."""
        ...

    def insert_rows(self, name: str, rows: list[Row]) -> int: ...

    def update_row(self, name: str, row: Row, primary_key: Sequence[str]) -> int: ...

    def delete_row(self, name: str, key_values: Mapping[str, Any]) -> int: ...

    def execute_schema(self, sql: str) -> None: ...

    def begin_transaction(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
