"""
Diff strategies for a single table.

``TableDiffer`` holds the collaborators and settings for one table and exposes
one method per strategy. Strategy selection lives in the planner.
"""

from collections.abc import Callable, Sequence
from typing import Any

from opentelemetry import trace

from ..models import DataDiff, DiffStrategy, Row, RowUpdate, TimestampColumns
from ..ports import LocalStore, SourceReader
from ..utils.logging import ContextLogger
from ..utils.tracing import trace_operation
from .options import DataDiffOptions
from .rows import (
    build_batch_lookup_query,
    build_point_lookup_query,
    build_primary_key_value,
    get_row_changes,
    rows_equal,
)
from .stream import ChunkStream

RetryRunner = Callable[..., Any]


class TableDiffer:
    """Computes the data diff of one table with a chosen strategy."""

    def __init__(
        self,
        source: SourceReader,
        local: LocalStore,
        table: str,
        primary_key: Sequence[str],
        options: DataDiffOptions,
        retry: RetryRunner,
        log: ContextLogger,
    ):
        """
        Initialize the differ.

        Args:
            source: Remote reader
            local: Local store
            table: Table name
            primary_key: Key columns (empty for key-less tables)
            options: Diff options
            retry: Runner with the signature ``(func, operation_name)``
            log: Logger bound to the table
        """
        self.source = source
        self.local = local
        self.table = table
        self.primary_key = list(primary_key)
        self.options = options
        self.retry = retry
        self.log = log

    def _key(self, row: Row) -> str:
        return build_primary_key_value(row, self.primary_key)

    def _order_by(self) -> str | None:
        return self.primary_key[0] if self.primary_key else None

    def _remote_stream(self) -> ChunkStream:
        return ChunkStream(
            self.source.get_table_data_chunked(self.table, self.options.chunk_size, self._order_by()),
            table=self.table,
        )

    def _local_stream(self) -> ChunkStream:
        return ChunkStream(
            self.local.get_table_data_chunked(self.table, self.options.chunk_size, self._order_by()),
            table=self.table,
        )

    def _remote_count(self) -> int:
        return self.retry(lambda: self.source.get_row_count(self.table), f"get_row_count({self.table})")

    def _local_count(self) -> int:
        return self.retry(lambda: self.local.get_row_count(self.table), f"get_row_count({self.table})")

    def _new_diff(self, strategy: DiffStrategy, timestamps: TimestampColumns | None) -> DataDiff:
        has_timestamps = bool(timestamps and (timestamps.has_updated_at or timestamps.has_created_at))
        return DataDiff(
            table_name=self.table,
            primary_key=list(self.primary_key),
            strategy=strategy,
            has_timestamps=has_timestamps,
        )

    def _classify(self, diff: DataDiff, remote_row: Row, local_row: Row | None) -> None:
        if local_row is None:
            diff.to_insert.append(remote_row)
            diff.stats.inserts += 1
        elif not rows_equal(remote_row, local_row):
            diff.to_update.append(
                RowUpdate(remote=remote_row, local=local_row, changes=get_row_changes(local_row, remote_row))
            )
            diff.stats.updates += 1

    def _lookup_batch(self, rows: list[Row]) -> dict[str, Row]:
        if not rows:
            return {}
        sql, params = build_batch_lookup_query(self.table, self.primary_key, rows, self.options.dialect)
        local_rows = self.retry(lambda: self.local.query(sql, params), f"batch_lookup({self.table})")
        return {self._key(row): row for row in local_rows}

    def _lookup_row(self, row: Row) -> Row | None:
        sql, params = build_point_lookup_query(self.table, self.primary_key, row, self.options.dialect)
        matches = self.retry(lambda: self.local.query(sql, params), f"point_lookup({self.table})")
        return matches[0] if matches else None

    def _log_summary(self, diff: DataDiff) -> None:
        self.log.info(
            f"Data diff for {self.table}: {diff.stats.inserts} inserts, "
            f"{diff.stats.updates} updates, {diff.stats.deletes} deletes"
        )

    def streaming_diff(self, timestamps: TimestampColumns | None = None) -> DataDiff:
        """
        Memory-bounded diff.

        Remote rows are read in key order one chunk at a time and matched
        against local rows with a single batch lookup per chunk. Only the key
        strings seen on the remote side are kept; a final pass over the local
        table reports keys the remote never produced as deletes.
        """
        diff = self._new_diff(DiffStrategy.STREAMING, timestamps)
        self.log.info(f"Using streaming diff for {self.table} (memory-efficient mode)...")

        with trace_operation("streaming_diff", kind=trace.SpanKind.INTERNAL, table=self.table):
            remote_count = self._remote_count()
            diff.stats.local_rows = self._local_count()

            remote_keys_seen: set[str] = set()
            remote_stream = self._remote_stream()
            for chunk in remote_stream:
                local_index = self._lookup_batch(chunk)
                for remote_row in chunk:
                    key = self._key(remote_row)
                    remote_keys_seen.add(key)
                    self._classify(diff, remote_row, local_index.get(key))

            diff.stats.scanned_rows = remote_stream.rows_read
            diff.stats.remote_rows = remote_count or len(remote_keys_seen)

            self.log.debug(f"Scanning local {self.table} for deletions...")
            for local_row in self._local_stream().rows():
                if self._key(local_row) not in remote_keys_seen:
                    diff.to_delete.append(local_row)
                    diff.stats.deletes += 1

        self._log_summary(diff)
        return diff

    def in_memory_diff(self, timestamps: TimestampColumns | None = None) -> DataDiff:
        """Legacy variant for small tables: indexes the whole local table first."""
        diff = self._new_diff(DiffStrategy.IN_MEMORY, timestamps)
        self.log.info(f"Building local data index for {self.table}...")

        with trace_operation("in_memory_diff", kind=trace.SpanKind.INTERNAL, table=self.table):
            local_index = {self._key(row): row for row in self._local_stream().rows()}
            diff.stats.local_rows = len(local_index)
            self.log.debug(f"Local index built: {len(local_index)} rows")

            seen: set[str] = set()
            for remote_row in self._remote_stream().rows():
                diff.stats.remote_rows += 1
                key = self._key(remote_row)
                seen.add(key)
                self._classify(diff, remote_row, local_index.get(key))

            diff.stats.scanned_rows = diff.stats.remote_rows

            for key, local_row in local_index.items():
                if key not in seen:
                    diff.to_delete.append(local_row)
                    diff.stats.deletes += 1

        self._log_summary(diff)
        return diff

    def full_diff(self, local_exists: bool = True) -> DataDiff:
        """Key-less table: carry a full remote snapshot and mark it for replacement."""
        self.log.warning(f"Performing full table comparison for {self.table} (no primary key)")
        diff = self._new_diff(DiffStrategy.FULL_REPLACE, None)
        diff.primary_key = []

        with trace_operation("full_diff", kind=trace.SpanKind.INTERNAL, table=self.table):
            for chunk in self._remote_stream():
                diff.remote_data.extend(chunk)
                diff.stats.remote_rows += len(chunk)

            diff.stats.local_rows = self._local_count() if local_exists else 0

        diff.stats.scanned_rows = diff.stats.remote_rows
        diff.stats.inserts = diff.stats.remote_rows
        return diff

    def first_sync_diff(self, timestamps: TimestampColumns | None = None) -> DataDiff:
        """Local side has no data: every remote row is an insert."""
        diff = self._new_diff(DiffStrategy.FIRST_SYNC, timestamps)

        with trace_operation("first_sync_diff", kind=trace.SpanKind.INTERNAL, table=self.table):
            for chunk in self._remote_stream():
                diff.to_insert.extend(chunk)
                diff.stats.inserts += len(chunk)
                diff.stats.remote_rows += len(chunk)

        diff.stats.scanned_rows = diff.stats.remote_rows
        self.log.info(f"Full key diff for {self.table}: {diff.stats.inserts} rows to insert")
        return diff

    def incremental_diff(self, timestamp_column: str, timestamps: TimestampColumns | None = None) -> DataDiff | None:
        """
        Diff only the remote rows modified after the local maximum timestamp.

        Deletes are never detected in this mode. When the local table holds
        more rows than the remote one, a warning is attached to the diff.

        Returns:
            The diff, or None when the local table has rows but no timestamp
            values to start from (the caller falls back to a full scan)
        """
        local_max = self.retry(
            lambda: self.local.get_max_timestamp(self.table, timestamp_column),
            f"get_max_timestamp({self.table})",
        )
        local_rows = self._local_count()

        if local_max is None:
            if local_rows:
                self.log.warning(
                    f"{self.table}: local rows have no {timestamp_column} values, "
                    f"falling back to a full scan"
                )
                return None
            self.log.info(f"No local data for {self.table} - fetching all remote rows")
            return self.first_sync_diff(timestamps)

        diff = self._new_diff(DiffStrategy.INCREMENTAL, timestamps)
        diff.has_timestamps = True
        diff.timestamp_column = timestamp_column
        diff.local_max_timestamp = local_max
        diff.stats.local_rows = local_rows

        self.log.info(f"Incremental sync from {local_max} for {self.table}")

        with trace_operation("incremental_diff", kind=trace.SpanKind.INTERNAL, table=self.table):
            modified = self.retry(
                lambda: self.source.get_modified_rows(self.table, timestamp_column, local_max),
                f"get_modified_rows({self.table})",
            )
            diff.stats.scanned_rows = len(modified)

            if not modified:
                self.log.info(f"No changes found for {self.table} since {local_max}")

            for remote_row in modified:
                self._classify(diff, remote_row, self._lookup_row(remote_row))

            diff.stats.remote_rows = self._remote_count()

        self.log.info(
            f"Incremental diff for {self.table}: {diff.stats.inserts} inserts, "
            f"{diff.stats.updates} updates (scanned {diff.stats.scanned_rows} rows)"
        )

        if diff.stats.local_rows > diff.stats.remote_rows:
            message = (
                f"{self.table}: local has more rows ({diff.stats.local_rows}) than remote "
                f"({diff.stats.remote_rows}); deletes cannot be detected with incremental sync"
            )
            diff.warnings.append(message)
            self.log.warning(message)

        return diff
