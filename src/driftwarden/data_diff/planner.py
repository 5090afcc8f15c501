"""
Data diff planner.

Selects a strategy per table and fans out across tables. Strategy order:

1. No primary key: full replace
2. Incremental, when enabled and both sides expose the same modification
   timestamp column
3. First sync, when the local table does not exist yet
4. Streaming diff, or the in-memory variant when streaming is disabled
"""

import time
from collections.abc import Sequence

from opentelemetry import trace

from ..models import DataDiff, Scalar
from ..ports import LocalStore, SourceReader
from ..utils.logging import LoggerLike, resolve_logger
from ..utils.metrics import SyncMetrics
from ..utils.retry import create_retry_wrapper
from ..utils.tracing import trace_operation
from .options import DataDiffOptions
from .rows import build_primary_key_value
from .strategies import TableDiffer


def diff_table_data(
    source: SourceReader,
    local: LocalStore,
    table: str,
    options: DataDiffOptions | None = None,
    logger: LoggerLike | None = None,
    metrics: SyncMetrics | None = None,
) -> DataDiff:
    """
    Compare one table's rows and plan inserts, updates and deletes.

    Args:
        source: Remote reader
        local: Local store
        table: Table name
        options: Diff options (defaults apply when omitted)
        logger: Injected logger
        metrics: Metrics sink

    Returns:
        DataDiff tagged with the strategy used

    Raises:
        Any collaborator error that survives the retry layer
    """
    options = options or DataDiffOptions()
    log = resolve_logger(logger, __name__, table=table)
    retry = create_retry_wrapper(
        options.retry,
        on_retry=metrics.retry_callback("data_read") if metrics else None,
    )
    start = time.monotonic()

    with trace_operation("diff_table_data", kind=trace.SpanKind.INTERNAL, table=table) as span:
        schema = retry(lambda: source.get_table_schema(table), f"get_table_schema({table})")
        primary_key = list(options.primary_key_override or schema.primary_key)
        local_exists = retry(lambda: local.table_exists(table), f"table_exists({table})")

        differ = TableDiffer(source, local, table, primary_key, options, retry, log)

        if not primary_key:
            diff = differ.full_diff(local_exists=local_exists)
        else:
            diff = None
            timestamps = retry(lambda: source.check_timestamp_columns(table), f"check_timestamp_columns({table})")

            if options.use_incremental and timestamps.has_updated_at and local_exists:
                local_timestamps = retry(
                    lambda: local.check_timestamp_columns(table), f"check_timestamp_columns({table})"
                )
                if local_timestamps.updated_at_column == timestamps.updated_at_column:
                    log.info(f"Using incremental sync for {table} ({timestamps.updated_at_column} column detected)")
                    diff = differ.incremental_diff(timestamps.updated_at_column, timestamps)

            if diff is None:
                if not local_exists:
                    log.info(f"Local table {table} does not exist, every remote row is an insert")
                    diff = differ.first_sync_diff(timestamps)
                elif options.streaming_mode:
                    diff = differ.streaming_diff(timestamps)
                else:
                    diff = differ.in_memory_diff(timestamps)

        span.set_attribute("strategy", diff.strategy.value)
        span.set_attribute("inserts", diff.stats.inserts)
        span.set_attribute("updates", diff.stats.updates)
        span.set_attribute("deletes", diff.stats.deletes)

    if metrics:
        metrics.record_table_diff(diff, time.monotonic() - start)

    return diff


def compare_all_data(
    source: SourceReader,
    local: LocalStore,
    tables: Sequence[str],
    options: DataDiffOptions | None = None,
    logger: LoggerLike | None = None,
    metrics: SyncMetrics | None = None,
) -> list[DataDiff]:
    """
    Diff each table in order.

    A table that fails is reported as an error-tagged diff with zero stats
    so the remaining tables are still processed.
    """
    log = resolve_logger(logger, __name__, phase="data_diff")
    log.info(f"Comparing data for {len(tables)} tables...")

    diffs = []
    for table in tables:
        try:
            diffs.append(diff_table_data(source, local, table, options, logger=log, metrics=metrics))
        except Exception as e:
            log.error(f"Error comparing data for {table}: {e}", exc_info=True)
            failed = DataDiff.failed(table, str(e))
            if metrics:
                metrics.record_table_diff(failed, 0.0)
            diffs.append(failed)

    return diffs


def _format_value(value: Scalar) -> str:
    if value is None:
        return "NULL"
    text = str(value)
    return text[:27] + "..." if len(text) > 30 else text


def format_data_diff(diff: DataDiff, max_display: int = 10) -> str:
    """Preview of a table's planned row changes, truncated per category."""
    lines = [f"\n=== Table: {diff.table_name} ==="]

    if diff.error:
        lines.append(f"[ERROR] {diff.error}")
        return "\n".join(lines)

    lines.append(f"Primary Key: {', '.join(diff.primary_key) or 'NONE'}")
    lines.append(f"Strategy: {diff.strategy.value}")
    lines.append(f"Remote rows: {diff.stats.remote_rows}, Local rows: {diff.stats.local_rows}")

    if diff.full_replace:
        lines.append("\n[WARNING] No primary key - full table replacement required")
        lines.append(
            f"This will DELETE all {diff.stats.local_rows} local rows and "
            f"INSERT {diff.stats.remote_rows} remote rows"
        )
        return "\n".join(lines)

    for warning in diff.warnings:
        lines.append(f"[WARNING] {warning}")

    if diff.to_insert:
        lines.append(f"\n[INSERT] {diff.stats.inserts} rows to insert")
        for row in diff.to_insert[:max_display]:
            lines.append(f"  + {build_primary_key_value(row, diff.primary_key)}")
        if len(diff.to_insert) > max_display:
            lines.append(f"  ... and {len(diff.to_insert) - max_display} more")

    if diff.to_update:
        lines.append(f"\n[UPDATE] {diff.stats.updates} rows to update")
        for update in diff.to_update[:max_display]:
            lines.append(f"  ~ {build_primary_key_value(update.remote, diff.primary_key)}")
            for change in update.changes[:3]:
                lines.append(
                    f"      {change.column}: {_format_value(change.from_value)} -> "
                    f"{_format_value(change.to_value)}"
                )
            if len(update.changes) > 3:
                lines.append(f"      ... and {len(update.changes) - 3} more columns")
        if len(diff.to_update) > max_display:
            lines.append(f"  ... and {len(diff.to_update) - max_display} more")

    if diff.to_delete:
        lines.append(f"\n[DELETE] {diff.stats.deletes} rows to delete")
        for row in diff.to_delete[:max_display]:
            lines.append(f"  - {build_primary_key_value(row, diff.primary_key)}")
        if len(diff.to_delete) > max_display:
            lines.append(f"  ... and {len(diff.to_delete) - max_display} more")

    if not (diff.stats.inserts or diff.stats.updates or diff.stats.deletes):
        lines.append("\n[OK] Table is in sync")

    return "\n".join(lines)
