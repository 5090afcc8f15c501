"""
Change executor.

Applies approved schema and data diffs to the local database. Schema changes
run first; if any statement fails, no data is applied. Data changes run in one
transaction per table and are rolled back on failure. The executor only ever
writes through the local store handle it is given.
"""

import time
from collections.abc import Sequence
from dataclasses import dataclass

from opentelemetry import trace

from .exceptions import ExecutionError, RollbackError, ValidationError
from .models import (
    AppliedStatement,
    DataApplyResult,
    DataDiff,
    ExecutionResult,
    FailedStatement,
    Row,
    SchemaApplyResult,
    SchemaDiff,
    TableResult,
)
from .ports import LocalStore
from .schema_diff import generate_schema_sql
from .sql_safety import Dialect
from .utils.logging import ContextLogger, LoggerLike, resolve_logger
from .utils.metrics import SyncMetrics
from .utils.tracing import trace_operation


@dataclass(frozen=True)
class ExecutionOptions:
    """
    Attributes:
        batch_size: Rows per multi-row insert
        continue_on_error: Keep applying other tables after one fails
        dialect: Dialect of the local database
    """

    batch_size: int = 1000
    continue_on_error: bool = False
    dialect: Dialect = Dialect.MYSQL


def ensure_local_target(store: LocalStore) -> None:
    """
    Reject a handle that declares itself read-only.

    Raises:
        ValidationError: If ``store.read_only`` is true
    """
    if getattr(store, "read_only", False):
        raise ValidationError(
            "Refusing to write to a read-only database handle",
            details={"store": type(store).__name__},
        )


def _batches(rows: Sequence[Row], size: int):
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def apply_schema_changes(
    local: LocalStore,
    schema_diffs: Sequence[SchemaDiff],
    dialect: Dialect | str = Dialect.MYSQL,
    logger: LoggerLike | None = None,
    metrics: SyncMetrics | None = None,
) -> SchemaApplyResult:
    """
    Execute schema statements one by one.

    Uses each diff's ``sql`` list, generating it when empty. Failures are
    recorded and mark the result unsuccessful; error-tagged diffs are skipped
    and reported the same way.
    """
    ensure_local_target(local)
    log = resolve_logger(logger, __name__, phase="schema_apply")
    result = SchemaApplyResult()

    for diff in schema_diffs:
        if diff.error:
            log.warning(f"Skipping {diff.table_name}: schema diff failed ({diff.error})")
            result.errors.append(f"{diff.table_name}: skipped, diff failed: {diff.error}")
            result.success = False
            continue

        if not diff.has_changes:
            continue

        statements = diff.sql or generate_schema_sql(diff, dialect)
        log.info(f"Applying schema changes to {diff.table_name}...")

        for sql in statements:
            try:
                log.debug(f"Executing: {sql[:100]}")
                local.execute_schema(sql)
            except Exception as e:
                log.error(f"Failed to apply schema change on {diff.table_name}: {e}")
                result.failed.append(FailedStatement(table=diff.table_name, sql=sql, error=str(e)))
                result.errors.append(f"{diff.table_name}: {e}")
                result.success = False
                if metrics:
                    metrics.record_schema_statement(diff.table_name, applied=False)
                continue

            result.applied.append(AppliedStatement(table=diff.table_name, sql=sql))
            if metrics:
                metrics.record_schema_statement(diff.table_name, applied=True)

    log.info(f"Schema changes: {len(result.applied)} applied, {len(result.failed)} failed")
    return result


def _apply_row_changes(
    local: LocalStore,
    diff: DataDiff,
    table_result: TableResult,
    options: ExecutionOptions,
    log: ContextLogger,
) -> None:
    table = diff.table_name

    if diff.to_insert:
        log.info(f"Inserting {len(diff.to_insert)} rows into {table}...")
        for number, batch in enumerate(_batches(diff.to_insert, options.batch_size), start=1):
            local.insert_rows(table, batch)
            table_result.inserts += len(batch)
            log.debug(f"Inserted batch {number}")

    if diff.to_update:
        log.info(f"Updating {len(diff.to_update)} rows in {table}...")
        for update in diff.to_update:
            local.update_row(table, update.remote, diff.primary_key)
            table_result.updates += 1

    if diff.to_delete:
        log.info(f"Deleting {len(diff.to_delete)} rows from {table}...")
        for row in diff.to_delete:
            local.delete_row(table, {column: row.get(column) for column in diff.primary_key})
            table_result.deletes += 1


def _apply_full_replace(
    local: LocalStore,
    diff: DataDiff,
    table_result: TableResult,
    options: ExecutionOptions,
    log: ContextLogger,
) -> None:
    table = diff.table_name
    log.warning(f"Performing full table replacement for {table}")

    table_result.deletes = local.execute(f"DELETE FROM {Dialect.parse(options.dialect).quote(table)}", ())
    log.info(f"Deleted {table_result.deletes} rows from {table}")

    for batch in _batches(diff.remote_data, options.batch_size):
        local.insert_rows(table, batch)
        table_result.inserts += len(batch)

    log.info(f"Inserted {table_result.inserts} rows into {table}")


def _apply_table(
    local: LocalStore,
    diff: DataDiff,
    options: ExecutionOptions,
    log: ContextLogger,
    metrics: SyncMetrics | None,
) -> TableResult:
    """
    Apply one table inside its own transaction; roll back on any error.

    A failure is recorded on the result as an ``ExecutionError`` chained to the
    collaborator's exception. When the transaction could not even be opened
    there is nothing to roll back.
    """
    table_result = TableResult(table=diff.table_name)
    start = time.monotonic()
    transaction_open = False

    with trace_operation("apply_table", kind=trace.SpanKind.CLIENT, table=diff.table_name) as span:
        try:
            local.begin_transaction()
            transaction_open = True
            if diff.full_replace:
                _apply_full_replace(local, diff, table_result, options, log)
            else:
                _apply_row_changes(local, diff, table_result, options, log)
            local.commit()
        except Exception as e:
            table_result.exception = ExecutionError(
                f"Failed to apply changes to {diff.table_name}",
                details={"table": diff.table_name},
                cause=e,
            )
            if transaction_open:
                log.error(f"Rolling back changes for {diff.table_name}: {e}")
                try:
                    local.rollback()
                except Exception as rollback_error:
                    raise RollbackError(diff.table_name, rollback_error, original=e) from rollback_error
                table_result.rolled_back = True
                span.set_attribute("rolled_back", True)
                if metrics:
                    metrics.record_rollback(diff.table_name)
            else:
                log.error(f"Could not open a transaction for {diff.table_name}: {e}")

            # Nothing from the failed transaction is visible locally
            table_result.inserts = table_result.updates = table_result.deletes = 0
            table_result.errors.append(str(e))
            return table_result

    log.info(f"Changes committed for {diff.table_name}")
    if metrics:
        metrics.record_table_apply(table_result, time.monotonic() - start)
    return table_result


def apply_data_changes(
    local: LocalStore,
    data_diffs: Sequence[DataDiff],
    options: ExecutionOptions | None = None,
    logger: LoggerLike | None = None,
    metrics: SyncMetrics | None = None,
) -> DataApplyResult:
    """
    Apply data diffs table by table.

    Error-tagged diffs are skipped and reported. A failing table is rolled
    back; with ``continue_on_error`` disabled the run stops there.

    Raises:
        RollbackError: If a rollback itself fails
    """
    ensure_local_target(local)
    options = options or ExecutionOptions()
    log = resolve_logger(logger, __name__, phase="data_apply")
    result = DataApplyResult()

    for diff in data_diffs:
        if diff.error:
            log.warning(f"Skipping {diff.table_name}: diff failed ({diff.error})")
            result.errors.append(f"{diff.table_name}: skipped, diff failed: {diff.error}")
            result.success = False
            continue

        if not diff.has_changes:
            log.debug(f"No data changes for {diff.table_name}")
            continue

        table_log = log.bind(table=diff.table_name)
        table_result = _apply_table(local, diff, options, table_log, metrics)
        result.tables.append(table_result)

        if table_result.errors:
            result.success = False
            result.errors.extend(f"{diff.table_name}: {error}" for error in table_result.errors)
            if not options.continue_on_error:
                log.error(f"Stopping data sync after failure in {diff.table_name}")
                break
            continue

        result.total_inserts += table_result.inserts
        result.total_updates += table_result.updates
        result.total_deletes += table_result.deletes

    log.info(
        f"Data changes applied: {result.total_inserts} inserts, "
        f"{result.total_updates} updates, {result.total_deletes} deletes"
    )
    return result


def execute_sync(
    local: LocalStore,
    schema_diffs: Sequence[SchemaDiff],
    data_diffs: Sequence[DataDiff],
    options: ExecutionOptions | None = None,
    logger: LoggerLike | None = None,
    metrics: SyncMetrics | None = None,
) -> ExecutionResult:
    """
    Apply approved schema diffs, then approved data diffs.

    Args:
        local: Local store (must not be read-only)
        schema_diffs: Approved schema diffs
        data_diffs: Approved data diffs
        options: Execution options
        logger: Injected logger
        metrics: Metrics sink

    Returns:
        ExecutionResult; data is never applied when a schema statement failed

    Raises:
        ValidationError: If the local handle is read-only
        RollbackError: If a table's rollback fails
    """
    ensure_local_target(local)
    options = options or ExecutionOptions()
    log = resolve_logger(logger, __name__)
    result = ExecutionResult()

    with trace_operation(
        "execute_sync",
        kind=trace.SpanKind.INTERNAL,
        schema_diffs=len(schema_diffs),
        data_diffs=len(data_diffs),
    ) as span:
        if schema_diffs:
            log.info("Applying schema changes...")
            result.schema = apply_schema_changes(
                local, schema_diffs, options.dialect, logger=log, metrics=metrics
            )
            if not result.schema.success:
                result.success = False
                log.error("Schema changes failed - aborting data sync")
                span.set_attribute("success", False)
                return result

        if data_diffs:
            log.info("Applying data changes...")
            result.data = apply_data_changes(local, data_diffs, options, logger=log, metrics=metrics)
            if not result.data.success:
                result.success = False

        span.set_attribute("success", result.success)

    return result


def format_execution_summary(result: ExecutionResult) -> str:
    """Plain-text summary of a sync run."""
    rule = "=" * 60
    lines = [f"\n{rule}", "                 SYNC EXECUTION SUMMARY", rule]

    if result.schema:
        lines.append("\nSchema Changes:")
        lines.append(f"  Applied: {len(result.schema.applied)}")
        lines.append(f"  Failed: {len(result.schema.failed)}")

    if result.data:
        lines.append("\nData Changes:")
        lines.append(f"  Inserts: {result.data.total_inserts}")
        lines.append(f"  Updates: {result.data.total_updates}")
        lines.append(f"  Deletes: {result.data.total_deletes}")
        rolled_back = [t.table for t in result.data.tables if t.rolled_back]
        if rolled_back:
            lines.append(f"  Rolled back: {', '.join(rolled_back)}")

    if result.success:
        lines.append("\n[OK] Sync completed successfully")
    else:
        lines.append("\n[FAILED] Sync completed with errors:")
        for error in result.errors:
            lines.append(f"  - {error}")

    lines.append(f"\n{rule}\n")
    return "\n".join(lines)
