"""
Schema diff calculator.

Compares remote and local table snapshots and derives the ALTER statements that
bring the local table in line with the remote one. Additions and modifications
come before removals, and index changes come after the column shape is final.
"""

from collections.abc import Iterable, Sequence

from opentelemetry import trace

from .models import PRIMARY_INDEX_NAME, ColumnDef, ColumnModification, IndexDef, SchemaDiff, TableSchema
from .ports import LocalStore, SourceReader
from .sql_safety import Dialect
from .utils.logging import LoggerLike, resolve_logger
from .utils.metrics import SyncMetrics
from .utils.retry import RetryConfig, create_retry_wrapper
from .utils.tracing import trace_operation

CURRENT_TIMESTAMP = "CURRENT_TIMESTAMP"


def build_column_definition(column: ColumnDef) -> str:
    """
    Render the column definition used by ADD/MODIFY COLUMN.

    Format: ``TYPE [NOT] NULL [DEFAULT ...] [EXTRA]``. ``CURRENT_TIMESTAMP``
    defaults stay unquoted; nullable columns without a default get
    ``DEFAULT NULL``.
    """
    parts = [column.type, "NULL" if column.nullable else "NOT NULL"]

    if column.default is not None:
        if column.default.upper() == CURRENT_TIMESTAMP:
            parts.append(f"DEFAULT {column.default}")
        else:
            escaped = column.default.replace("'", "''")
            parts.append(f"DEFAULT '{escaped}'")
    elif column.nullable:
        parts.append("DEFAULT NULL")

    if column.extra:
        parts.append(column.extra)

    return " ".join(parts)


def group_indexes(indexes: Iterable[IndexDef]) -> dict[str, IndexDef]:
    """
    Merge index entries by name, skipping the primary index.

    Introspection may report one entry per index/column pair; columns are
    concatenated in the order they appear.
    """
    grouped: dict[str, IndexDef] = {}
    for index in indexes:
        if index.name == PRIMARY_INDEX_NAME:
            continue
        existing = grouped.get(index.name)
        if existing is None:
            grouped[index.name] = IndexDef(index.name, tuple(index.columns), index.unique)
        else:
            grouped[index.name] = IndexDef(
                existing.name, existing.columns + tuple(index.columns), existing.unique
            )
    return grouped


def diff_table_schema(remote: TableSchema | None, local: TableSchema | None) -> SchemaDiff:
    """
    Compare a remote table snapshot against the local one.

    Args:
        remote: Remote snapshot (None yields an empty diff)
        local: Local snapshot, or None when the table is missing locally

    Returns:
        SchemaDiff; never raises
    """
    if remote is None:
        return SchemaDiff(table_name=local.name if local else "")

    diff = SchemaDiff(table_name=remote.name)

    if local is None:
        diff.create_table = True
        diff.create_statement = remote.create_statement
        return diff

    remote_columns = {c.name: c for c in remote.columns}
    local_columns = {c.name: c for c in local.columns}

    for name, column in remote_columns.items():
        if name not in local_columns:
            diff.columns_to_add.append(column)

    for name in local_columns:
        if name not in remote_columns:
            diff.columns_to_remove.append(name)

    for name, remote_column in remote_columns.items():
        local_column = local_columns.get(name)
        if local_column is not None and not remote_column.same_shape(local_column):
            diff.columns_to_modify.append(
                ColumnModification(
                    name=name,
                    from_definition=build_column_definition(local_column),
                    to_definition=build_column_definition(remote_column),
                    remote=remote_column,
                    local=local_column,
                )
            )

    # Presence only: a renamed index shows up as add + remove
    remote_indexes = group_indexes(remote.indexes)
    local_indexes = group_indexes(local.indexes)

    for name, index in remote_indexes.items():
        if name not in local_indexes:
            diff.indexes_to_add.append(index)

    for name in local_indexes:
        if name not in remote_indexes:
            diff.indexes_to_remove.append(name)

    return diff


def generate_schema_sql(diff: SchemaDiff, dialect: Dialect | str = Dialect.MYSQL) -> list[str]:
    """
    Derive the statements for a schema diff.

    A table creation is returned alone and verbatim. Otherwise the order is
    ADD COLUMN, MODIFY COLUMN, DROP COLUMN, ADD INDEX, DROP INDEX.

    Raises:
        ValidationError: If a table, column or index name is empty or contains NUL
    """
    dialect = Dialect.parse(dialect)

    if diff.create_table:
        return [diff.create_statement] if diff.create_statement else []

    table = dialect.quote(diff.table_name)
    statements = []

    for column in diff.columns_to_add:
        statements.append(
            f"ALTER TABLE {table} ADD COLUMN {dialect.quote(column.name)} "
            f"{build_column_definition(column)}"
        )

    for modification in diff.columns_to_modify:
        statements.append(
            f"ALTER TABLE {table} MODIFY COLUMN {dialect.quote(modification.name)} "
            f"{modification.to_definition}"
        )

    for name in diff.columns_to_remove:
        statements.append(f"ALTER TABLE {table} DROP COLUMN {dialect.quote(name)}")

    for index in diff.indexes_to_add:
        index_type = "UNIQUE INDEX" if index.unique else "INDEX"
        columns = ", ".join(dialect.quote(c) for c in index.columns)
        statements.append(
            f"ALTER TABLE {table} ADD {index_type} {dialect.quote(index.name)} ({columns})"
        )

    for name in diff.indexes_to_remove:
        statements.append(f"ALTER TABLE {table} DROP INDEX {dialect.quote(name)}")

    return statements


def compare_all_schemas(
    source: SourceReader,
    local: LocalStore,
    tables: Sequence[str] | None = None,
    dialect: Dialect | str = Dialect.MYSQL,
    retry_config: RetryConfig | None = None,
    logger: LoggerLike | None = None,
    metrics: SyncMetrics | None = None,
) -> list[SchemaDiff]:
    """
    Compare every remote table (or the given subset) against the local database.

    Args:
        source: Remote reader
        local: Local store
        tables: Restrict the comparison to these remote tables
        dialect: Dialect used to render the statements
        retry_config: Retry settings for introspection reads
        logger: Injected logger
        metrics: Metrics sink for retries

    Returns:
        Diffs with changes, each with ``sql`` populated, plus an error-tagged
        diff for every table whose snapshots could not be read
    """
    log = resolve_logger(logger, __name__, phase="schema_diff")
    retry = create_retry_wrapper(
        retry_config or RetryConfig(),
        on_retry=metrics.retry_callback("schema_read") if metrics else None,
    )

    with trace_operation("compare_all_schemas", kind=trace.SpanKind.INTERNAL) as span:
        remote_tables = retry(source.get_tables, "get_tables(remote)")
        local_tables = set(retry(local.get_tables, "get_tables(local)"))

        if tables:
            wanted = set(tables)
            to_compare = [t for t in remote_tables if t in wanted]
        else:
            to_compare = list(remote_tables)

        log.info(f"Comparing schemas for {len(to_compare)} tables...")

        diffs = []
        failed = 0
        for table in to_compare:
            log.debug(f"Comparing schema: {table}")

            try:
                remote_schema = retry(lambda: source.get_table_schema(table), f"get_table_schema({table})")
                local_schema = (
                    retry(lambda: local.get_table_schema(table), f"get_table_schema({table})")
                    if table in local_tables
                    else None
                )

                diff = diff_table_schema(remote_schema, local_schema)
                if diff.has_changes:
                    diff.sql = generate_schema_sql(diff, dialect)
                    diffs.append(diff)
            except Exception as e:
                log.error(f"Error comparing schema for {table}: {e}", exc_info=True)
                diffs.append(SchemaDiff.failed(table, str(e)))
                failed += 1

        span.set_attribute("tables_compared", len(to_compare))
        span.set_attribute("tables_changed", len(diffs) - failed)
        span.set_attribute("tables_failed", failed)
        log.info(f"Found {len(diffs) - failed} tables with schema changes ({failed} failed)")
        return diffs


def format_schema_diff(diff: SchemaDiff) -> str:
    """Human-readable summary of one table's schema changes."""
    lines = [f"\n=== Table: {diff.table_name} ==="]

    if diff.error:
        lines.append(f"  [ERROR] {diff.error}")
        return "\n".join(lines)

    if diff.create_table:
        lines.append("  [CREATE] New table will be created")
        return "\n".join(lines)

    if diff.columns_to_add:
        lines.append("  [ADD COLUMNS]")
        for column in diff.columns_to_add:
            lines.append(f"    + {column.name}: {build_column_definition(column)}")

    if diff.columns_to_modify:
        lines.append("  [MODIFY COLUMNS]")
        for modification in diff.columns_to_modify:
            lines.append(f"    ~ {modification.name}:")
            lines.append(f"      FROM: {modification.from_definition}")
            lines.append(f"      TO:   {modification.to_definition}")

    if diff.columns_to_remove:
        lines.append("  [REMOVE COLUMNS] (WARNING: Data loss!)")
        for name in diff.columns_to_remove:
            lines.append(f"    - {name}")

    if diff.indexes_to_add:
        lines.append("  [ADD INDEXES]")
        for index in diff.indexes_to_add:
            unique = " UNIQUE" if index.unique else ""
            lines.append(f"    + {index.name} ({', '.join(index.columns)}){unique}")

    if diff.indexes_to_remove:
        lines.append("  [REMOVE INDEXES]")
        for name in diff.indexes_to_remove:
            lines.append(f"    - {name}")

    return "\n".join(lines)
