"""
Destructive-change classifier.

Flags diff outcomes that lose local data irreversibly (dropped columns, full
table replacements, large deletes) so callers can ask for a stronger
confirmation than ordinary approval.
"""

from collections.abc import Iterable

from .models import (
    ColumnRemoval,
    DataDiff,
    DestructiveChangeReport,
    FullReplacement,
    LargeDelete,
    SchemaDiff,
)

DEFAULT_LARGE_DELETE_THRESHOLD = 100


def detect_destructive_changes(
    schema_diffs: Iterable[SchemaDiff],
    data_diffs: Iterable[DataDiff],
    large_delete_threshold: int = DEFAULT_LARGE_DELETE_THRESHOLD,
) -> DestructiveChangeReport:
    """
    Classify destructive operations in a set of diffs.

    Args:
        schema_diffs: Schema diffs to inspect (error-tagged ones carry no changes)
        data_diffs: Data diffs to inspect (error-tagged ones are ignored)
        large_delete_threshold: Delete count at which a table is flagged

    Returns:
        DestructiveChangeReport
    """
    report = DestructiveChangeReport()

    for schema_diff in schema_diffs:
        if schema_diff.columns_to_remove:
            report.column_removals.append(
                ColumnRemoval(table=schema_diff.table_name, columns=list(schema_diff.columns_to_remove))
            )

    for data_diff in data_diffs:
        if data_diff.error:
            continue
        if data_diff.full_replace:
            report.full_replacements.append(
                FullReplacement(table=data_diff.table_name, row_count=data_diff.stats.local_rows)
            )
        if data_diff.stats.deletes >= large_delete_threshold:
            report.large_deletes.append(
                LargeDelete(table=data_diff.table_name, delete_count=data_diff.stats.deletes)
            )

    return report


def format_destructive_report(report: DestructiveChangeReport) -> str:
    if not report.has_destructive:
        return "No destructive changes detected."

    lines = ["[DESTRUCTIVE CHANGES] The following operations cause permanent data loss:"]

    for removal in report.column_removals:
        lines.append(f"  - DROP COLUMN on {removal.table}: {', '.join(removal.columns)}")

    for replacement in report.full_replacements:
        lines.append(
            f"  - FULL REPLACE of {replacement.table}: {replacement.row_count} local rows deleted"
        )

    for large_delete in report.large_deletes:
        lines.append(f"  - DELETE {large_delete.delete_count} rows from {large_delete.table}")

    return "\n".join(lines)
