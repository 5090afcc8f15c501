"""
Prometheus metrics for diff and apply operations.

Core functions take an optional ``metrics`` argument; when omitted nothing is
recorded. Pass a dedicated ``CollectorRegistry`` to keep runs (and tests)
isolated from the process-wide default registry.

Usage:
    from prometheus_client import CollectorRegistry
    from driftwarden.utils.metrics import SyncMetrics

    metrics = SyncMetrics(registry=CollectorRegistry())
    diffs = compare_all_data(source, local, tables, metrics=metrics)
    print(metrics.snapshot())
"""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the one already registered under that name.

    Args:
        metric_factory: Callable that creates the metric
        metric_name: Name of the metric for lookup if already registered
        registry: Prometheus registry the factory registers into
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


class SyncMetrics:
    """
    Counters and histograms for a sync session.

    Tracks tables diffed per strategy, planned and applied row changes,
    schema statements, rollbacks and retries.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or REGISTRY
        r = self.registry

        self.tables_diffed_total = get_or_create_metric(
            lambda: Counter(
                "driftwarden_tables_diffed_total",
                "Tables compared, by strategy and status",
                ["strategy", "status"],
                registry=r,
            ),
            "driftwarden_tables_diffed",
            r,
        )
        self.rows_scanned_total = get_or_create_metric(
            lambda: Counter(
                "driftwarden_rows_scanned_total",
                "Remote rows read while computing data diffs",
                ["table"],
                registry=r,
            ),
            "driftwarden_rows_scanned",
            r,
        )
        self.planned_changes_total = get_or_create_metric(
            lambda: Counter(
                "driftwarden_planned_changes_total",
                "Row changes planned by data diffs",
                ["table", "operation"],
                registry=r,
            ),
            "driftwarden_planned_changes",
            r,
        )
        self.applied_changes_total = get_or_create_metric(
            lambda: Counter(
                "driftwarden_applied_changes_total",
                "Row changes committed to the local database",
                ["table", "operation"],
                registry=r,
            ),
            "driftwarden_applied_changes",
            r,
        )
        self.schema_statements_total = get_or_create_metric(
            lambda: Counter(
                "driftwarden_schema_statements_total",
                "Schema statements executed locally",
                ["table", "status"],
                registry=r,
            ),
            "driftwarden_schema_statements",
            r,
        )
        self.rollbacks_total = get_or_create_metric(
            lambda: Counter(
                "driftwarden_rollbacks_total",
                "Per-table transactions rolled back",
                ["table"],
                registry=r,
            ),
            "driftwarden_rollbacks",
            r,
        )
        self.retries_total = get_or_create_metric(
            lambda: Counter(
                "driftwarden_retries_total",
                "Retried read operations",
                ["operation"],
                registry=r,
            ),
            "driftwarden_retries",
            r,
        )
        self.diff_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "driftwarden_diff_duration_seconds",
                "Time to compute a table data diff",
                ["strategy"],
                buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 300, 900),
                registry=r,
            ),
            "driftwarden_diff_duration_seconds",
            r,
        )
        self.apply_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "driftwarden_apply_duration_seconds",
                "Time to apply one table's data changes",
                buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 300, 900),
                registry=r,
            ),
            "driftwarden_apply_duration_seconds",
            r,
        )

    def record_table_diff(self, diff: Any, duration: float) -> None:
        """
        Record a completed (or failed) data diff.

        Args:
            diff: DataDiff produced by the planner
            duration: Seconds spent computing it
        """
        if diff.error:
            # A failed diff never ran a strategy
            self.tables_diffed_total.labels(strategy="error", status="error").inc()
            return

        strategy = getattr(diff.strategy, "value", str(diff.strategy))
        self.tables_diffed_total.labels(strategy=strategy, status="ok").inc()

        self.diff_duration_seconds.labels(strategy=strategy).observe(duration)
        scanned = diff.stats.scanned_rows or diff.stats.remote_rows
        self.rows_scanned_total.labels(table=diff.table_name).inc(scanned)

        for operation, count in (
            ("insert", diff.stats.inserts),
            ("update", diff.stats.updates),
            ("delete", diff.stats.deletes),
        ):
            if count:
                self.planned_changes_total.labels(
                    table=diff.table_name, operation=operation
                ).inc(count)

    def record_schema_statement(self, table: str, applied: bool) -> None:
        status = "applied" if applied else "failed"
        self.schema_statements_total.labels(table=table, status=status).inc()

    def record_table_apply(self, table_result: Any, duration: float) -> None:
        """Record the committed counts of one table's transaction."""
        self.apply_duration_seconds.observe(duration)
        for operation, count in (
            ("insert", table_result.inserts),
            ("update", table_result.updates),
            ("delete", table_result.deletes),
        ):
            if count:
                self.applied_changes_total.labels(
                    table=table_result.table, operation=operation
                ).inc(count)

    def record_rollback(self, table: str) -> None:
        self.rollbacks_total.labels(table=table).inc()
        logger.warning(f"Recorded rollback: table={table}")

    def retry_callback(self, operation: str) -> Callable[[int, BaseException, float], None]:
        """Return an ``on_retry`` callback that counts retries of ``operation``."""
        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            self.retries_total.labels(operation=operation).inc()

        return on_retry

    def snapshot(self) -> dict[str, float]:
        """Totals across all labels, for end-of-run summaries."""
        def total(metric_name: str) -> float:
            value = 0.0
            for metric in self.registry.collect():
                if metric.name != metric_name:
                    continue
                for sample in metric.samples:
                    if sample.name == f"{metric_name}_total":
                        value += sample.value
            return value

        def by_operation(metric_name: str, operation: str) -> float:
            value = 0.0
            for metric in self.registry.collect():
                if metric.name != metric_name:
                    continue
                for sample in metric.samples:
                    if sample.name.endswith("_total") and sample.labels.get("operation") == operation:
                        value += sample.value
            return value

        return {
            "tables_diffed": total("driftwarden_tables_diffed"),
            "rows_scanned": total("driftwarden_rows_scanned"),
            "rows_inserted": by_operation("driftwarden_applied_changes", "insert"),
            "rows_updated": by_operation("driftwarden_applied_changes", "update"),
            "rows_deleted": by_operation("driftwarden_applied_changes", "delete"),
            "rollbacks": total("driftwarden_rollbacks"),
            "retries": total("driftwarden_retries"),
        }
