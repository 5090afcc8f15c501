"""
Unit tests for driftwarden.utils.metrics

Each test uses its own CollectorRegistry so counters never leak between tests.
"""

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry, Counter

from driftwarden.models import DataDiff, DiffStats, DiffStrategy, TableResult
from driftwarden.utils.metrics import SyncMetrics, get_or_create_metric


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def sync_metrics(registry) -> SyncMetrics:
    return SyncMetrics(registry=registry)


class TestGetOrCreateMetric:
    def test_returns_existing_metric_on_duplicate(self, registry):
        """Test that a second registration returns the first collector"""
        # Arrange
        def factory():
            return Counter("dup_total", "Duplicate", registry=registry)

        # Act
        first = get_or_create_metric(factory, "dup", registry)
        second = get_or_create_metric(factory, "dup", registry)

        # Assert
        assert first is second

    def test_reraises_when_nothing_registered(self, registry):
        def factory():
            raise ValueError("bad metric definition")

        with pytest.raises(ValueError, match="bad metric definition"):
            get_or_create_metric(factory, "missing", registry)


class TestSyncMetrics:
    """Test SyncMetrics class"""

    def test_init_uses_given_registry(self, registry):
        metrics = SyncMetrics(registry=registry)

        assert metrics.registry is registry
        assert metrics.tables_diffed_total is not None
        assert metrics.retries_total is not None

    def test_second_instance_shares_collectors(self, registry):
        """Re-creating metrics on the same registry must not raise"""
        first = SyncMetrics(registry=registry)
        second = SyncMetrics(registry=registry)

        assert first.rollbacks_total is second.rollbacks_total

    def test_snapshot_starts_at_zero(self, sync_metrics):
        assert sync_metrics.snapshot() == {
            "tables_diffed": 0,
            "rows_scanned": 0,
            "rows_inserted": 0,
            "rows_updated": 0,
            "rows_deleted": 0,
            "rollbacks": 0,
            "retries": 0,
        }

    def test_record_table_diff(self, sync_metrics, registry):
        """Test recording a completed diff"""
        # Arrange
        diff = DataDiff(
            table_name="users",
            strategy=DiffStrategy.STREAMING,
            stats=DiffStats(remote_rows=10, scanned_rows=10, inserts=2, deletes=1),
        )

        # Act
        sync_metrics.record_table_diff(diff, duration=0.25)

        # Assert
        assert registry.get_sample_value(
            "driftwarden_tables_diffed_total", {"strategy": "streaming", "status": "ok"}
        ) == 1
        assert registry.get_sample_value(
            "driftwarden_planned_changes_total", {"table": "users", "operation": "insert"}
        ) == 2
        assert registry.get_sample_value(
            "driftwarden_planned_changes_total", {"table": "users", "operation": "update"}
        ) is None
        assert registry.get_sample_value(
            "driftwarden_diff_duration_seconds_count", {"strategy": "streaming"}
        ) == 1
        assert sync_metrics.snapshot()["rows_scanned"] == 10

    def test_record_failed_diff_counts_status_only(self, sync_metrics, registry):
        sync_metrics.record_table_diff(DataDiff.failed("ghost", "timeout"), duration=1.0)

        assert registry.get_sample_value(
            "driftwarden_tables_diffed_total", {"strategy": "error", "status": "error"}
        ) == 1
        assert registry.get_sample_value(
            "driftwarden_diff_duration_seconds_count", {"strategy": "streaming"}
        ) is None
        assert sync_metrics.snapshot()["rows_scanned"] == 0

    def test_incremental_diff_counts_scanned_rows(self, sync_metrics):
        diff = DataDiff(
            table_name="events",
            strategy=DiffStrategy.INCREMENTAL,
            stats=DiffStats(remote_rows=1_000_000, scanned_rows=3),
        )

        sync_metrics.record_table_diff(diff, duration=0.1)

        assert sync_metrics.snapshot()["rows_scanned"] == 3

    def test_record_schema_statement(self, sync_metrics, registry):
        sync_metrics.record_schema_statement("users", applied=True)
        sync_metrics.record_schema_statement("users", applied=False)

        for status in ("applied", "failed"):
            assert registry.get_sample_value(
                "driftwarden_schema_statements_total", {"table": "users", "status": status}
            ) == 1

    def test_record_table_apply(self, sync_metrics):
        sync_metrics.record_table_apply(TableResult(table="users", inserts=5, updates=2, deletes=1), 0.5)
        sync_metrics.record_table_apply(TableResult(table="orders", inserts=1), 0.1)

        snapshot = sync_metrics.snapshot()
        assert snapshot["rows_inserted"] == 6
        assert snapshot["rows_updated"] == 2
        assert snapshot["rows_deleted"] == 1

    @patch("driftwarden.utils.metrics.logger")
    def test_record_rollback(self, mock_logger, sync_metrics):
        sync_metrics.record_rollback("users")

        assert sync_metrics.snapshot()["rollbacks"] == 1
        mock_logger.warning.assert_called_once()
        assert "table=users" in mock_logger.warning.call_args[0][0]

    def test_retry_callback_counts_per_operation(self, sync_metrics, registry):
        on_retry = sync_metrics.retry_callback("get_row_count")

        on_retry(1, ConnectionError("reset"), 1.0)
        on_retry(2, ConnectionError("reset"), 2.0)

        assert registry.get_sample_value(
            "driftwarden_retries_total", {"operation": "get_row_count"}
        ) == 2
        assert sync_metrics.snapshot()["retries"] == 2
