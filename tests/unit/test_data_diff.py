"""
Unit tests for the data diff planner.

Tests strategy selection, the streaming/in-memory/incremental/full-replace
algorithms, row helpers and the multi-table fan-out.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from driftwarden.data_diff import (
    ChunkStream,
    DataDiffOptions,
    build_batch_lookup_query,
    build_point_lookup_query,
    build_primary_key_value,
    compare_all_data,
    diff_table_data,
    format_data_diff,
    get_row_changes,
    normalize_value,
    rows_equal,
)
from driftwarden.exceptions import StreamExhaustedError
from driftwarden.models import DataDiff, DiffStrategy, TimestampColumns
from driftwarden.sql_safety import Dialect
from fakes import make_schema

T0 = datetime(2024, 1, 1, 12, 0, 0)


def user_tables(source, local, remote_rows, local_rows, primary_key=("id",)):
    schema = make_schema("users", ["id", "name"], list(primary_key))
    source.add_table(schema, remote_rows)
    local.add_table(schema, local_rows)


class TestStreamingDiff:
    def test_scenario_insert_update_delete(self, source, local, diff_options):
        """Remote {1,2',3} vs local {1,2,4} with chunk size 2"""
        user_tables(
            source, local,
            [{"id": 1, "name": "a"}, {"id": 2, "name": "b2"}, {"id": 3, "name": "c"}],
            [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}, {"id": 4, "name": "d"}],
        )

        diff = diff_table_data(source, local, "users", diff_options)

        assert diff.strategy == DiffStrategy.STREAMING
        assert diff.to_insert == [{"id": 3, "name": "c"}]
        assert [u.remote["id"] for u in diff.to_update] == [2]
        assert diff.to_update[0].changed_columns == ["name"]
        assert diff.to_delete == [{"id": 4, "name": "d"}]
        assert (diff.stats.inserts, diff.stats.updates, diff.stats.deletes) == (1, 1, 1)
        assert diff.stats.remote_rows == 3
        assert diff.stats.local_rows == 3
        assert diff.stats.scanned_rows == 3

    def test_one_batch_lookup_per_chunk(self, source, local, diff_options):
        user_tables(
            source, local,
            [{"id": i, "name": str(i)} for i in range(1, 6)],
            [{"id": i, "name": str(i)} for i in range(1, 6)],
        )

        diff_table_data(source, local, "users", diff_options)

        lookups = [c for c in local.calls if c[0] == "query"]
        assert len(lookups) == 3
        assert lookups[0][1] == "SELECT * FROM `users` WHERE `id` IN (%s, %s)"
        assert lookups[0][2] == [1, 2]

    def test_remote_read_in_key_order(self, source, local, diff_options):
        user_tables(source, local, [{"id": 1, "name": "a"}], [])

        diff_table_data(source, local, "users", diff_options)

        assert ("get_table_data_chunked", "users", 2, "id") in source.calls

    def test_identical_tables_yield_empty_diff(self, source, local, diff_options):
        rows = [{"id": i, "name": f"n{i}"} for i in range(10)]
        user_tables(source, local, rows, rows)

        diff = diff_table_data(source, local, "users", diff_options)

        assert diff.has_changes is False

    def test_composite_key(self, source, local, diff_options):
        schema = make_schema("memberships", ["org", "user", "role"], ["org", "user"])
        source.add_table(schema, [
            {"org": 1, "user": 1, "role": "admin"},
            {"org": 1, "user": 2, "role": "member"},
        ])
        local.add_table(schema, [
            {"org": 1, "user": 1, "role": "member"},
            {"org": 2, "user": 1, "role": "member"},
        ])

        diff = diff_table_data(source, local, "memberships", diff_options)

        assert [r["user"] for r in diff.to_insert] == [2]
        assert [u.remote["role"] for u in diff.to_update] == ["admin"]
        assert diff.to_delete == [{"org": 2, "user": 1, "role": "member"}]
        sql = next(c[1] for c in local.calls if c[0] == "query")
        assert " OR " in sql and " AND " in sql

    def test_primary_key_override(self, source, local, diff_options):
        schema = make_schema("events", ["code", "label"])
        source.add_table(schema, [{"code": "a", "label": "new"}])
        local.add_table(schema, [{"code": "a", "label": "old"}])

        options = DataDiffOptions(chunk_size=2, primary_key_override=["code"], retry=diff_options.retry)
        diff = diff_table_data(source, local, "events", options)

        assert diff.strategy == DiffStrategy.STREAMING
        assert diff.primary_key == ["code"]
        assert len(diff.to_update) == 1

    def test_in_memory_variant_matches_streaming(self, source, local, no_retry):
        user_tables(
            source, local,
            [{"id": 1, "name": "a"}, {"id": 2, "name": "b2"}, {"id": 3, "name": "c"}],
            [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}, {"id": 4, "name": "d"}],
        )

        options = DataDiffOptions(chunk_size=2, streaming_mode=False, retry=no_retry)
        diff = diff_table_data(source, local, "users", options)

        assert diff.strategy == DiffStrategy.IN_MEMORY
        assert (diff.stats.inserts, diff.stats.updates, diff.stats.deletes) == (1, 1, 1)
        assert not any(c[0] == "query" for c in local.calls)


class TestFullReplace:
    def test_no_primary_key(self, source, local, diff_options):
        """Remote count 2, local count 1, no key -> full replace"""
        schema = make_schema("log_lines", ["line"])
        source.add_table(schema, [{"line": "a"}, {"line": "b"}])
        local.add_table(schema, [{"line": "stale"}])

        diff = diff_table_data(source, local, "log_lines", diff_options)

        assert diff.full_replace is True
        assert diff.stats.inserts == 2
        assert len(diff.remote_data) == 2
        assert diff.stats.local_rows == 1
        assert diff.has_changes is True
        assert diff.to_delete == []

    def test_no_primary_key_and_no_local_table(self, source, local, diff_options):
        source.add_table(make_schema("log_lines", ["line"]), [{"line": "a"}])

        diff = diff_table_data(source, local, "log_lines", diff_options)

        assert diff.full_replace is True
        assert diff.stats.local_rows == 0


class TestFirstSync:
    def test_local_table_absent(self, source, local, diff_options):
        source.add_table(make_schema("users", ["id", "name"], ["id"]), [
            {"id": 1, "name": "a"}, {"id": 2, "name": "b"}, {"id": 3, "name": "c"},
        ])

        diff = diff_table_data(source, local, "users", diff_options)

        assert diff.strategy == DiffStrategy.FIRST_SYNC
        assert diff.stats.inserts == 3
        assert diff.to_delete == []
        assert not any(c[0] == "query" for c in local.calls)


class TestIncrementalDiff:
    @pytest.fixture
    def timestamped(self, source, local):
        schema = make_schema("orders", ["id", "status", "updated_at"], ["id"])
        timestamps = TimestampColumns(updated_at_column="updated_at")

        def setup(remote_rows, local_rows):
            source.add_table(schema, remote_rows, timestamps)
            local.add_table(schema, local_rows, timestamps)

        return setup

    def test_only_modified_rows_are_compared(self, source, local, diff_options, timestamped):
        timestamped(
            [
                {"id": 1, "status": "new", "updated_at": T0},
                {"id": 2, "status": "paid", "updated_at": T0 + timedelta(hours=1)},
                {"id": 3, "status": "new", "updated_at": T0 + timedelta(hours=2)},
            ],
            [
                {"id": 1, "status": "new", "updated_at": T0},
                {"id": 2, "status": "new", "updated_at": T0},
            ],
        )

        diff = diff_table_data(source, local, "orders", diff_options)

        assert diff.strategy == DiffStrategy.INCREMENTAL
        assert diff.incremental is True
        assert diff.timestamp_column == "updated_at"
        assert diff.local_max_timestamp == T0
        assert diff.stats.scanned_rows == 2
        assert [r["id"] for r in diff.to_insert] == [3]
        assert [u.remote["id"] for u in diff.to_update] == [2]
        assert ("get_modified_rows", "orders", "updated_at", T0) in source.calls

    def test_never_reports_deletes_and_warns_on_drift(self, source, local, diff_options, timestamped):
        timestamped(
            [{"id": 1, "status": "new", "updated_at": T0}],
            [
                {"id": 1, "status": "new", "updated_at": T0},
                {"id": 2, "status": "gone", "updated_at": T0},
            ],
        )

        diff = diff_table_data(source, local, "orders", diff_options)

        assert diff.to_delete == []
        assert diff.stats.deletes == 0
        assert len(diff.warnings) == 1
        assert "deletes cannot be detected" in diff.warnings[0]

    def test_point_lookup_per_modified_row(self, source, local, diff_options, timestamped):
        timestamped(
            [{"id": 5, "status": "new", "updated_at": T0 + timedelta(minutes=1)}],
            [{"id": 1, "status": "new", "updated_at": T0}],
        )

        diff_table_data(source, local, "orders", diff_options)

        lookups = [c for c in local.calls if c[0] == "query"]
        assert lookups == [("query", "SELECT * FROM `orders` WHERE `id` = %s", [5])]

    def test_empty_local_table_falls_back_to_first_sync(self, source, local, diff_options, timestamped):
        timestamped([{"id": 1, "status": "new", "updated_at": T0}], [])

        diff = diff_table_data(source, local, "orders", diff_options)

        assert diff.strategy == DiffStrategy.FIRST_SYNC
        assert diff.stats.inserts == 1

    def test_local_rows_without_timestamps_use_streaming(self, source, local, diff_options, timestamped):
        timestamped(
            [{"id": 1, "status": "new", "updated_at": T0}],
            [{"id": 1, "status": "new", "updated_at": None}, {"id": 9, "status": "x", "updated_at": None}],
        )

        diff = diff_table_data(source, local, "orders", diff_options)

        assert diff.strategy == DiffStrategy.STREAMING
        assert [r["id"] for r in diff.to_delete] == [9]

    def test_disabled_incremental_uses_streaming(self, source, local, no_retry, timestamped):
        timestamped([{"id": 1, "status": "new", "updated_at": T0}], [])

        options = DataDiffOptions(chunk_size=2, use_incremental=False, retry=no_retry)
        diff = diff_table_data(source, local, "orders", options)

        assert diff.strategy == DiffStrategy.STREAMING
        assert diff.has_timestamps is True

    def test_local_without_timestamp_column_uses_streaming(self, source, local, diff_options):
        schema = make_schema("orders", ["id", "updated_at"], ["id"])
        source.add_table(schema, [{"id": 1, "updated_at": T0}], TimestampColumns("updated_at"))
        local.add_table(schema, [{"id": 1, "updated_at": T0}])

        diff = diff_table_data(source, local, "orders", diff_options)

        assert diff.strategy == DiffStrategy.STREAMING


class TestCompareAllData:
    def test_failure_becomes_error_tagged_diff(self, source, local, diff_options, metrics):
        user_tables(source, local, [{"id": 1, "name": "a"}], [])

        diffs = compare_all_data(source, local, ["ghost", "users"], diff_options, metrics=metrics)

        assert [d.table_name for d in diffs] == ["ghost", "users"]
        assert diffs[0].error is not None
        assert diffs[0].stats.inserts == 0
        assert diffs[0].has_changes is False
        assert diffs[1].error is None
        assert diffs[1].stats.inserts == 1
        assert metrics.snapshot()["tables_diffed"] == 2

    def test_hyphenated_names_are_diffed(self, source, local, diff_options):
        schema = make_schema("order-items", ["item-id", "qty"], ["item-id"])
        source.add_table(schema, [{"item-id": 1, "qty": 2}, {"item-id": 2, "qty": 5}])
        local.add_table(schema, [{"item-id": 1, "qty": 3}])

        diffs = compare_all_data(source, local, ["order-items"], diff_options)

        assert diffs[0].error is None
        assert [r["item-id"] for r in diffs[0].to_insert] == [2]
        assert [u.remote["qty"] for u in diffs[0].to_update] == [2]
        lookups = [c[1] for c in local.calls if c[0] == "query"]
        assert lookups[0].startswith("SELECT * FROM `order-items` WHERE `item-id` IN (")

    def test_records_scanned_rows(self, source, local, diff_options, metrics):
        user_tables(source, local, [{"id": i, "name": "x"} for i in range(3)], [])

        compare_all_data(source, local, ["users"], diff_options, metrics=metrics)

        assert metrics.snapshot()["rows_scanned"] == 3


class TestChunkStream:
    def test_counts_rows_and_chunks(self):
        stream = ChunkStream(iter([[{"id": 1}, {"id": 2}], [{"id": 3}]]), table="users")

        rows = list(stream.rows())

        assert [r["id"] for r in rows] == [1, 2, 3]
        assert stream.chunks_read == 2
        assert stream.rows_read == 3
        assert stream.exhausted is True

    def test_second_iteration_refused(self):
        stream = ChunkStream([[{"id": 1}]])
        list(stream)

        with pytest.raises(StreamExhaustedError):
            list(stream)

    def test_refused_while_being_read(self):
        stream = ChunkStream([[{"id": 1}], [{"id": 2}]])
        iterator = iter(stream)
        next(iterator)

        assert stream.started is True
        assert stream.exhausted is False
        with pytest.raises(StreamExhaustedError):
            iter(stream)


class TestRowHelpers:
    @pytest.mark.parametrize("value, expected", [
        (None, None),
        (5, "5"),
        ("5", "5"),
        (Decimal("1.50"), "1.50"),
        (True, "True"),
        (date(2024, 1, 2), "2024-01-02"),
        (datetime(2024, 1, 2, 3, 4, 5), "2024-01-02T03:04:05"),
        (b"\x01\xff", "01ff"),
        ({"b": 1, "a": [1, 2]}, '{"a": [1, 2], "b": 1}'),
    ])
    def test_normalize_value(self, value, expected):
        assert normalize_value(value) == expected

    def test_aware_datetimes_compared_in_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert normalize_value(datetime(2024, 1, 1, 14, 0, tzinfo=plus_two)) == normalize_value(
            datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        )

    def test_rows_equal_normalizes_values(self):
        assert rows_equal({"id": 1, "price": "9.5"}, {"price": 9.5, "id": "1"}) is True

    def test_rows_with_different_columns_are_unequal(self):
        assert rows_equal({"id": 1}, {"id": 1, "name": None}) is False
        assert rows_equal({"id": 1, "a": 1}, {"id": 1, "b": 1}) is False

    def test_null_differs_from_empty_string(self):
        assert rows_equal({"id": 1, "name": None}, {"id": 1, "name": ""}) is False

    def test_get_row_changes(self):
        changes = get_row_changes({"id": 1, "name": "b", "age": 3}, {"id": 1, "name": "b2", "age": 3})

        assert [(c.column, c.from_value, c.to_value) for c in changes] == [("name", "b", "b2")]

    def test_primary_key_value(self):
        assert build_primary_key_value({"org": 1, "user": "x", "role": "r"}, ["org", "user"]) == "1|x"
        assert build_primary_key_value({"id": None}, ["id"]) == "NULL"

    def test_batch_lookup_single_key(self):
        sql, params = build_batch_lookup_query("users", ["id"], [{"id": 1}, {"id": 2}])

        assert sql == "SELECT * FROM `users` WHERE `id` IN (%s, %s)"
        assert params == [1, 2]

    def test_batch_lookup_composite_key(self):
        sql, params = build_batch_lookup_query(
            "m", ["org", "user"], [{"org": 1, "user": 2}, {"org": 3, "user": 4}], Dialect.POSTGRESQL
        )

        assert sql == (
            'SELECT * FROM "m" WHERE ("org" = %s AND "user" = %s) OR ("org" = %s AND "user" = %s)'
        )
        assert params == [1, 2, 3, 4]

    def test_point_lookup(self):
        sql, params = build_point_lookup_query("m", ["org", "user"], {"org": 1, "user": 2, "x": 0})

        assert sql == "SELECT * FROM `m` WHERE `org` = %s AND `user` = %s"
        assert params == [1, 2]


class TestFormatDataDiff:
    def test_in_sync(self):
        text = format_data_diff(DataDiff(table_name="users", primary_key=["id"]))
        assert "[OK] Table is in sync" in text

    def test_truncates_long_lists(self, source, local, diff_options):
        user_tables(source, local, [{"id": i, "name": "x"} for i in range(15)], [])

        diff = diff_table_data(source, local, "users", diff_options)
        text = format_data_diff(diff, max_display=10)

        assert "[INSERT] 15 rows to insert" in text
        assert "... and 5 more" in text

    def test_full_replace_warning(self):
        diff = DataDiff(table_name="t", strategy=DiffStrategy.FULL_REPLACE)
        diff.stats.local_rows = 4
        diff.stats.remote_rows = 2

        text = format_data_diff(diff)

        assert "Primary Key: NONE" in text
        assert "DELETE all 4 local rows and INSERT 2 remote rows" in text

    def test_error_diff(self):
        assert "[ERROR] boom" in format_data_diff(DataDiff.failed("t", "boom"))
