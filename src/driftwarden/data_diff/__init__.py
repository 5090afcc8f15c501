"""
Data diff and merge planning.

Compares remote and local rows per table and plans the inserts, updates and
deletes (or the full replacement) that bring the local table up to date.
"""

from .options import DataDiffOptions
from .planner import compare_all_data, diff_table_data, format_data_diff
from .rows import (
    build_batch_lookup_query,
    build_point_lookup_query,
    build_primary_key_value,
    get_row_changes,
    normalize_value,
    rows_equal,
)
from .stream import ChunkStream
from .strategies import TableDiffer

__all__ = [
    "DataDiffOptions",
    "diff_table_data",
    "compare_all_data",
    "format_data_diff",
    "normalize_value",
    "rows_equal",
    "get_row_changes",
    "build_primary_key_value",
    "build_batch_lookup_query",
    "build_point_lookup_query",
    "ChunkStream",
    "TableDiffer",
]
