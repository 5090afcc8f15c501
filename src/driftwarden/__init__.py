"""
Driftwarden: one-way database synchronization from a read-only production
database to a local development database.

Compares table structure and row data, classifies destructive changes and
applies an approved subset of changes to the local side in per-table
transactions. The remote side is only ever read.
"""

from .config import SyncSettings, load_settings_from_env
from .data_diff import DataDiffOptions, compare_all_data, diff_table_data, format_data_diff
from .destructive import detect_destructive_changes, format_destructive_report
from .exceptions import (
    CircuitOpenError,
    ExecutionError,
    RollbackError,
    StreamExhaustedError,
    SyncConnectionError,
    SyncError,
    SyntaxOrSchemaError,
    ValidationError,
)
from .executor import (
    ExecutionOptions,
    apply_data_changes,
    apply_schema_changes,
    execute_sync,
    format_execution_summary,
)
from .models import (
    ColumnDef,
    DataDiff,
    DestructiveChangeReport,
    DiffStrategy,
    ExecutionResult,
    IndexDef,
    SchemaDiff,
    TableSchema,
    TimestampColumns,
)
from .ports import LocalStore, SourceReader
from .schema_diff import compare_all_schemas, diff_table_schema, format_schema_diff, generate_schema_sql

__version__ = "1.0.0"

__all__ = [
    "__version__",
    # Operations
    "diff_table_schema",
    "generate_schema_sql",
    "compare_all_schemas",
    "format_schema_diff",
    "diff_table_data",
    "compare_all_data",
    "format_data_diff",
    "detect_destructive_changes",
    "format_destructive_report",
    "apply_schema_changes",
    "apply_data_changes",
    "execute_sync",
    "format_execution_summary",
    # Options and settings
    "DataDiffOptions",
    "ExecutionOptions",
    "SyncSettings",
    "load_settings_from_env",
    # Model
    "ColumnDef",
    "IndexDef",
    "TableSchema",
    "TimestampColumns",
    "SchemaDiff",
    "DataDiff",
    "DiffStrategy",
    "DestructiveChangeReport",
    "ExecutionResult",
    # Collaborators
    "SourceReader",
    "LocalStore",
    # Errors
    "SyncError",
    "SyncConnectionError",
    "SyntaxOrSchemaError",
    "ExecutionError",
    "RollbackError",
    "ValidationError",
    "CircuitOpenError",
    "StreamExhaustedError",
]
