"""
Data model for schema diffs, data diffs and execution results.

Rows are plain dicts mapping column name to a scalar drawn from a closed set of
types (see ``Scalar``). Diffs are computed fresh per run and never persisted.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from .exceptions import ExecutionError

Scalar = Union[None, str, int, float, Decimal, bool, datetime, date, time, bytes, dict, list]
Row = dict[str, Scalar]

PRIMARY_KEY_ROLE = "PRI"
PRIMARY_INDEX_NAME = "PRIMARY"


class DiffStrategy(str, Enum):
    """
    Strategy used to compute a data diff.

    Inherits from str so values serialize and compare as plain strings.
    """

    STREAMING = "streaming"
    IN_MEMORY = "in-memory"
    INCREMENTAL = "incremental"
    FULL_REPLACE = "full-replace"
    FIRST_SYNC = "first-sync"


# ============================================================================
# Schema snapshots
# ============================================================================


@dataclass(frozen=True)
class ColumnDef:
    """A single column as reported by introspection."""

    name: str
    type: str
    nullable: bool = True
    default: str | None = None
    extra: str = ""
    key: str = ""

    def same_shape(self, other: "ColumnDef") -> bool:
        """Structural equality on type, nullability, default and extra flags."""
        return (
            self.type == other.type
            and self.nullable == other.nullable
            and self.default == other.default
            and self.extra == other.extra
        )


@dataclass(frozen=True)
class IndexDef:
    """An index; ``columns`` is ordered."""

    name: str
    columns: tuple[str, ...] = ()
    unique: bool = False


@dataclass(frozen=True)
class TableSchema:
    """
    Immutable snapshot of a table's structure.

    ``primary_key`` is derived from the columns flagged with the primary key
    role when not given explicitly.
    """

    name: str
    columns: tuple[ColumnDef, ...] = ()
    indexes: tuple[IndexDef, ...] = ()
    primary_key: tuple[str, ...] = ()
    create_statement: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "indexes", tuple(self.indexes))
        if self.primary_key:
            object.__setattr__(self, "primary_key", tuple(self.primary_key))
        else:
            derived = tuple(c.name for c in self.columns if c.key == PRIMARY_KEY_ROLE)
            object.__setattr__(self, "primary_key", derived)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


@dataclass(frozen=True)
class TimestampColumns:
    """Modification/creation timestamp columns detected on a table."""

    updated_at_column: str | None = None
    created_at_column: str | None = None

    @property
    def has_updated_at(self) -> bool:
        return self.updated_at_column is not None

    @property
    def has_created_at(self) -> bool:
        return self.created_at_column is not None


# ============================================================================
# Schema diff
# ============================================================================


@dataclass
class ColumnModification:
    """A column present on both sides whose definition differs."""

    name: str
    from_definition: str
    to_definition: str
    remote: ColumnDef
    local: ColumnDef


@dataclass
class SchemaDiff:
    """Structural changes needed to make a local table match the remote one."""

    table_name: str
    create_table: bool = False
    create_statement: str | None = None
    columns_to_add: list[ColumnDef] = field(default_factory=list)
    columns_to_modify: list[ColumnModification] = field(default_factory=list)
    columns_to_remove: list[str] = field(default_factory=list)
    indexes_to_add: list[IndexDef] = field(default_factory=list)
    indexes_to_remove: list[str] = field(default_factory=list)
    sql: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def has_changes(self) -> bool:
        return bool(
            self.create_table
            or self.columns_to_add
            or self.columns_to_modify
            or self.columns_to_remove
            or self.indexes_to_add
            or self.indexes_to_remove
        )

    @classmethod
    def failed(cls, table_name: str, error: str) -> "SchemaDiff":
        """Placeholder for a table whose snapshots could not be read."""
        return cls(table_name=table_name, error=error)


# ============================================================================
# Data diff
# ============================================================================


@dataclass
class ColumnChange:
    """One column whose value differs between local and remote."""

    column: str
    from_value: Scalar
    to_value: Scalar


@dataclass
class RowUpdate:
    """A row present on both sides with differing values."""

    remote: Row
    local: Row
    changes: list[ColumnChange] = field(default_factory=list)

    @property
    def changed_columns(self) -> list[str]:
        return [c.column for c in self.changes]


@dataclass
class DiffStats:
    """Summary counters for a data diff."""

    remote_rows: int = 0
    local_rows: int = 0
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    scanned_rows: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "remote_rows": self.remote_rows,
            "local_rows": self.local_rows,
            "inserts": self.inserts,
            "updates": self.updates,
            "deletes": self.deletes,
            "scanned_rows": self.scanned_rows,
        }


@dataclass
class DataDiff:
    """Row-level changes planned for one table."""

    table_name: str
    primary_key: list[str] = field(default_factory=list)
    strategy: DiffStrategy = DiffStrategy.STREAMING
    has_timestamps: bool = False
    to_insert: list[Row] = field(default_factory=list)
    to_update: list[RowUpdate] = field(default_factory=list)
    to_delete: list[Row] = field(default_factory=list)
    remote_data: list[Row] = field(default_factory=list)
    stats: DiffStats = field(default_factory=DiffStats)
    timestamp_column: str | None = None
    local_max_timestamp: Any = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def full_replace(self) -> bool:
        return self.strategy == DiffStrategy.FULL_REPLACE

    @property
    def incremental(self) -> bool:
        return self.strategy == DiffStrategy.INCREMENTAL

    @property
    def has_changes(self) -> bool:
        if self.error:
            return False
        if self.full_replace:
            return True
        return bool(self.to_insert or self.to_update or self.to_delete)

    @classmethod
    def failed(cls, table_name: str, error: str) -> "DataDiff":
        """Error-tagged placeholder with zero stats."""
        return cls(table_name=table_name, error=error)


# ============================================================================
# Destructive changes
# ============================================================================


@dataclass
class ColumnRemoval:
    table: str
    columns: list[str]


@dataclass
class FullReplacement:
    table: str
    row_count: int


@dataclass
class LargeDelete:
    table: str
    delete_count: int


@dataclass
class DestructiveChangeReport:
    """Operations that cause irreversible local data loss."""

    column_removals: list[ColumnRemoval] = field(default_factory=list)
    full_replacements: list[FullReplacement] = field(default_factory=list)
    large_deletes: list[LargeDelete] = field(default_factory=list)

    @property
    def has_destructive(self) -> bool:
        return bool(self.column_removals or self.full_replacements or self.large_deletes)


# ============================================================================
# Execution results
# ============================================================================


@dataclass
class AppliedStatement:
    table: str
    sql: str


@dataclass
class FailedStatement:
    table: str
    sql: str
    error: str


@dataclass
class SchemaApplyResult:
    success: bool = True
    applied: list[AppliedStatement] = field(default_factory=list)
    failed: list[FailedStatement] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class TableResult:
    table: str
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    errors: list[str] = field(default_factory=list)
    rolled_back: bool = False
    exception: ExecutionError | None = None


@dataclass
class DataApplyResult:
    success: bool = True
    tables: list[TableResult] = field(default_factory=list)
    total_inserts: int = 0
    total_updates: int = 0
    total_deletes: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ExecutionResult:
    """Aggregated outcome of a sync run."""

    success: bool = True
    schema: SchemaApplyResult | None = None
    data: DataApplyResult | None = None

    @property
    def errors(self) -> list[str]:
        errors: list[str] = []
        if self.schema:
            errors.extend(self.schema.errors)
        if self.data:
            errors.extend(self.data.errors)
        return errors

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1
