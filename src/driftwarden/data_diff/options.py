"""Options for data diffs."""

from dataclasses import dataclass, field

from ..sql_safety import Dialect
from ..utils.retry import RetryConfig


@dataclass(frozen=True)
class DataDiffOptions:
    """
    Attributes:
        chunk_size: Rows per remote fetch and per local batch lookup
        primary_key_override: Key columns to use instead of the introspected ones
        use_incremental: Allow timestamp-based incremental diffs
        streaming_mode: Streaming diff (True) or the in-memory variant (False)
        dialect: Dialect of the local database, for lookup queries
        retry: Retry settings for collaborator reads
    """

    chunk_size: int = 5000
    primary_key_override: list[str] | None = None
    use_incremental: bool = True
    streaming_mode: bool = True
    dialect: Dialect = Dialect.MYSQL
    retry: RetryConfig = field(default_factory=RetryConfig)
