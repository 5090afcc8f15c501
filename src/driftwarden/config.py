"""
Runtime settings for diff and apply.

Settings come from ``DRIFTWARDEN_*`` environment variables; every value has a
default so an empty environment yields a working configuration. Loading
connection profiles from files stays with the calling application.

Environment variables:
    DRIFTWARDEN_CHUNK_SIZE: Rows per remote fetch (default: 5000)
    DRIFTWARDEN_BATCH_SIZE: Rows per multi-row insert (default: 1000)
    DRIFTWARDEN_USE_INCREMENTAL: Use timestamp-based diffs (default: true)
    DRIFTWARDEN_STREAMING_MODE: Streaming instead of in-memory diff (default: true)
    DRIFTWARDEN_CONTINUE_ON_ERROR: Keep applying after a table fails (default: false)
    DRIFTWARDEN_LARGE_DELETE_THRESHOLD: Deletes that need extra confirmation (default: 100)
    DRIFTWARDEN_DIALECT: Local SQL dialect, mysql or postgresql (default: mysql)
    DRIFTWARDEN_RETRY_MAX_ATTEMPTS / _BASE_DELAY / _MAX_DELAY / _MULTIPLIER / _JITTER
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .data_diff import DataDiffOptions
from .exceptions import ValidationError
from .executor import ExecutionOptions
from .sql_safety import Dialect
from .utils.retry import RetryConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "DRIFTWARDEN_"
_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


@dataclass(frozen=True)
class SyncSettings:
    """Tunables shared by the planner and the executor."""

    chunk_size: int = 5000
    batch_size: int = 1000
    use_incremental: bool = True
    streaming_mode: bool = True
    continue_on_error: bool = False
    large_delete_threshold: int = 100
    dialect: Dialect = Dialect.MYSQL
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        for name in ("chunk_size", "batch_size"):
            if getattr(self, name) < 1:
                raise ValidationError(f"{name} must be a positive integer", details={name: getattr(self, name)})
        if self.large_delete_threshold < 0:
            raise ValidationError("large_delete_threshold cannot be negative")
        if self.retry.max_attempts < 1:
            raise ValidationError("retry max_attempts must be at least 1")

    def to_data_diff_options(self, primary_key_override: list[str] | None = None) -> DataDiffOptions:
        return DataDiffOptions(
            chunk_size=self.chunk_size,
            primary_key_override=primary_key_override,
            use_incremental=self.use_incremental,
            streaming_mode=self.streaming_mode,
            dialect=self.dialect,
            retry=self.retry,
        )

    def to_execution_options(self) -> ExecutionOptions:
        return ExecutionOptions(
            batch_size=self.batch_size,
            continue_on_error=self.continue_on_error,
            dialect=self.dialect,
        )


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"{ENV_PREFIX + key} must be an integer", details={"value": raw}) from e


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(f"{ENV_PREFIX + key} must be a number", details={"value": raw}) from e


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValidationError(f"{ENV_PREFIX + key} must be a boolean", details={"value": raw})


def load_settings_from_env(env: Mapping[str, str] | None = None) -> SyncSettings:
    """
    Build settings from environment variables.

    Args:
        env: Mapping to read from (default: os.environ)

    Raises:
        ValidationError: If a variable cannot be parsed
    """
    env = os.environ if env is None else env
    defaults = RetryConfig()

    settings = SyncSettings(
        chunk_size=_get_int(env, "CHUNK_SIZE", 5000),
        batch_size=_get_int(env, "BATCH_SIZE", 1000),
        use_incremental=_get_bool(env, "USE_INCREMENTAL", True),
        streaming_mode=_get_bool(env, "STREAMING_MODE", True),
        continue_on_error=_get_bool(env, "CONTINUE_ON_ERROR", False),
        large_delete_threshold=_get_int(env, "LARGE_DELETE_THRESHOLD", 100),
        dialect=Dialect.parse(env.get(ENV_PREFIX + "DIALECT", "mysql")),
        retry=RetryConfig(
            max_attempts=_get_int(env, "RETRY_MAX_ATTEMPTS", defaults.max_attempts),
            base_delay=_get_float(env, "RETRY_BASE_DELAY", defaults.base_delay),
            max_delay=_get_float(env, "RETRY_MAX_DELAY", defaults.max_delay),
            multiplier=_get_float(env, "RETRY_MULTIPLIER", defaults.multiplier),
            jitter_factor=_get_float(env, "RETRY_JITTER", defaults.jitter_factor),
        ),
    )

    logger.debug(f"Loaded settings: {settings}")
    return settings
