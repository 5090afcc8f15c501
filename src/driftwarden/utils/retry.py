"""
Retry with exponential backoff and circuit breaking for database operations

Provides resilient retry logic for transient failures with:
- Exponential backoff: base_delay * multiplier^(attempt-1), capped at max_delay
- Symmetric jitter (10% by default) to prevent synchronized retry storms
- A classifier separating transient failures (connection reset, timeout,
  lock wait, deadlock) from terminal ones (syntax errors), which never retry
- A circuit breaker with an explicit CLOSED -> OPEN -> HALF_OPEN state machine,
  evaluated at call time rather than by a background timer

Only reads and connection establishment are retried by default. Partially
applied writes are never retried automatically.

Usage:
    from driftwarden.utils.retry import retry_with_backoff, RetryConfig

    @retry_with_backoff(RetryConfig(max_attempts=3, base_delay=1.0))
    def fetch_schema(reader, table):
        return reader.get_table_schema(table)
"""

import logging
import random
import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, TypeVar

from ..exceptions import CircuitOpenError, SyncConnectionError, SyntaxOrSchemaError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry configuration. Delays are in seconds.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the second attempt
        max_delay: Upper bound for the un-jittered delay
        multiplier: Exponential growth factor
        jitter_factor: Fraction of the capped delay used as +/- jitter
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter_factor: float = 0.1


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_backoff(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """
    Calculate delay with exponential backoff and jitter.

    Args:
        attempt: Attempt number that just failed (1-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds, never negative
    """
    exponential = config.base_delay * (config.multiplier ** (attempt - 1))
    capped = min(exponential, config.max_delay)

    jitter = capped * config.jitter_factor * random.uniform(-1.0, 1.0)

    return max(0.0, capped + jitter)


# Transient failures, matched case-insensitively against the message
RETRYABLE_MESSAGES = (
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "enetunreach",
    "ehostunreach",
    "epipe",
    "connection lost",
    "connection closed",
    "connection reset",
    "connection refused",
    "connection terminated",
    "lost connection",
    "can't connect",
    "unable to connect",
    "too many connections",
    "lock wait timeout",
    "deadlock",
    "server has gone away",
    "server closed the connection",
    "broken pipe",
    "timed out",
    "timeout",
    "could not serialize access",
)

# Terminal failures win over any transient pattern in the same message
TERMINAL_MESSAGES = (
    "syntax error",
    "you have an error in your sql syntax",
    "unknown column",
    "doesn't exist",
    "does not exist",
    "duplicate entry",
    "duplicate key",
    "access denied",
    "permission denied",
)

# MySQL error numbers and PostgreSQL SQLSTATE codes
RETRYABLE_CODES = frozenset({
    "ECONNREFUSED", "ECONNRESET", "ETIMEDOUT", "EPIPE", "PROTOCOL_CONNECTION_LOST",
    "1040", "1205", "1213", "2002", "2003", "2006", "2013",
    "40001", "40P01", "55P03", "57P01", "08000", "08003", "08006", "08001", "08004",
})
TERMINAL_CODES = frozenset({
    "1054", "1064", "1062", "1146", "1045",
    "42601", "42703", "42P01", "23505", "28P01",
})


def _error_codes(error: BaseException) -> list[str]:
    codes = []
    for attr in ("code", "pgcode", "sqlstate", "errno"):
        value = getattr(error, attr, None)
        if value is not None:
            codes.append(str(value))
    # pymysql packs (errno, message) into args
    if error.args and isinstance(error.args[0], int):
        codes.append(str(error.args[0]))
    return codes


def is_retryable_error(error: BaseException) -> bool:
    """
    Determine if an error is transient and the operation may be re-issued.

    Checks, in order: the sync error taxonomy, terminal codes and messages,
    then transient codes, messages and builtin exception types.

    Args:
        error: The exception to check

    Returns:
        True if the error is retryable, False otherwise
    """
    if isinstance(error, SyntaxOrSchemaError):
        return False
    if isinstance(error, SyncConnectionError):
        return True

    codes = _error_codes(error)
    message = str(error).lower()

    if any(code in TERMINAL_CODES for code in codes):
        return False
    if any(pattern in message for pattern in TERMINAL_MESSAGES):
        return False

    if any(code in RETRYABLE_CODES for code in codes):
        return True
    if any(pattern in message for pattern in RETRYABLE_MESSAGES):
        return True

    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    # Driver-level transient classes (pymysql/psycopg OperationalError, InterfaceError)
    return type(error).__name__.lower() in ("operationalerror", "interfaceerror")


def with_retry(
    func: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    should_retry: Callable[[BaseException], bool] | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] | None = None,
) -> T:
    """
    Execute a function with retry and exponential backoff.

    Args:
        func: Zero-argument callable to execute
        config: Retry configuration
        should_retry: Predicate deciding whether an error may be retried
            (default: retry every error)
        on_retry: Callback(attempt, exception, delay) called before each wait
        operation_name: Name used in log messages
        sleep: Sleep function (default: time.sleep)

    Returns:
        Result of the function

    Raises:
        The last exception once attempts are exhausted, or immediately for
        non-retryable errors
    """
    sleep = sleep or time.sleep
    max_attempts = max(1, config.max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except Exception as e:
            if should_retry and not should_retry(e):
                logger.error(
                    f"{operation_name} failed with non-retryable error: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            if attempt >= max_attempts:
                logger.error(
                    f"{operation_name} failed after {max_attempts} attempts: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            delay = calculate_backoff(attempt, config)

            logger.warning(
                f"{operation_name} attempt {attempt}/{max_attempts} failed: "
                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
            )

            if on_retry:
                try:
                    on_retry(attempt, e, delay)
                except Exception as callback_error:
                    logger.error(f"Error in retry callback: {callback_error}")

            sleep(delay)

    raise RuntimeError(f"Unexpected error in retry logic for {operation_name}")


def retry_with_backoff(
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    should_retry: Callable[[BaseException], bool] | None = is_retryable_error,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
):
    """
    Decorator that retries a function with exponential backoff.

    Only transient errors are retried unless ``should_retry`` is replaced.

    Example:
        @retry_with_backoff(RetryConfig(max_attempts=5))
        def connect():
            return pymysql.connect(**params)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return with_retry(
                lambda: func(*args, **kwargs),
                config=config,
                should_retry=should_retry,
                on_retry=on_retry,
                operation_name=getattr(func, "__name__", "function"),
            )

        return wrapper
    return decorator


def create_retry_wrapper(
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Callable[..., Any]:
    """
    Create a retry function with predefined configuration.

    The returned callable has the signature ``(func, operation_name)`` and
    retries only errors accepted by ``is_retryable_error``.
    """
    def run(func: Callable[[], T], operation_name: str = "operation") -> T:
        return with_retry(
            func,
            config=config,
            should_retry=is_retryable_error,
            on_retry=on_retry,
            operation_name=operation_name,
            sleep=sleep,
        )

    return run


# ============================================================================
# Circuit breaker
# ============================================================================


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Guard that stops calling a failing dependency for a cooldown window.

    Trips OPEN when consecutive failures reach ``max_failures`` or when the
    failure rate over the last ``window_size`` calls reaches
    ``failure_threshold`` (once more than ``max_failures`` calls are in the
    window). After ``reset_after`` seconds the next request is let through as
    a HALF_OPEN probe: success closes the circuit, failure re-opens it.

    State transitions happen only inside ``allow_request`` and
    ``record_success``/``record_failure``; no timers run in the background.
    """

    def __init__(
        self,
        max_failures: int = 3,
        reset_after: float = 60.0,
        failure_threshold: float = 0.5,
        window_size: int = 20,
        clock: Callable[[], float] = time.monotonic,
        name: str = "circuit",
    ):
        self.max_failures = max_failures
        self.reset_after = reset_after
        self.failure_threshold = failure_threshold
        self.clock = clock
        self.name = name

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._window: deque[bool] = deque(maxlen=max(window_size, max_failures + 1))

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def failure_rate(self) -> float:
        if not self._window:
            return 0.0
        return self._window.count(False) / len(self._window)

    def allow_request(self) -> bool:
        """Return True if a call may proceed, moving OPEN -> HALF_OPEN when due."""
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            elapsed = self.clock() - (self._opened_at or 0.0)
            if elapsed >= self.reset_after:
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit '{self.name}' half-open after {elapsed:.1f}s, probing")
                return True
            return False

        # HALF_OPEN admits the single probe already in flight
        return True

    def record_success(self) -> None:
        self._window.append(True)
        self._consecutive_failures = 0
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._opened_at = None
            self._window.clear()
            logger.info(f"Circuit '{self.name}' closed. Resuming operations.")

    def record_failure(self) -> None:
        self._window.append(False)
        self._consecutive_failures += 1

        if self._state == CircuitState.HALF_OPEN:
            self._trip("half-open probe failed")
            return

        if self._consecutive_failures >= self.max_failures:
            self._trip(f"{self._consecutive_failures} consecutive failures")
        elif len(self._window) > self.max_failures and self.failure_rate >= self.failure_threshold:
            self._trip(f"failure rate {self.failure_rate * 100:.1f}% exceeded threshold")

    def _trip(self, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self.clock()
        logger.warning(f"Circuit '{self.name}' opened: {reason}")

    def call(self, func: Callable[[], T]) -> T:
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitOpenError: If the circuit is open
        """
        if not self.allow_request():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open",
                details={"consecutive_failures": self._consecutive_failures},
            )
        try:
            result = func()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


@dataclass
class CircuitBreakerResult:
    """Outcome of running a queue of operations through a circuit breaker."""

    successes: list[tuple[int, Any]] = field(default_factory=list)
    failures: list[tuple[int, str]] = field(default_factory=list)
    circuit_broken: bool = False
    skipped: int = 0


def execute_with_circuit_breaker(
    operations: Sequence[Callable[[], Any]],
    max_failures: int = 3,
    reset_after: float = 60.0,
    failure_threshold: float = 0.5,
    retry_config: RetryConfig | None = None,
    breaker: CircuitBreaker | None = None,
    sleep: Callable[[float], None] | None = None,
) -> CircuitBreakerResult:
    """
    Execute operations in order, each with retry, behind a circuit breaker.

    Once the breaker refuses a request the remaining operations are skipped
    instead of continuing to retry a doomed dependency.

    Args:
        operations: Zero-argument callables
        max_failures: Consecutive failures that trip the breaker
        reset_after: Cooldown in seconds before a half-open probe
        failure_threshold: Failure rate that trips the breaker
        retry_config: Retry configuration applied to each operation
        breaker: Pre-built breaker (overrides the three thresholds above)
        sleep: Sleep function passed to the retry loop

    Returns:
        CircuitBreakerResult with per-index successes and failures
    """
    breaker = breaker or CircuitBreaker(
        max_failures=max_failures,
        reset_after=reset_after,
        failure_threshold=failure_threshold,
    )
    retry_config = retry_config or DEFAULT_RETRY_CONFIG
    results = CircuitBreakerResult()

    for index, operation in enumerate(operations):
        if not breaker.allow_request():
            results.circuit_broken = True
            results.skipped = len(operations) - index
            logger.warning(
                f"Circuit breaker open. Skipping remaining {results.skipped} operations."
            )
            break

        try:
            value = with_retry(
                operation,
                config=retry_config,
                should_retry=is_retryable_error,
                operation_name=f"operation[{index}]",
                sleep=sleep,
            )
        except Exception as e:
            breaker.record_failure()
            results.failures.append((index, str(e)))
            continue

        breaker.record_success()
        results.successes.append((index, value))

    return results

