"""
Error taxonomy for the sync engine.

Transient failures (SyncConnectionError) are retried by the resilience layer,
terminal ones (SyntaxOrSchemaError) never are. ExecutionError covers failures
while applying changes locally; a RollbackError leaves the local database in an
unknown state and must always propagate.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for all sync engine errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class SyncConnectionError(SyncError, ConnectionError):
    """Raised for transient connection failures. Always retryable."""

    pass


class SyntaxOrSchemaError(SyncError):
    """Raised for malformed statements or schema mismatches. Never retried."""

    pass


class ExecutionError(SyncError):
    """Raised while applying changes to the local database."""

    pass


class RollbackError(ExecutionError):
    """Raised when a transaction could not be rolled back."""

    def __init__(self, table: str, cause: Exception, original: Exception | None = None) -> None:
        super().__init__(
            f"Rollback failed for table '{table}'; local state is unknown",
            details={"table": table},
            cause=cause,
        )
        self.table = table
        self.original = original


class ValidationError(SyncError):
    """Raised for rejected input, e.g. a write aimed at a read-only handle."""

    pass


class CircuitOpenError(SyncError):
    """Raised when a call is attempted while the circuit breaker is open."""

    pass


class StreamExhaustedError(SyncError):
    """Raised when a chunk stream is iterated a second time."""

    pass
