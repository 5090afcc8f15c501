"""
Ambient utilities for the sync engine

Provides:
- retry: exponential backoff, error classification, circuit breaker
- logging: structured logging setup and context adapters
- metrics: Prometheus counters for diff/apply
- tracing: OpenTelemetry spans
"""

__all__ = ["retry", "logging", "metrics", "tracing"]
