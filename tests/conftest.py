"""
Pytest configuration and fixtures for sync engine tests.
Provides in-memory collaborators and isolated metrics registries.
"""

import pytest
from prometheus_client import CollectorRegistry

from driftwarden.data_diff import DataDiffOptions
from driftwarden.utils.metrics import SyncMetrics
from driftwarden.utils.retry import RetryConfig
from fakes import FakeLocalStore, FakeSource


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "property: property-based tests")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def local() -> FakeLocalStore:
    return FakeLocalStore()


@pytest.fixture
def no_retry() -> RetryConfig:
    """Single attempt, so failing collaborators never sleep."""
    return RetryConfig(max_attempts=1, base_delay=0.0, jitter_factor=0.0)


@pytest.fixture
def diff_options(no_retry: RetryConfig) -> DataDiffOptions:
    return DataDiffOptions(chunk_size=2, retry=no_retry)


@pytest.fixture
def metrics() -> SyncMetrics:
    """Metrics bound to a private registry."""
    return SyncMetrics(registry=CollectorRegistry())
