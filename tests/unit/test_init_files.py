"""
Unit tests for __init__.py files

Ensures that:
- Version attributes are defined
- __all__ exports resolve to real attributes
- Subpackages import without errors
"""

import importlib

import pytest


class TestDriftwardenInit:
    """Test src/driftwarden/__init__.py"""

    def test_version_attribute_exists(self):
        # Arrange & Act
        import driftwarden

        # Assert
        assert isinstance(driftwarden.__version__, str)
        assert driftwarden.__version__ == "1.0.0"

    def test_all_exports_resolve(self):
        """Test that every name in __all__ is importable from the package"""
        import driftwarden

        missing = [name for name in driftwarden.__all__ if not hasattr(driftwarden, name)]

        assert missing == []

    def test_core_operations_exported(self):
        import driftwarden

        for name in (
            "diff_table_schema",
            "generate_schema_sql",
            "compare_all_schemas",
            "diff_table_data",
            "compare_all_data",
            "detect_destructive_changes",
            "execute_sync",
        ):
            assert name in driftwarden.__all__
            assert callable(getattr(driftwarden, name))

    def test_module_reloads_without_errors(self):
        import driftwarden

        try:
            importlib.reload(driftwarden)
        except ImportError as e:
            pytest.fail(f"Failed to reload driftwarden: {e}")


class TestDataDiffInit:
    """Test src/driftwarden/data_diff/__init__.py"""

    def test_all_exports_resolve(self):
        import driftwarden.data_diff as data_diff

        for name in data_diff.__all__:
            assert hasattr(data_diff, name), f"data_diff.{name} is listed but missing"


class TestUtilsInit:
    """Test src/driftwarden/utils/__init__.py"""

    def test_all_attribute_lists_submodules(self):
        import driftwarden.utils

        assert driftwarden.utils.__all__ == ["retry", "logging", "metrics", "tracing"]

    @pytest.mark.parametrize("module_name", ["retry", "logging", "metrics", "tracing"])
    def test_submodules_can_be_imported(self, module_name):
        module = importlib.import_module(f"driftwarden.utils.{module_name}")
        assert module is not None

    def test_logging_package_exports(self):
        import driftwarden.utils.logging as dw_logging

        for name in dw_logging.__all__:
            assert hasattr(dw_logging, name)
