"""
Root test configuration and fixtures for the grouping project.

This conftest.py provides common fixtures for all test categories:
- unit/: Fast, isolated unit tests

Note: sys.path manipulation is handled here to ensure imports work correctly.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

# Add project root to path to allow imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def create_mock_pocketbase():
    """Create a comprehensive mock PocketBase instance."""
    mock_pb = Mock()

    # Collection mock with chaining support
    mock_collection = Mock()

    # Collection auth (for _superusers collection)
    mock_collection.auth_with_password = Mock(return_value=True)

    # Collection methods
    mock_collection.get_full_list = Mock(return_value=[])
    mock_collection.get_one = Mock()

    mock_record = Mock()
    mock_record.id = "mock-record-id"
    mock_record.value = None

    mock_collection.get_first_list_item = Mock(return_value=mock_record)
    mock_collection.create = Mock(return_value=Mock(id="mock-id"))
    mock_collection.update = Mock()
    mock_collection.delete = Mock()

    # Make collection callable to return itself for chaining
    mock_pb.collection = Mock(return_value=mock_collection)

    # Batch API
    mock_pb.send = Mock(return_value=[])

    # Auth store
    mock_pb.auth_store = Mock()
    mock_pb.auth_store.base_token = "mock-token"
    mock_pb.auth_store.base_model = Mock()

    return mock_pb


@pytest.fixture
def mock_pocketbase():
    """Create a mock PocketBase instance for tests that need it."""
    return create_mock_pocketbase()


@pytest.fixture(autouse=True)
def mock_all_external_services():
    """Automatically mock PocketBase to prevent real connections.

    Applied to all tests unless SKIP_MOCKING=true is set.
    """
    if os.environ.get("SKIP_MOCKING") == "true":
        yield {}
        return

    mock_pb = create_mock_pocketbase()

    with (
        patch("pocketbase.PocketBase") as mock_pb_class,
        patch("grouping.config.loader.PocketBase") as mock_loader_pb,
        patch("grouping.store.pocketbase_store.PocketBase") as mock_store_pb,
    ):
        mock_pb_class.return_value = mock_pb
        mock_loader_pb.return_value = mock_pb
        mock_store_pb.return_value = mock_pb
        yield {"pocketbase": mock_pb}


# =============================================================================
# Configuration Fixtures
# =============================================================================

# Default test configuration values matching the config schema
TEST_CONFIG = {
    "grouping.max_group_size": 12,
    "grouping.num_groups": 5,
    "grouping.max_grade_spread": 2,
    "grouping.school_year_cutoff_month": 9,
    "grouping.late_registration_days": 7,
    "grouping.grade_fallback_threshold": 3,
}


class MockConfigLoader:
    """Mock ConfigLoader for testing without database access."""

    def __init__(self, config: dict[str, int] | None = None):
        self._config = dict(TEST_CONFIG)
        if config:
            self._config.update(config)

    def get_int(self, key: str, default: int | None = None) -> int:
        value = self._config.get(key)
        if value is not None:
            return int(value)
        return default if default is not None else 0


@pytest.fixture(autouse=True)
def reset_config_singleton():
    """Reset ConfigLoader singleton between tests."""
    yield
    try:
        from grouping.config import ConfigLoader

        ConfigLoader.reset()
    except ImportError:
        pass
