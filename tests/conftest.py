"""
Test configuration and fixtures for the resultsync project.

This file is the root pytest configuration file that sets up pytest
markers and imports fixtures from the fixtures modules to make them
available to all tests.
"""

import pytest

# Import fixtures from the fixtures modules to make them available to all tests
from tests.fixtures.base import (
    base_test_env,
    mock_env_vars,
    temp_dir,
    temp_db_url,
    service_config,
    fast_submission_config,
)
from tests.fixtures.reports import (
    junit_xml_file,
    structured_json_file,
    write_report,
    sample_run,
    fake_client,
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark a test as a unit test")
    config.addinivalue_line("markers", "integration: mark a test as an integration test")
