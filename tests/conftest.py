"""
Pytest configuration and fixtures.

This file provides pytest-specific configuration and fixtures.
For shared test helpers, see tests/support.py
"""

import pytest

from tests import get_test_db_url, is_database_available


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "db: marks tests as requiring PostgreSQL (deselect with '-m \"not db\"')"
    )


@pytest.fixture(scope="session")
def test_database():
    """
    Session-scoped PostgreSQL URL for ``db`` tests.

    Uses TEST_DATABASE_URL; tests are skipped when the database cannot
    be reached.
    """
    if not is_database_available():
        pytest.skip("PostgreSQL test database not available")
    return get_test_db_url()
