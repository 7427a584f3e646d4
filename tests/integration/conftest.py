"""
tests/integration/conftest.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Live-API tests are skipped unless INTEGRATION_TESTS=1.

Usage:
    # Unit tests only (default, offline)
    pytest -q

    # Live Google Places calls (needs GOOGLE_PLACES_API_KEY)
    INTEGRATION_TESTS=1 pytest tests/integration/ -v
"""

from __future__ import annotations

import os

import pytest


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip everything under integration/ unless INTEGRATION_TESTS=1."""
    if os.getenv("INTEGRATION_TESTS"):
        return

    skip_marker = pytest.mark.skip(
        reason="Integration tests disabled (set INTEGRATION_TESTS=1 to enable)"
    )
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(skip_marker)


@pytest.fixture
def api_key() -> str:
    key = os.getenv("GOOGLE_PLACES_API_KEY", "")
    if not key:
        pytest.skip("GOOGLE_PLACES_API_KEY not set")
    return key
