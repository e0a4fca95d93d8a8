"""
Pytest configuration and shared fixtures.
"""

import sys
from pathlib import Path

# Add backend to path
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

# Import fixtures
from tests.fixtures.grading_fixtures import (  # noqa: E402
    battery_provider,
    challenge_id,
    grading_store,
    heading_battery,
    heading_submission,
    make_service,
    user_id,
)

__all__ = [
    "battery_provider",
    "challenge_id",
    "grading_store",
    "heading_battery",
    "heading_submission",
    "make_service",
    "user_id",
]


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that spawn sandbox processes or use a database"
    )
