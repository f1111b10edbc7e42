"""
Root-level conftest for all tests.

Unit tests build their own Settings; integration tests point Settings at
testcontainers. Nothing here may read the environment-backed singleton.
"""

import pytest

from linkmeta.main.config import reset_settings
from linkmeta.main.job_context import clear_job_context


@pytest.fixture(autouse=True)
def reset_settings_after_test():
    """Reset settings after each test to prevent state leakage."""
    yield
    reset_settings()
    clear_job_context()
