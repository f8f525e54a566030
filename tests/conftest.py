"""Shared fixtures."""

import pytest
from fastapi_fetcheable.config import reset_config


@pytest.fixture(autouse=True)
def default_config():
    """Every test starts and ends with the default process-wide configuration."""
    reset_config()
    yield
    reset_config()
