"""Shared fixtures for storage tests."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest


@pytest.fixture
def temp_dir():
    """Temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class FixedClock:
    """Clock returning a fixed instant until moved."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
