"""Pytest configuration and fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock pinned to 2024-01-01 12:00 UTC."""
    return FixedClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def sample_submissions():
    """Two submissions from the same morning."""
    return [
        {"steps": 1500, "timestamp": "2024-01-01T10:00:00Z", "deviceType": "iOS"},
        {"steps": 2000, "timestamp": "2024-01-01T11:00:00Z", "deviceType": "iOS"},
    ]
