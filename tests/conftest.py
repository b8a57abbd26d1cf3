"""Shared fixtures for event bus and circuit breaker tests."""

from unittest.mock import MagicMock

import pytest


class FakeClock:
    """Manually advanced monotonic clock for breaker tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A clock that only moves when the test advances it."""
    return FakeClock()


@pytest.fixture
def mock_logger():
    """Logger collaborator exposing debug/info/warning/error."""
    return MagicMock(name="logger")
