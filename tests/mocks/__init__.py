# Mock classes for testing
"""Mock position sources, follower accounts and position factories for testing."""

from .position_factory import TRADER_A, TRADER_B, TRADER_C, make_position
from .position_source_mock import MockFollower, MockPositionSource

__all__ = [
    "MockPositionSource",
    "MockFollower",
    "make_position",
    "TRADER_A",
    "TRADER_B",
    "TRADER_C",
]
