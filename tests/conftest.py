"""
Pytest configuration and fixtures for copy trader tests.
"""

from decimal import Decimal

import pytest

from copytrader.config.models import SyncConfig
from copytrader.sync.roster import TraderRoster
from tests.mocks import TRADER_A, TRADER_B, MockFollower, MockPositionSource


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def sync_config() -> SyncConfig:
    """
    Sync settings without a minimum size so small test books survive scaling.
    """
    return SyncConfig(min_position_value=Decimal("0"), poll_interval_seconds=1)


# =============================================================================
# Roster Fixtures
# =============================================================================


@pytest.fixture
def roster(sync_config) -> TraderRoster:
    """Roster following two traders with equal allocation."""
    roster = TraderRoster(sync_config)
    roster.add_trader(TRADER_A, name="alice")
    roster.add_trader(TRADER_B, name="bob")
    return roster


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def source() -> MockPositionSource:
    """Trader position source with no positions."""
    return MockPositionSource()


@pytest.fixture
def follower() -> MockFollower:
    """Follower account with 1000 USD."""
    return MockFollower(account_value="1000")
