"""
Trader Roster Unit Tests.

Tests for following, pausing and weighting traders.
"""

from decimal import Decimal

import pytest

from copytrader.config.models import AppConfig, SyncConfig, TraderConfig
from copytrader.core.exceptions import (
    DuplicateTraderError,
    NotFoundError,
    TraderLimitError,
    UnknownStrategyError,
    ValidationError,
)
from copytrader.sync.models import AccountData, AllocationStrategy, TraderPerformance
from copytrader.sync.roster import TraderRoster
from tests.mocks import TRADER_A, TRADER_B, TRADER_C, make_position


def _allocations(roster: TraderRoster) -> list[Decimal]:
    return [t.allocation_percent for t in roster.traders]


class TestRosterMembership:
    """Test adding and removing traders."""

    def test_add_recomputes_allocations(self):
        """Test every add rebalances the roster."""
        roster = TraderRoster()
        roster.add_trader(TRADER_A)
        assert _allocations(roster) == [Decimal("100")]

        roster.add_trader(TRADER_B)
        assert _allocations(roster) == [Decimal("50"), Decimal("50")]
        assert roster.version == 2

    def test_address_case_insensitive(self, roster):
        """Test lookups ignore case."""
        assert TRADER_A.upper() in roster
        assert roster.get_trader(TRADER_A.upper()).name == "alice"

    def test_duplicate_rejected(self, roster):
        """Test the same address cannot be followed twice."""
        with pytest.raises(DuplicateTraderError):
            roster.add_trader(TRADER_A.upper())
        assert len(roster) == 2

    def test_limit_enforced(self):
        """Test max_traders caps the roster."""
        roster = TraderRoster(SyncConfig(max_traders=2))
        roster.add_trader(TRADER_A)
        roster.add_trader(TRADER_B)

        with pytest.raises(TraderLimitError) as exc_info:
            roster.add_trader(TRADER_C)

        assert exc_info.value.details["max_traders"] == 2
        assert len(roster) == 2

    def test_empty_address_rejected(self):
        """Test blank addresses are invalid."""
        with pytest.raises(ValidationError):
            TraderRoster().add_trader("   ")

    def test_remove_rebalances(self, roster):
        """Test removing a trader gives the rest its share."""
        roster.remove_trader(TRADER_A)

        assert len(roster) == 1
        assert _allocations(roster) == [Decimal("100")]

    def test_remove_unknown(self, roster):
        """Test removing an unknown trader raises."""
        with pytest.raises(NotFoundError):
            roster.remove_trader(TRADER_C)

    def test_from_config(self):
        """Test building from AppConfig keeps order and pause state."""
        config = AppConfig(
            traders=[
                TraderConfig(address=TRADER_A, name="alice"),
                TraderConfig(address=TRADER_B, active=False),
            ]
        )

        roster = TraderRoster.from_config(config)

        assert [t.address for t in roster.traders] == [TRADER_A, TRADER_B]
        assert _allocations(roster) == [Decimal("100"), Decimal("0")]
        assert roster.traders[1].is_paused


class TestRosterPauseResume:
    """Test pausing and resuming."""

    def test_pause_moves_allocation(self, roster):
        """Test a paused trader drops to 0 and the other takes 100."""
        version = roster.version
        roster.pause_trader(TRADER_B)

        assert _allocations(roster) == [Decimal("100"), Decimal("0")]
        assert [t.address for t in roster.active_traders] == [TRADER_A]
        assert roster.version == version + 1

    def test_pause_twice_no_change(self, roster):
        """Test pausing a paused trader does not bump the version."""
        roster.pause_trader(TRADER_B)
        version = roster.version
        roster.pause_trader(TRADER_B)

        assert roster.version == version

    def test_resume_restores_split(self, roster):
        """Test resume rebalances back."""
        roster.pause_trader(TRADER_B)
        roster.resume_trader(TRADER_B)

        assert _allocations(roster) == [Decimal("50"), Decimal("50")]


class TestRosterStrategies:
    """Test allocation strategy and weight changes."""

    def test_custom_weights(self, roster):
        """Test custom weights drive allocations."""
        roster.set_allocation_strategy("custom")
        roster.set_custom_weight(TRADER_A, "3")
        roster.set_custom_weight(TRADER_B, 1)

        assert roster.allocation_strategy == AllocationStrategy.CUSTOM
        assert _allocations(roster) == [Decimal("75"), Decimal("25")]

    def test_negative_weight_rejected(self, roster):
        """Test weights must be non-negative."""
        with pytest.raises(ValidationError):
            roster.set_custom_weight(TRADER_A, "-1")

    def test_unknown_strategy_rejected(self, roster):
        """Test strategy changes are validated."""
        with pytest.raises(UnknownStrategyError):
            roster.set_allocation_strategy("kelly")
        assert roster.allocation_strategy == AllocationStrategy.EQUAL

    def test_performance_update_rebalances(self, roster):
        """Test metrics updates rebalance only for performance strategies."""
        version = roster.version
        roster.update_performance(TRADER_A, TraderPerformance(pnl=Decimal("90")))
        assert roster.version == version

        roster.set_allocation_strategy(AllocationStrategy.PERFORMANCE)
        roster.update_performance(TRADER_B, TraderPerformance(pnl=Decimal("10")))

        assert _allocations(roster) == [Decimal("90"), Decimal("10")]

    def test_recompute_heals_without_version_bump(self, roster):
        """Test recompute repairs allocations silently."""
        roster.traders[0].allocation_percent = Decimal("70")
        version = roster.version

        roster.recompute()

        assert _allocations(roster) == [Decimal("50"), Decimal("50")]
        assert roster.version == version

    def test_get_allocations(self, roster):
        """Test allocations keyed by address."""
        assert roster.get_allocations() == {TRADER_A: Decimal("50"), TRADER_B: Decimal("50")}


class TestRosterPositions:
    """Test position bookkeeping."""

    def test_update_positions(self, roster):
        """Test fetched positions are stored with sync time."""
        record = roster.update_positions(
            TRADER_A,
            [make_position("BTC")],
            AccountData(account_value="5000"),
        )

        assert len(record.positions) == 1
        assert record.account_data.account_value == Decimal("5000")
        assert record.last_sync is not None

    def test_snapshot_active_only(self, roster):
        """Test snapshots skip paused traders and honour the address filter."""
        roster.update_positions(TRADER_A, [make_position("BTC")])
        roster.update_positions(TRADER_B, [make_position("ETH")])

        assert len(roster.snapshot()) == 2
        assert [s.trader_address for s in roster.snapshot([TRADER_B.upper()])] == [TRADER_B]

        roster.pause_trader(TRADER_B)
        snapshot = roster.snapshot()
        assert [s.trader_address for s in snapshot] == [TRADER_A]
        assert snapshot[0].allocation_percent == Decimal("100")

    def test_status(self, roster):
        """Test status payload."""
        roster.pause_trader(TRADER_B)
        status = roster.get_status()

        assert status["trader_count"] == 2
        assert status["active_count"] == 1
        assert status["allocation_strategy"] == "equal"
        assert status["traders"][0]["name"] == "alice"
