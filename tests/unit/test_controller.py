"""
Sync Controller Unit Tests.

Tests for the sync cycle and the controller lifecycle.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from copytrader.config.models import SyncConfig
from copytrader.core.exceptions import InitializationError, InvalidStateError, UnknownStrategyError
from copytrader.sync.controller import SyncController
from copytrader.sync.models import ActionType, ConflictStrategy, SyncSessionState
from copytrader.sync.roster import TraderRoster
from tests.mocks import TRADER_A, TRADER_B, MockFollower, make_position


def _held(follower: MockFollower) -> dict:
    return {(p.symbol, p.side.value): p.size for p in follower.held}


@pytest.fixture
def controller(roster, source, follower, sync_config) -> SyncController:
    """Controller over two traders with BTC (A) and ETH (B) longs."""
    source.set_positions(TRADER_A, [make_position("BTC", size="1", entry_price="100")])
    source.set_positions(TRADER_B, [make_position("ETH", size="2", entry_price="100")])
    return SyncController(roster, source, follower, config=sync_config)


class TestSyncCycle:
    """Test run_cycle."""

    @pytest.mark.asyncio
    async def test_first_cycle_opens_scaled_targets(self, controller, follower):
        """Test the first cycle copies every trader position within its capital share."""
        result = await controller.run_cycle()

        assert result.opened == 2
        assert result.closed == 0
        assert result.success
        # 500 USD per trader covers both books in full
        assert _held(follower) == {("BTC", "long"): Decimal("1"), ("ETH", "long"): Decimal("2")}
        assert controller.stats.cycles_run == 1
        assert controller.stats.positions_opened == 2
        assert controller.sync_state.has_history

    @pytest.mark.asyncio
    async def test_second_cycle_is_idempotent(self, controller, follower):
        """Test unchanged traders produce no further actions."""
        await controller.run_cycle()
        follower.calls.clear()

        result = await controller.run_cycle()

        assert follower.calls == []
        assert result.opened == 0 and result.closed == 0
        assert controller.last_diff.is_empty

    @pytest.mark.asyncio
    async def test_trader_close_closes_copy(self, controller, source, follower):
        """Test a closed trader position is closed on the follower."""
        await controller.run_cycle()
        source.set_positions(TRADER_B, [])

        result = await controller.run_cycle()

        assert result.closed == 1
        assert ("ETH", "long") not in _held(follower)

    @pytest.mark.asyncio
    async def test_trader_resize_closes_then_opens(self, controller, source, follower):
        """Test a large trader size change resizes the copy, close first."""
        await controller.run_cycle()
        follower.calls.clear()
        source.set_positions(TRADER_A, [make_position("BTC", size="2", entry_price="100")])

        await controller.run_cycle()

        assert [c[0] for c in follower.calls] == ["close", "open"]
        assert _held(follower)[("BTC", "long")] == Decimal("2")

    @pytest.mark.asyncio
    async def test_small_trader_change_ignored(self, controller, source, follower):
        """Test changes under the tolerance cause no action."""
        await controller.run_cycle()
        follower.calls.clear()
        source.set_positions(TRADER_A, [make_position("BTC", size="1.1", entry_price="100")])

        await controller.run_cycle()

        assert follower.calls == []

    @pytest.mark.asyncio
    async def test_targets_scaled_to_follower_capital(self, controller, follower):
        """Test each book is scaled down to its share when capital is short."""
        follower.set_account_value("100")

        await controller.run_cycle()

        # 50 USD each: A has 100 USD margin, B has 200 USD
        scalings = controller.last_calculation.traders
        assert [s.scaling_factor for s in scalings] == [Decimal("0.5"), Decimal("0.25")]
        assert [s.allocated_capital for s in scalings] == [Decimal("50"), Decimal("50")]
        assert _held(follower) == {("BTC", "long"): Decimal("0.5"), ("ETH", "long"): Decimal("0.5")}

    @pytest.mark.asyncio
    async def test_each_trader_gets_its_capital_share(self, roster, source, follower):
        """Test a large book does not crowd out a small one at equal allocation."""
        config = SyncConfig(min_position_value=Decimal("20"))
        source.set_positions(TRADER_A, [make_position("BTC", size="10", entry_price="100")])
        source.set_positions(TRADER_B, [make_position("ETH", size="1", entry_price="100")])
        follower.set_account_value("100")
        controller = SyncController(roster, source, follower, config=config)

        await controller.run_cycle()

        # 50 USD each: A's 1000 USD book at 0.05, B's 100 USD book at 0.5
        calculation = controller.last_calculation
        assert calculation.skipped == []
        assert {t.symbol: t.margin for t in calculation.targets} == {
            "BTC": Decimal("50"),
            "ETH": Decimal("50"),
        }
        assert _held(follower) == {("BTC", "long"): Decimal("0.5"), ("ETH", "long"): Decimal("0.5")}

    @pytest.mark.asyncio
    async def test_ample_capital_copies_full_size(self, roster, source, follower, sync_config):
        """Test a trader's share larger than its book copies the source size."""
        source.set_positions(
            TRADER_A,
            [make_position("BTC", size="1", entry_price="50000", leverage="10")],
        )
        follower.set_account_value("100000")
        controller = SyncController(roster, source, follower, config=sync_config)

        await controller.run_cycle()

        assert controller.last_calculation.traders[0].scaling_factor == Decimal("1")
        assert _held(follower) == {("BTC", "long"): Decimal("1")}

    @pytest.mark.asyncio
    async def test_below_minimum_not_opened_and_not_closed(self, roster, source, follower):
        """Test small targets are skipped but existing copies stay open."""
        config = SyncConfig(min_position_value=Decimal("60"))
        source.set_positions(TRADER_A, [make_position("BTC", size="0.5", entry_price="100")])
        source.set_positions(TRADER_B, [make_position("ETH", size="2", entry_price="100")])
        follower.hold(make_position("BTC", size="0.5", entry_price="100"))
        controller = SyncController(roster, source, follower, config=config)

        await controller.run_cycle()

        assert [s.symbol for s in controller.last_calculation.skipped] == ["BTC"]
        assert _held(follower)[("BTC", "long")] == Decimal("0.5")
        assert ("ETH", "long") in _held(follower)

    @pytest.mark.asyncio
    async def test_bootstrap_keeps_existing_copies(self, controller, follower):
        """Test the first cycle does not resize positions already held."""
        follower.hold(make_position("BTC", size="0.9", entry_price="100"))

        await controller.run_cycle()

        assert follower.calls == [("open", "ETH", "long", Decimal("2"))]
        assert _held(follower)[("BTC", "long")] == Decimal("0.9")

    @pytest.mark.asyncio
    async def test_orphan_follower_position_closed(self, controller, follower):
        """Test follower positions no trader holds are closed."""
        follower.hold(make_position("DOGE", size="100", entry_price="0.1"))

        result = await controller.run_cycle()

        assert result.closed == 1
        assert follower.calls[0][:2] == ("close", "DOGE")

    @pytest.mark.asyncio
    async def test_no_active_traders_skips(self, roster, source, follower, sync_config):
        """Test a fully paused roster skips the cycle."""
        roster.pause_trader(TRADER_A)
        roster.pause_trader(TRADER_B)
        controller = SyncController(roster, source, follower, config=sync_config)

        result = await controller.run_cycle()

        assert result.skipped
        assert source.fetch_calls == []

    @pytest.mark.asyncio
    async def test_plan_mode_does_not_execute(self, controller, follower):
        """Test execute=False computes the plan only."""
        result = await controller.run_cycle(execute=False)

        assert follower.calls == []
        assert len(controller.last_diff.to_open) == 2
        assert controller.sync_state.has_history is False
        assert result.opened == 0


class TestConflictsInCycle:
    """Test overlapping traders within a cycle."""

    @pytest.mark.asyncio
    async def test_combine_overlap(self, roster, source, follower, sync_config):
        """Test overlapping longs are combined at each trader's scaling."""
        source.set_positions(TRADER_A, [make_position("BTC", size="0.10", entry_price="100")])
        source.set_positions(TRADER_B, [make_position("BTC", size="0.15", entry_price="100")])
        follower.set_account_value("15")
        controller = SyncController(roster, source, follower, config=sync_config)

        await controller.run_cycle()

        # 7.5 USD each: A at 0.75 -> 0.075, B at 0.5 -> 0.075
        assert _held(follower) == {("BTC", "long"): Decimal("0.15")}
        assert len(controller.conflict_resolver.get_conflict_history()) == 1

    @pytest.mark.asyncio
    async def test_strategy_switch(self, roster, source, follower, sync_config):
        """Test runtime strategy changes apply to the next cycle."""
        source.set_positions(TRADER_A, [make_position("BTC", size="0.10", entry_price="100")])
        source.set_positions(TRADER_B, [make_position("BTC", size="0.15", entry_price="100")])
        controller = SyncController(roster, source, follower, config=sync_config)

        controller.set_conflict_strategy("largest")
        await controller.run_cycle()

        assert _held(follower) == {("BTC", "long"): Decimal("0.15")}
        with pytest.raises(UnknownStrategyError):
            controller.set_conflict_strategy("average")
        assert controller.conflict_resolver.strategy == ConflictStrategy.LARGEST

    @pytest.mark.asyncio
    async def test_opposite_sides_kept_apart(self, roster, source, follower, sync_config):
        """Test a long and a short on one symbol are both copied."""
        source.set_positions(TRADER_A, [make_position("BTC", "long", size="1", entry_price="100")])
        source.set_positions(TRADER_B, [make_position("BTC", "short", size="1", entry_price="100")])
        controller = SyncController(roster, source, follower, config=sync_config)

        await controller.run_cycle()

        assert set(_held(follower)) == {("BTC", "long"), ("BTC", "short")}


class TestShortCircuit:
    """Test the last-trade timestamp pre-check."""

    @pytest.mark.asyncio
    async def test_skips_when_nothing_traded(self, controller, source, follower):
        """Test an unchanged timestamp skips diff and execution."""
        source.set_trade_timestamp(TRADER_A, 1000)
        source.set_trade_timestamp(TRADER_B, 900)
        await controller.run_cycle()
        follower.calls.clear()

        result = await controller.run_cycle()

        assert result.skipped
        assert controller.stats.cycles_skipped == 1
        assert controller.sync_state.last_trade_timestamp == 1000
        assert follower.calls == []

    @pytest.mark.asyncio
    async def test_new_trade_runs_cycle(self, controller, source, follower):
        """Test a newer timestamp runs a full cycle."""
        source.set_trade_timestamp(TRADER_A, 1000)
        await controller.run_cycle()
        source.set_positions(TRADER_B, [])
        source.set_trade_timestamp(TRADER_B, 2000)

        result = await controller.run_cycle()

        assert not result.skipped
        assert result.closed == 1
        assert controller.sync_state.last_trade_timestamp == 2000

    @pytest.mark.asyncio
    async def test_roster_change_forces_cycle(self, controller, roster, source, follower):
        """Test pausing a trader is acted on even without new trades."""
        source.set_trade_timestamp(TRADER_A, 1000)
        await controller.run_cycle()

        roster.pause_trader(TRADER_B)
        result = await controller.run_cycle()

        assert not result.skipped
        assert ("ETH", "long") not in _held(follower)
        # A's allocation doubled, so its copy is resized
        assert _held(follower)[("BTC", "long")] == Decimal("1")

    @pytest.mark.asyncio
    async def test_timestamp_failure_never_skips(self, controller, source):
        """Test a failed trade check falls through to a full cycle."""
        source.set_trade_timestamp(TRADER_A, 1000)
        await controller.run_cycle()
        source.fail_timestamp(TRADER_B)

        result = await controller.run_cycle()

        assert not result.skipped

    @pytest.mark.asyncio
    async def test_disabled_check(self, roster, source, follower):
        """Test trade_check_enabled=False never queries timestamps."""
        config = SyncConfig(min_position_value=Decimal("0"), trade_check_enabled=False)
        controller = SyncController(roster, source, follower, config=config)

        await controller.run_cycle()
        await controller.run_cycle()

        assert source.timestamp_calls == []
        assert controller.stats.cycles_run == 2


class TestCycleErrors:
    """Test fetch and execution failures."""

    @pytest.mark.asyncio
    async def test_trader_fetch_failure_keeps_copies(self, controller, source, follower):
        """Test a failing trader neither closes nor resizes its copies."""
        await controller.run_cycle()
        follower.calls.clear()
        source.fail_fetch(TRADER_B)

        result = await controller.run_cycle()

        assert follower.calls == []
        assert len(result.fetch_errors) == 1
        assert controller.stats.errors == 1
        assert ("ETH", "long") in _held(follower)

        source.recover(TRADER_B)
        await controller.run_cycle()
        assert follower.calls == []

    @pytest.mark.asyncio
    async def test_other_traders_still_synced(self, controller, source, follower):
        """Test one failing trader does not block the others."""
        source.fail_fetch(TRADER_B)

        result = await controller.run_cycle()

        assert result.opened == 1
        assert set(_held(follower)) == {("BTC", "long")}

    @pytest.mark.asyncio
    async def test_follower_fetch_failure_aborts(self, controller, follower):
        """Test nothing executes without the follower's positions."""
        follower.fail_fetch("paper")

        result = await controller.run_cycle()

        assert follower.calls == []
        assert len(result.fetch_errors) == 1
        assert result.fetch_errors[0].startswith("follower")
        assert controller.sync_state.has_history is False

    @pytest.mark.asyncio
    async def test_execution_failure_counted(self, controller, follower):
        """Test a rejected open is recorded without stopping the cycle."""
        follower.fail_open("BTC", "insufficient balance")

        result = await controller.run_cycle()

        assert result.failed == 1
        assert result.opened == 1
        assert controller.stats.errors == 1
        failed = [a for a in controller.get_history() if not a.success]
        assert failed[0].symbol == "BTC"
        assert failed[0].error == "insufficient balance"

    @pytest.mark.asyncio
    async def test_failed_open_retried_next_cycle(self, controller, follower):
        """Test a target that failed to open is tried again."""
        follower.fail_open("BTC")
        await controller.run_cycle()
        follower.clear_failures()

        result = await controller.run_cycle()

        assert result.opened == 1
        assert ("BTC", "long") in _held(follower)

    @pytest.mark.asyncio
    async def test_failed_resize_close_holds_back_open(self, controller, source, follower):
        """Test the replacement is not opened on top of a position that failed to close."""
        await controller.run_cycle()
        follower.calls.clear()
        source.set_positions(TRADER_A, [make_position("BTC", size="2", entry_price="100")])
        follower.fail_close("BTC")

        result = await controller.run_cycle()

        assert follower.calls == [("close", "BTC", "long", Decimal("1"))]
        assert result.failed == 1
        assert result.deferred == 1
        assert result.opened == 0
        assert _held(follower)[("BTC", "long")] == Decimal("1")

    @pytest.mark.asyncio
    async def test_failed_resize_retried_next_cycle(self, controller, source, follower):
        """Test a resize that did not complete is attempted again."""
        await controller.run_cycle()
        source.set_positions(TRADER_A, [make_position("BTC", size="2", entry_price="100")])
        follower.fail_close("BTC")
        await controller.run_cycle()
        follower.clear_failures()
        follower.calls.clear()

        result = await controller.run_cycle()

        assert [c[:2] for c in follower.calls] == [("close", "BTC"), ("open", "BTC")]
        assert result.success
        assert _held(follower)[("BTC", "long")] == Decimal("2")

        follower.calls.clear()
        await controller.run_cycle()
        assert follower.calls == []

    @pytest.mark.asyncio
    async def test_failed_resize_not_short_circuited(self, controller, source, follower):
        """Test an unchanged trade timestamp does not hide an unfinished resize."""
        source.set_trade_timestamp(TRADER_A, 1000)
        await controller.run_cycle()
        source.set_positions(TRADER_A, [make_position("BTC", size="2", entry_price="100")])
        source.set_trade_timestamp(TRADER_A, 2000)
        follower.fail_open("BTC")
        await controller.run_cycle()
        follower.clear_failures()

        result = await controller.run_cycle()

        assert not result.skipped
        assert _held(follower)[("BTC", "long")] == Decimal("2")

    @pytest.mark.asyncio
    async def test_executor_exception_absorbed(self, controller, follower):
        """Test an executor raising is reported as a failed action."""
        follower.raise_on_open = RuntimeError("socket closed")

        result = await controller.run_cycle()

        assert result.failed == 2
        assert all(a.action == ActionType.OPEN for a in result.actions)
        assert result.actions[0].error == "socket closed"


class TestControllerLifecycle:
    """Test start/stop and the state machine."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, controller, source, follower):
        """Test the loop runs a cycle right away and stops cleanly."""
        await controller.start()
        assert controller.state == SyncSessionState.RUNNING
        assert source.connected and follower.connected

        for _ in range(50):
            if controller.stats.cycles_run:
                break
            await asyncio.sleep(0.01)

        await controller.stop()

        assert controller.state == SyncSessionState.IDLE
        assert controller.stats.cycles_run >= 1
        assert controller.sync_state.has_history is False
        assert not source.connected and not follower.connected

    @pytest.mark.asyncio
    async def test_start_failure(self, controller, source):
        """Test connection failures surface and leave the controller idle."""
        source.connect_error = ConnectionError("unreachable")

        with pytest.raises(InitializationError):
            await controller.start()

        assert controller.state == SyncSessionState.IDLE
        assert source.close_calls == 1

    @pytest.mark.asyncio
    async def test_double_start_and_stop_are_noops(self, controller, source):
        """Test redundant lifecycle calls are ignored."""
        await controller.stop()
        await controller.start()
        await controller.start()
        assert source.connect_calls == 1

        await controller.stop()
        assert controller.state == SyncSessionState.IDLE

    @pytest.mark.asyncio
    async def test_shared_adapter_connected_once(self, roster, sync_config):
        """Test one object serving as source and follower is connected once."""
        account = MockFollower()
        controller = SyncController(roster, account, account, config=sync_config)

        await controller.start()
        await controller.stop()

        assert account.connect_calls == 1
        assert account.close_calls == 1

    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_cycle(self, controller, source, follower):
        """Test results of a cycle interrupted by stop are discarded."""
        release = asyncio.Event()
        original_fetch = source.fetch_positions

        async def slow_fetch(address, platform=None):
            await release.wait()
            return await original_fetch(address, platform)

        source.fetch_positions = slow_fetch

        await controller.start()
        await asyncio.sleep(0.01)

        stop_task = asyncio.create_task(controller.stop())
        await asyncio.sleep(0.01)
        release.set()
        await stop_task

        assert follower.calls == []
        assert controller.stats.cycles_run == 0
        assert controller.sync_state.has_history is False

    @pytest.mark.asyncio
    async def test_session_for_single_cycle(self, controller, source):
        """Test start_session/end_session wrap a one-off cycle."""
        await controller.start_session()
        assert source.connected

        await controller.run_cycle(execute=False)
        await controller.end_session()

        assert not source.connected
        assert controller.state == SyncSessionState.IDLE

    @pytest.mark.asyncio
    async def test_session_rejected_while_running(self, controller):
        """Test sessions cannot be opened while the loop runs."""
        await controller.start()
        try:
            with pytest.raises(InvalidStateError):
                await controller.start_session()
        finally:
            await controller.stop()

    @pytest.mark.asyncio
    async def test_cycle_exception_does_not_kill_loop(self, controller):
        """Test unexpected cycle errors are counted and the loop keeps running."""
        controller.run_cycle = AsyncMock(side_effect=RuntimeError("unexpected"))

        await controller.start()
        await asyncio.sleep(0.01)

        assert controller.is_running
        assert controller.stats.errors >= 1

        await controller.stop()

    def test_status(self, controller):
        """Test status payload."""
        status = controller.get_status()

        assert status["state"] == "idle"
        assert status["conflict_strategy"] == "combine"
        assert status["roster"]["trader_count"] == 2
        assert status["follower"]["address"] == "paper"
        assert status["last_plan"] is None


class TestAllocationHealing:
    """Test allocations are repaired before a cycle."""

    @pytest.mark.asyncio
    async def test_corrupted_allocations_recomputed(self, controller, roster, follower):
        """Test invalid allocations are recomputed before resolving."""
        roster.traders[0].allocation_percent = Decimal("90")
        follower.set_account_value("100")

        await controller.run_cycle()

        assert roster.traders[0].allocation_percent == Decimal("50")
        assert _held(follower)[("BTC", "long")] == Decimal("0.5")

    def test_default_roster(self, source, follower):
        """Test controller works with default config."""
        controller = SyncController(TraderRoster(), source, follower)
        assert controller.config.min_position_value == Decimal("20")
        assert controller.sync_state.last_trader_positions is None
        assert controller.get_history() == []
        assert controller.follower_positions == []
