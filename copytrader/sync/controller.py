"""
Sync Controller.

Runs the copy-trading loop: on every cycle it fetches the followed traders'
and the follower's positions, scales each trader's book to its share of the
follower's capital, merges the books, diffs the result against what the
follower holds and executes the resulting closes and opens.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from copytrader.config.models import SyncConfig
from copytrader.core import get_logger
from copytrader.core.exceptions import InitializationError, InvalidStateError

from .core.allocator import allocations_valid
from .core.conflict_resolver import ConflictResolver, resolve_conflicts
from .core.diff_engine import PositionDiff, diff
from .core.target_calculator import (
    TargetCalculation,
    compute_scaled_targets,
    scale_trader_books,
)
from .models.position import Position, PositionKey, TargetPosition
from .models.records import (
    ActionRecord,
    ActionType,
    CycleResult,
    ExecutionResult,
    FetchResult,
)
from .models.state import (
    VALID_STATE_TRANSITIONS,
    ConflictStrategy,
    SyncSessionState,
    SyncState,
    SyncStats,
)
from .models.trader import AccountData, TraderPositions, TraderRecord
from .roster import TraderRoster

logger = get_logger(__name__)


class PositionSource(Protocol):
    """Protocol for adapters that report positions."""

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def fetch_positions(self, address: str, platform: Optional[str] = None) -> FetchResult:
        """Fetch open positions and account data; empty list when flat."""
        ...

    async def fetch_last_trade_timestamp(self, address: str) -> Optional[int]:
        """Most recent trade time in epoch ms, None if unknown."""
        ...


class OrderExecutor(PositionSource, Protocol):
    """Protocol for the follower account; failures are returned, not raised."""

    async def open_position(self, target: TargetPosition) -> ExecutionResult:
        ...

    async def close_position(self, position: Position) -> ExecutionResult:
        ...


class SyncController:
    """
    Copy-trading sync loop.

    Lifecycle: IDLE -> INITIALIZING -> RUNNING -> STOPPING -> IDLE.
    Cross-cycle memory lives in ``SyncState`` and is cleared on stop.

    Example:
        >>> controller = SyncController(roster, HyperliquidInfoAPI(), PaperAccount())
        >>> await controller.start()
        >>> ...
        >>> await controller.stop()
        >>> controller.get_status()["stats"]["positions_opened"]
    """

    def __init__(
        self,
        roster: TraderRoster,
        source: PositionSource,
        follower: OrderExecutor,
        config: Optional[SyncConfig] = None,
        follower_address: str = "paper",
        max_activity_log: int = 100,
    ):
        """
        Initialize SyncController.

        Args:
            roster: Followed traders
            source: Adapter used to fetch trader positions
            follower: Follower account adapter (fetch + execute)
            config: Sync settings
            follower_address: Address passed to the follower's fetch
            max_activity_log: Number of action records kept
        """
        self._roster = roster
        self._source = source
        self._follower = follower
        self._config = config or SyncConfig()
        self._follower_address = follower_address

        self._resolver = ConflictResolver(self._config.conflict_strategy)

        self._state = SyncSessionState.IDLE
        self._sync_state = SyncState()
        self._stats = SyncStats()

        self._activity_log: List[ActionRecord] = []
        self._max_activity_log = max_activity_log

        # Roster version seen by the last allocation check / completed cycle
        self._allocation_version: Optional[int] = None
        self._history_version: Optional[int] = None
        # Set when the last cycle left a failed action to retry
        self._retry_pending = False

        self._follower_positions: List[Position] = []
        self._follower_account: Optional[AccountData] = None
        self._last_calculation: Optional[TargetCalculation] = None
        self._last_diff: Optional[PositionDiff] = None

        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._sync_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SyncSessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SyncSessionState.RUNNING

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def roster(self) -> TraderRoster:
        return self._roster

    @property
    def sync_state(self) -> SyncState:
        return self._sync_state

    @property
    def stats(self) -> SyncStats:
        return self._stats

    @property
    def conflict_resolver(self) -> ConflictResolver:
        return self._resolver

    @property
    def last_calculation(self) -> Optional[TargetCalculation]:
        return self._last_calculation

    @property
    def last_diff(self) -> Optional[PositionDiff]:
        return self._last_diff

    @property
    def follower_positions(self) -> List[Position]:
        return list(self._follower_positions)

    def set_conflict_strategy(self, strategy: ConflictStrategy | str) -> None:
        """
        Change the conflict strategy for subsequent cycles.

        Raises:
            UnknownStrategyError: If the strategy is not recognized
        """
        self._resolver.set_strategy(strategy)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _transition(self, target: SyncSessionState) -> None:
        if target not in VALID_STATE_TRANSITIONS.get(self._state, []):
            raise InvalidStateError(self._state.value, target.value)
        logger.debug(f"Sync state: {self._state.value} -> {target.value}")
        self._state = target

    def _adapters(self) -> List[PositionSource]:
        if self._source is self._follower:
            return [self._source]
        return [self._source, self._follower]

    async def start(self) -> None:
        """
        Connect adapters and start the background sync loop.

        Raises:
            InitializationError: If an adapter fails to connect
            InvalidStateError: If called while initializing or stopping
        """
        if self._state == SyncSessionState.RUNNING:
            logger.warning("SyncController is already running")
            return

        self._transition(SyncSessionState.INITIALIZING)
        logger.info("Starting SyncController...")

        try:
            await self._connect_adapters()
        except InitializationError:
            self._transition(SyncSessionState.IDLE)
            raise

        self._sync_state = SyncState()
        self._history_version = None
        self._retry_pending = False
        self._stop_event = asyncio.Event()
        self._running = True
        self._transition(SyncSessionState.RUNNING)
        self._sync_task = asyncio.create_task(self._sync_loop())

        logger.info(
            f"SyncController started: {len(self._roster.active_traders)} active traders, "
            f"every {self._config.poll_interval_seconds}s"
        )

    async def stop(self) -> None:
        """
        Stop the loop, wait for an in-flight cycle, release adapters.

        The in-flight cycle's results are discarded and SyncState is cleared.
        """
        if self._state != SyncSessionState.RUNNING:
            logger.warning("SyncController is not running")
            return

        self._transition(SyncSessionState.STOPPING)
        logger.info("Stopping SyncController...")

        self._running = False
        if self._stop_event:
            self._stop_event.set()

        if self._sync_task:
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None

        await self._release_adapters()
        self._sync_state.clear()
        self._history_version = None
        self._retry_pending = False
        self._transition(SyncSessionState.IDLE)

        logger.info("SyncController stopped")

    async def start_session(self) -> None:
        """
        Connect adapters without starting the loop, for one-off cycles.

        Raises:
            InitializationError: If an adapter fails to connect
            InvalidStateError: If the loop is running
        """
        if self._state != SyncSessionState.IDLE:
            raise InvalidStateError(
                self._state.value,
                SyncSessionState.IDLE.value,
                "Cannot open a session while the sync loop is active",
            )
        await self._connect_adapters()

    async def end_session(self) -> None:
        """Release adapters connected by ``start_session``."""
        await self._release_adapters()

    async def _connect_adapters(self) -> None:
        try:
            for adapter in self._adapters():
                await adapter.connect()
        except Exception as e:
            logger.error(f"Failed to initialize adapters: {e}")
            await self._release_adapters()
            raise InitializationError(f"Failed to connect adapters: {e}") from e

    async def _release_adapters(self) -> None:
        for adapter in self._adapters():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing adapter {type(adapter).__name__}: {e}")

    async def _sync_loop(self) -> None:
        """Run a cycle immediately, then one per poll interval until stopped."""
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._stats.errors += 1
                logger.error(f"Error in sync cycle: {e}")

            if not self._running:
                break

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._config.poll_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    def _stop_requested(self) -> bool:
        return self._state == SyncSessionState.STOPPING

    # =========================================================================
    # Sync Cycle
    # =========================================================================

    async def run_cycle(self, execute: bool = True) -> CycleResult:
        """
        Run one sync cycle.

        Args:
            execute: When False, compute and store the plan without
                executing it or updating SyncState

        Returns:
            CycleResult summarizing what happened
        """
        result = CycleResult()
        self._ensure_allocations()

        active = self._roster.active_traders
        if not active:
            logger.info("No active traders to copy, skipping cycle")
            result.skipped = True
            return result

        # Cheap pre-check: nothing traded since the last cycle
        trade_timestamp: Optional[int] = None
        if self._config.trade_check_enabled:
            trade_timestamp = await self._latest_trade_timestamp(active)
            if self._stop_requested():
                return self._discard(result)

            if execute and self._can_short_circuit(trade_timestamp):
                await self._fetch_all(active, result)
                if self._stop_requested():
                    return self._discard(result)
                self._stats.cycles_skipped += 1
                result.skipped = True
                logger.debug("No new trades since last cycle, skipping diff")
                return result

        failed_traders = await self._fetch_all(active, result)
        if self._stop_requested():
            return self._discard(result)
        if failed_traders is None:
            return result

        failed_addresses = {t.address for t in failed_traders}
        per_trader = self._roster.snapshot(
            [t.address for t in active if t.address not in failed_addresses]
        )
        capital = self._follower_account.account_value if self._follower_account else 0
        books, scalings = scale_trader_books(per_trader, capital, self._config)
        resolved = self._resolver.resolve(books)
        calculation = compute_scaled_targets(resolved, scalings, self._config)

        held_book = self._held_book(per_trader, failed_traders)

        position_diff = diff(
            self._follower_positions,
            calculation.targets,
            self._sync_state.last_trader_positions,
            held_book,
            self._config.size_change_tolerance_percent,
        )

        self._last_calculation = calculation
        self._last_diff = position_diff
        result.scaling_factor = calculation.scaling_factor

        if not execute:
            return result

        incomplete = await self._execute(position_diff, result)
        if self._stop_requested():
            return self._discard(result)

        self._sync_state.last_trader_positions = self._next_history(held_book, incomplete)
        self._retry_pending = bool(incomplete) or result.failed > 0
        if trade_timestamp is not None and trade_timestamp != self._sync_state.last_trade_timestamp:
            self._sync_state.last_trade_timestamp = trade_timestamp
        self._history_version = self._roster.version

        self._stats.cycles_run += 1
        self._stats.last_sync_time = datetime.now(timezone.utc)
        self._stats.scaling_factor = calculation.scaling_factor

        logger.info(
            f"Sync cycle complete: {result.opened} opened, {result.closed} closed, "
            f"{result.failed} failed (scaling {calculation.scaling_factor:.4f})"
        )
        return result

    def _ensure_allocations(self) -> None:
        if (
            self._roster.version != self._allocation_version
            or not allocations_valid(self._roster.traders)
        ):
            self._roster.recompute()
            self._allocation_version = self._roster.version

    def _can_short_circuit(self, trade_timestamp: Optional[int]) -> bool:
        return (
            self._sync_state.has_history
            and trade_timestamp is not None
            and trade_timestamp == self._sync_state.last_trade_timestamp
            and self._history_version == self._roster.version
            and not self._retry_pending
        )

    def _discard(self, result: CycleResult) -> CycleResult:
        logger.info("Stop requested, discarding cycle results")
        result.discarded = True
        return result

    async def _latest_trade_timestamp(self, traders: Sequence[TraderRecord]) -> Optional[int]:
        """Most recent trade across traders; None if any lookup fails."""
        results = await asyncio.gather(
            *(self._source.fetch_last_trade_timestamp(t.address) for t in traders),
            return_exceptions=True,
        )
        timestamps = []
        for trader, value in zip(traders, results):
            if isinstance(value, Exception):
                logger.warning(f"Trade check failed for {trader.name}: {value}")
                return None
            if value is not None:
                timestamps.append(int(value))
        return max(timestamps) if timestamps else None

    async def _fetch_all(
        self,
        traders: Sequence[TraderRecord],
        result: CycleResult,
    ) -> Optional[List[TraderRecord]]:
        """
        Fetch every trader and the follower in parallel.

        Returns:
            Traders whose fetch failed, or None if the follower fetch failed
        """
        outcomes = await asyncio.gather(
            *(self._source.fetch_positions(t.address, t.platform) for t in traders),
            self._follower.fetch_positions(self._follower_address),
            return_exceptions=True,
        )
        if self._stop_requested():
            return []

        follower_outcome = outcomes[-1]
        failed: List[TraderRecord] = []

        for trader, outcome in zip(traders, outcomes[:-1]):
            if isinstance(outcome, Exception):
                self._stats.errors += 1
                result.fetch_errors.append(f"{trader.address}: {outcome}")
                logger.error(f"Failed to fetch positions for {trader.name}: {outcome}")
                failed.append(trader)
                continue
            self._roster.update_positions(trader.address, outcome.positions, outcome.account_data)

        if isinstance(follower_outcome, Exception):
            self._stats.errors += 1
            result.fetch_errors.append(f"follower: {follower_outcome}")
            logger.error(f"Failed to fetch follower positions: {follower_outcome}")
            return None

        self._follower_positions = list(follower_outcome.positions)
        self._follower_account = follower_outcome.account_data
        return failed

    def _held_book(
        self,
        per_trader: List[TraderPositions],
        failed_traders: Sequence[TraderRecord],
    ) -> List[Position]:
        """
        Allocation-weighted trader book used for diffing and history.

        Independent of follower capital, so only trader or allocation changes
        register as size changes. Traders whose fetch failed count with their
        last known positions so their copies are neither closed nor resized
        this cycle.
        """
        books = self._roster.snapshot() if failed_traders else per_trader
        return [r.as_position() for r in resolve_conflicts(books, self._resolver.strategy)]

    def _next_history(
        self,
        held_book: List[Position],
        incomplete: Set[PositionKey],
    ) -> List[Position]:
        """History for the next cycle; unfinished resizes keep their old entry."""
        if not incomplete:
            return held_book

        previous = {p.key: p for p in self._sync_state.last_trader_positions or []}
        history = [p for p in held_book if p.key not in incomplete]
        history.extend(previous[key] for key in incomplete if key in previous)
        logger.info(f"{len(incomplete)} resize(s) incomplete, retrying next cycle")
        return history

    # =========================================================================
    # Execution
    # =========================================================================

    async def _execute(self, position_diff: PositionDiff, result: CycleResult) -> Set[PositionKey]:
        """
        Execute closes before opens; failures are recorded, never rolled back.

        An open is not sent when the close of the same symbol/side failed,
        so a stale position is never topped up with its replacement.

        Returns:
            Keys of resizes (close + open) that did not complete
        """
        resizing = {p.key for p in position_diff.to_close} & {t.key for t in position_diff.to_open}
        failed_closes: Set[PositionKey] = set()
        incomplete: Set[PositionKey] = set()

        for position in position_diff.to_close:
            record = await self._execute_action(ActionType.CLOSE, position)
            result.actions.append(record)
            if record.success:
                result.closed += 1
                self._stats.positions_closed += 1
            else:
                result.failed += 1
                failed_closes.add(position.key)

        for target in position_diff.to_open:
            if target.key in failed_closes:
                result.deferred += 1
                incomplete.add(target.key)
                logger.warning(
                    f"Not opening {target.symbol} {target.side.value}: "
                    f"close of the held position failed"
                )
                continue

            record = await self._execute_action(ActionType.OPEN, target)
            result.actions.append(record)
            if record.success:
                result.opened += 1
                self._stats.positions_opened += 1
            else:
                result.failed += 1
                if target.key in resizing:
                    incomplete.add(target.key)

        return incomplete

    async def _execute_action(
        self,
        action: ActionType,
        position: Position | TargetPosition,
    ) -> ActionRecord:
        try:
            if action == ActionType.CLOSE:
                outcome = await self._follower.close_position(position)
            else:
                outcome = await self._follower.open_position(position)
        except Exception as e:
            outcome = ExecutionResult.failed(str(e))

        record = ActionRecord(
            action=action,
            symbol=position.symbol,
            side=position.side.value,
            size=position.size,
            success=outcome.success,
            tx_id=outcome.tx_id,
            error=outcome.error,
        )

        if outcome.success:
            logger.info(
                f"{action.value.upper()} {position.symbol} {position.side.value} "
                f"{position.size} ({outcome.tx_id})"
            )
        else:
            self._stats.errors += 1
            logger.error(
                f"Failed to {action.value} {position.symbol} {position.side.value}: {outcome.error}"
            )

        self._activity_log.append(record)
        if len(self._activity_log) > self._max_activity_log:
            self._activity_log = self._activity_log[-self._max_activity_log:]

        return record

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Get controller status."""
        return {
            "state": self._state.value,
            "running": self.is_running,
            "poll_interval_seconds": self._config.poll_interval_seconds,
            "conflict_strategy": self._resolver.strategy.value,
            "has_history": self._sync_state.has_history,
            "last_trade_timestamp": self._sync_state.last_trade_timestamp,
            "stats": self._stats.to_dict(),
            "roster": self._roster.get_status(),
            "conflicts": self._resolver.get_status(),
            "follower": {
                "address": self._follower_address,
                "position_count": len(self._follower_positions),
                "account": self._follower_account.to_dict() if self._follower_account else None,
            },
            "last_plan": self._last_diff.to_dict() if self._last_diff else None,
        }

    def get_history(self, limit: int = 100) -> List[ActionRecord]:
        """Most recent action records, newest last."""
        return self._activity_log[-limit:]
