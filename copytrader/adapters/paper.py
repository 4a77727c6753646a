"""
Paper Account.

In-memory follower account used for dry runs. Positions are opened at the
target's entry price and margin is reserved from the balance; closing
returns the margin (no price feed, so no realized PnL).
"""

import itertools
import time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from copytrader.core import get_logger
from copytrader.sync.models import (
    AccountData,
    ExecutionResult,
    FetchResult,
    Position,
    PositionKey,
    TargetPosition,
    to_decimal,
)

logger = get_logger(__name__)


class PaperAccount:
    """
    Simulated follower account.

    Example:
        >>> account = PaperAccount(balance=Decimal("1000"))
        >>> await account.connect()
        >>> result = await account.open_position(target)
        >>> result.success, result.tx_id
        (True, 'paper-1')
    """

    def __init__(
        self,
        balance: Decimal | float | str = Decimal("1000"),
        address: str = "paper",
    ):
        self._address = address
        self._free_balance = to_decimal(balance)
        self._positions: Dict[PositionKey, Position] = {}
        self._tx_counter = itertools.count(1)
        self._connected = False
        self._last_trade_ms: Optional[int] = None

    @property
    def address(self) -> str:
        return self._address

    @property
    def free_balance(self) -> Decimal:
        return self._free_balance

    @property
    def margin_used(self) -> Decimal:
        return sum((p.margin for p in self._positions.values()), Decimal("0"))

    @property
    def account_value(self) -> Decimal:
        return self._free_balance + self.margin_used

    @property
    def positions(self) -> List[Position]:
        return list(self._positions.values())

    def seed(self, positions: Iterable[Position]) -> None:
        """Load existing positions without touching the balance."""
        for position in positions:
            self._positions[position.key] = position

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        self._connected = True
        logger.info(f"Paper account {self._address} ready, balance {self._free_balance}")

    async def close(self) -> None:
        self._connected = False

    # =========================================================================
    # Position Source Interface
    # =========================================================================

    async def fetch_positions(self, address: Optional[str] = None, platform: Optional[str] = None) -> FetchResult:
        return FetchResult(
            positions=self.positions,
            account_data=AccountData(
                account_value=self.account_value,
                withdrawable=self._free_balance,
                total_margin_used=self.margin_used,
            ),
        )

    async def fetch_last_trade_timestamp(self, address: Optional[str] = None) -> Optional[int]:
        return self._last_trade_ms

    # =========================================================================
    # Order Executor Interface
    # =========================================================================

    async def open_position(self, target: TargetPosition) -> ExecutionResult:
        """Open a position for the target; failures are returned, not raised."""
        if not self._connected:
            return ExecutionResult.failed("paper account not connected")

        if target.key in self._positions:
            return ExecutionResult.failed(f"{target.symbol} {target.side.value} already open")

        if target.margin > self._free_balance:
            return ExecutionResult.failed(
                f"insufficient balance: need {target.margin:.2f}, free {self._free_balance:.2f}"
            )

        position = Position(
            symbol=target.symbol,
            side=target.side,
            size=target.size,
            entry_price=target.entry_price,
            leverage=target.leverage,
            margin=target.margin,
            stop_loss=target.stop_loss,
            take_profit=target.take_profit,
        )
        self._positions[position.key] = position
        self._free_balance -= target.margin
        self._last_trade_ms = int(time.time() * 1000)

        tx_id = f"paper-{next(self._tx_counter)}"
        logger.info(
            f"[PAPER] Opened {target.symbol} {target.side.value} {target.size} "
            f"@ {target.entry_price} ({tx_id})"
        )
        return ExecutionResult.ok(tx_id)

    async def close_position(self, position: Position) -> ExecutionResult:
        """Close the held position with the same symbol and side."""
        if not self._connected:
            return ExecutionResult.failed("paper account not connected")

        held = self._positions.pop(position.key, None)
        if held is None:
            return ExecutionResult.failed(f"no open {position.symbol} {position.side.value} position")

        self._free_balance += held.margin
        self._last_trade_ms = int(time.time() * 1000)

        tx_id = f"paper-{next(self._tx_counter)}"
        logger.info(f"[PAPER] Closed {held.symbol} {held.side.value} {held.size} ({tx_id})")
        return ExecutionResult.ok(tx_id)
