"""
Trader Roster.

Owns the followed traders and keeps their capital allocations consistent:
every membership, activation, strategy or weight change recomputes the
allocations and bumps ``version`` so the sync controller can notice.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from copytrader.config.models import AppConfig, SyncConfig
from copytrader.core import get_logger
from copytrader.core.exceptions import (
    DuplicateTraderError,
    NotFoundError,
    TraderLimitError,
    ValidationError,
)

from .core.allocator import compute_allocations, parse_allocation_strategy
from .models.position import Position, to_decimal
from .models.state import AllocationStrategy
from .models.trader import AccountData, TraderPerformance, TraderPositions, TraderRecord

logger = get_logger(__name__)


class TraderRoster:
    """
    Followed-trader registry with allocation bookkeeping.

    Example:
        >>> roster = TraderRoster(SyncConfig(max_traders=3))
        >>> roster.add_trader("0xAbC...", name="whale")
        >>> roster.add_trader("0xdef...")
        >>> [t.allocation_percent for t in roster.traders]
        [Decimal('50.0'), Decimal('50.0')]
        >>> roster.pause_trader("0xdef...")
    """

    def __init__(self, config: Optional[SyncConfig] = None):
        self._config = config or SyncConfig()
        self._traders: List[TraderRecord] = []
        self._strategy: AllocationStrategy = self._config.allocation_strategy
        self._version = 0

    @classmethod
    def from_config(cls, app_config: AppConfig) -> "TraderRoster":
        """Build a roster from the configured traders, in configuration order."""
        roster = cls(app_config.sync)
        for trader in app_config.traders:
            roster.add_trader(
                trader.address,
                platform=trader.platform,
                name=trader.name,
                custom_weight=trader.custom_weight,
                active=trader.active,
            )
        return roster

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def traders(self) -> List[TraderRecord]:
        """All traders in configuration order."""
        return list(self._traders)

    @property
    def active_traders(self) -> List[TraderRecord]:
        return [t for t in self._traders if t.is_active]

    @property
    def allocation_strategy(self) -> AllocationStrategy:
        return self._strategy

    @property
    def max_traders(self) -> int:
        return self._config.max_traders

    @property
    def version(self) -> int:
        """Incremented on every change that affects allocations."""
        return self._version

    def __len__(self) -> int:
        return len(self._traders)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.get_trader(address) is not None

    def get_trader(self, address: str) -> Optional[TraderRecord]:
        """Find a trader by address (case-insensitive)."""
        key = address.strip().lower()
        for trader in self._traders:
            if trader.address == key:
                return trader
        return None

    def _require(self, address: str) -> TraderRecord:
        trader = self.get_trader(address)
        if trader is None:
            raise NotFoundError(f"Trader not followed: {address}")
        return trader

    # =========================================================================
    # Membership
    # =========================================================================

    def add_trader(
        self,
        address: str,
        platform: str = "hyperliquid",
        name: Optional[str] = None,
        custom_weight: Optional[Decimal] = None,
        active: bool = True,
    ) -> TraderRecord:
        """
        Start following a trader.

        Raises:
            ValidationError: If the address is empty
            DuplicateTraderError: If the address is already followed
            TraderLimitError: If max_traders is reached
        """
        if not address or not address.strip():
            raise ValidationError("Trader address is required")

        if self.get_trader(address) is not None:
            raise DuplicateTraderError(
                f"Trader already followed: {address}",
                details={"address": address.strip().lower()},
            )

        if len(self._traders) >= self._config.max_traders:
            raise TraderLimitError(
                f"Maximum {self._config.max_traders} traders allowed",
                details={"max_traders": self._config.max_traders},
            )

        record = TraderRecord(
            address=address,
            platform=platform,
            name=name or "",
            is_active=active,
            custom_weight=custom_weight,
        )
        self._traders.append(record)
        self._changed()

        logger.info(f"Added trader {record.name} ({record.address}) on {record.platform}")
        return record

    def remove_trader(self, address: str) -> TraderRecord:
        """
        Stop following a trader.

        Raises:
            NotFoundError: If the trader is not followed
        """
        record = self._require(address)
        self._traders.remove(record)
        self._changed()

        logger.info(f"Removed trader {record.name} ({record.address})")
        return record

    def pause_trader(self, address: str) -> TraderRecord:
        """Pause a trader; its allocation drops to 0 and others absorb it."""
        return self._set_active(address, False)

    def resume_trader(self, address: str) -> TraderRecord:
        return self._set_active(address, True)

    def _set_active(self, address: str, active: bool) -> TraderRecord:
        record = self._require(address)
        if record.is_active == active:
            return record

        record.is_active = active
        self._changed()

        logger.info(f"Trader {record.name} {'resumed' if active else 'paused'}")
        return record

    # =========================================================================
    # Allocation
    # =========================================================================

    def set_allocation_strategy(self, strategy: AllocationStrategy | str) -> None:
        """
        Change how capital is split.

        Raises:
            UnknownStrategyError: If the strategy is not recognized
        """
        self._strategy = parse_allocation_strategy(strategy)
        self._changed()
        logger.info(f"Allocation strategy changed to: {self._strategy.value}")

    def set_custom_weight(self, address: str, weight: Decimal | float | str) -> TraderRecord:
        """
        Set a trader's weight for the custom strategy.

        Raises:
            ValidationError: If the weight is negative
        """
        record = self._require(address)
        value = to_decimal(weight)
        if value < 0:
            raise ValidationError(f"Custom weight must be non-negative: {value}")

        record.custom_weight = value
        self._changed()
        return record

    def update_performance(
        self,
        address: str,
        performance: TraderPerformance,
    ) -> TraderRecord:
        """Replace a trader's metrics; performance-based allocations follow."""
        record = self._require(address)
        record.performance = performance
        if self._strategy in (AllocationStrategy.PERFORMANCE, AllocationStrategy.SHARPE):
            self._changed()
        return record

    def recompute(self) -> None:
        """Recompute allocations without bumping the version."""
        compute_allocations(self._traders, self._strategy)

    def get_allocations(self) -> Dict[str, Decimal]:
        return {t.address: t.allocation_percent for t in self._traders}

    def _changed(self) -> None:
        compute_allocations(self._traders, self._strategy)
        self._version += 1

    # =========================================================================
    # Positions
    # =========================================================================

    def update_positions(
        self,
        address: str,
        positions: List[Position],
        account_data: Optional[AccountData] = None,
    ) -> TraderRecord:
        """Store the positions from a successful fetch."""
        record = self._require(address)
        record.positions = list(positions)
        if account_data is not None:
            record.account_data = account_data
        record.last_sync = datetime.now(timezone.utc)
        return record

    def snapshot(self, addresses: Optional[List[str]] = None) -> List[TraderPositions]:
        """
        Per-trader positions for conflict resolution, in configuration order.

        Args:
            addresses: Restrict to these traders (default: all active)
        """
        selected = self.active_traders
        if addresses is not None:
            wanted = {a.lower() for a in addresses}
            selected = [t for t in selected if t.address in wanted]
        return [TraderPositions.from_record(t) for t in selected]

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            "allocation_strategy": self._strategy.value,
            "max_traders": self._config.max_traders,
            "trader_count": len(self._traders),
            "active_count": len(self.active_traders),
            "version": self._version,
            "traders": [t.to_dict() for t in self._traders],
        }
