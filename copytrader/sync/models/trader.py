"""
Trader Models.

Followed-trader records and the per-trader position snapshots passed into
conflict resolution.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .position import Position, to_decimal


@dataclass
class TraderPerformance:
    """
    Performance metrics used by the performance/sharpe allocation strategies.

    Attributes:
        pnl: Realized + unrealized PnL in quote currency
        win_rate: Winning trades percentage
        total_trades: Number of trades observed
        sharpe_ratio: Risk-adjusted return
        roi: Return on investment percentage
    """

    pnl: Decimal = Decimal("0")
    win_rate: Decimal = Decimal("0")
    total_trades: int = 0
    sharpe_ratio: Decimal = Decimal("0")
    roi: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        """Convert values to Decimal if necessary."""
        self.pnl = to_decimal(self.pnl)
        self.win_rate = to_decimal(self.win_rate)
        self.sharpe_ratio = to_decimal(self.sharpe_ratio)
        self.roi = to_decimal(self.roi)
        self.total_trades = int(self.total_trades)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pnl": str(self.pnl),
            "win_rate": str(self.win_rate),
            "total_trades": self.total_trades,
            "sharpe_ratio": str(self.sharpe_ratio),
            "roi": str(self.roi),
        }


@dataclass
class AccountData:
    """Account summary reported alongside positions."""

    account_value: Decimal = Decimal("0")
    withdrawable: Decimal = Decimal("0")
    total_margin_used: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        self.account_value = to_decimal(self.account_value)
        self.withdrawable = to_decimal(self.withdrawable)
        self.total_margin_used = to_decimal(self.total_margin_used)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_value": str(self.account_value),
            "withdrawable": str(self.withdrawable),
            "total_margin_used": str(self.total_margin_used),
        }


@dataclass
class TraderRecord:
    """
    A followed trader.

    Attributes:
        address: Wallet address, stored lower-cased
        platform: Venue the trader is followed on
        name: Display name
        allocation_percent: Share of follower capital, 0-100 (0 when paused)
        is_active: False while paused
        custom_weight: User weight for the custom allocation strategy
        performance: Metrics for performance-based strategies
        positions: Positions observed on the last successful fetch
        account_data: Account summary from the last successful fetch
        last_sync: When positions were last refreshed
    """

    address: str
    platform: str = "hyperliquid"
    name: str = ""
    allocation_percent: Decimal = Decimal("0")
    is_active: bool = True
    custom_weight: Optional[Decimal] = None
    performance: TraderPerformance = field(default_factory=TraderPerformance)
    positions: List[Position] = field(default_factory=list)
    account_data: Optional[AccountData] = None
    last_sync: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.address = self.address.strip().lower()
        if not self.name:
            self.name = f"{self.address[:6]}...{self.address[-4:]}"
        self.allocation_percent = to_decimal(self.allocation_percent)
        if self.custom_weight is not None:
            self.custom_weight = to_decimal(self.custom_weight)

    @property
    def is_paused(self) -> bool:
        return not self.is_active

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "address": self.address,
            "platform": self.platform,
            "name": self.name,
            "allocation_percent": str(self.allocation_percent),
            "is_active": self.is_active,
            "custom_weight": str(self.custom_weight) if self.custom_weight is not None else None,
            "performance": self.performance.to_dict(),
            "position_count": len(self.positions),
            "account_data": self.account_data.to_dict() if self.account_data else None,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
        }


@dataclass
class TraderPositions:
    """
    One trader's positions with the weight they contribute at.

    Contributions are weighted by ``allocation_percent / 100`` unless
    ``scaling_factor`` is set, in which case the book has already been
    sized against the trader's share of follower capital.
    """

    trader_address: str
    allocation_percent: Decimal
    positions: List[Position] = field(default_factory=list)
    scaling_factor: Optional[Decimal] = None

    def __post_init__(self) -> None:
        self.allocation_percent = to_decimal(self.allocation_percent)
        if self.scaling_factor is not None:
            self.scaling_factor = to_decimal(self.scaling_factor)

    @classmethod
    def from_record(cls, record: TraderRecord) -> "TraderPositions":
        return cls(
            trader_address=record.address,
            allocation_percent=record.allocation_percent,
            positions=list(record.positions),
        )
