"""
Position Models.

Venue-neutral position shapes used across a sync cycle: the trader and
follower positions fetched from adapters, the merged (resolved) book after
conflict resolution, and the capital-scaled targets.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from copytrader.core.exceptions import ValidationError

# Quote-currency suffix stripped from perpetual symbols (BTCUSDT -> BTC)
QUOTE_SUFFIX_PATTERN = re.compile(r"(USDT|USDC|USD)$")
SYMBOL_SEPARATORS = re.compile(r"[-/:]")


class PositionSide(str, Enum):
    """Position direction."""
    LONG = "long"
    SHORT = "short"

    @classmethod
    def parse(cls, value: Any) -> "PositionSide":
        """Parse venue side spellings (long/buy/bid, short/sell/ask)."""
        if isinstance(value, PositionSide):
            return value
        text = str(value).strip().lower()
        if text in ("long", "buy", "bid", "b"):
            return cls.LONG
        if text in ("short", "sell", "ask", "a", "s"):
            return cls.SHORT
        raise ValidationError(f"Unknown position side: {value!r}")


PositionKey = Tuple[str, PositionSide]


def normalize_symbol(symbol: str) -> str:
    """
    Normalize a venue symbol to its base asset.

    Upper-cases, drops everything after the first ``-``, ``/`` or ``:`` and
    strips a trailing USD/USDT/USDC quote.

    Example:
        >>> normalize_symbol("btc-perp")
        'BTC'
        >>> normalize_symbol("ETH/USDT:USDT")
        'ETH'
        >>> normalize_symbol("SOLUSDT")
        'SOL'
    """
    base = SYMBOL_SEPARATORS.split(symbol.strip().upper(), maxsplit=1)[0]
    stripped = QUOTE_SUFFIX_PATTERN.sub("", base)
    return stripped or base


def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str to Decimal, leaving Decimals untouched."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except ArithmeticError as e:
        raise ValidationError(f"Not a number: {value!r}") from e


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


def _datetime_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes, ISO strings or epoch milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return datetime.fromisoformat(str(value))


@dataclass
class Position:
    """
    An open perpetual position held by a trader or the follower.

    Attributes:
        symbol: Venue symbol (normalized for matching via ``key``)
        side: Long or short
        size: Position size in base units (> 0)
        entry_price: Average entry price (> 0)
        leverage: Leverage multiplier (>= 1)
        margin: Margin committed; derived from size/price/leverage if omitted
        stop_loss: Optional stop loss trigger price
        take_profit: Optional take profit trigger price
        opened_at: When the position was opened, if the venue reports it
    """

    symbol: str
    side: PositionSide
    size: Decimal
    entry_price: Decimal
    leverage: Decimal = Decimal("1")
    margin: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    opened_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Coerce numeric fields to Decimal and validate ranges."""
        self.side = PositionSide.parse(self.side)
        self.size = to_decimal(self.size)
        self.entry_price = to_decimal(self.entry_price)
        self.leverage = to_decimal(self.leverage)
        self.stop_loss = _optional_decimal(self.stop_loss)
        self.take_profit = _optional_decimal(self.take_profit)
        self.opened_at = _parse_datetime(self.opened_at)

        if not self.symbol:
            raise ValidationError("Position symbol is required")
        if not self.size.is_finite() or self.size <= 0:
            raise ValidationError(f"Position size must be positive: {self.size}")
        if not self.entry_price.is_finite() or self.entry_price <= 0:
            raise ValidationError(f"Entry price must be positive: {self.entry_price}")
        if not self.leverage.is_finite() or self.leverage < 1:
            raise ValidationError(f"Leverage must be >= 1: {self.leverage}")

        if self.margin is None:
            self.margin = self.size * self.entry_price / self.leverage
        else:
            self.margin = to_decimal(self.margin)
            if not self.margin.is_finite() or self.margin < 0:
                raise ValidationError(f"Margin must be non-negative: {self.margin}")

    @property
    def key(self) -> PositionKey:
        """Matching key: normalized symbol plus side."""
        return normalize_symbol(self.symbol), self.side

    @property
    def notional_value(self) -> Decimal:
        """Position value at entry."""
        return self.size * self.entry_price

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "size": str(self.size),
            "entry_price": str(self.entry_price),
            "leverage": str(self.leverage),
            "margin": str(self.margin),
            "stop_loss": str(self.stop_loss) if self.stop_loss is not None else None,
            "take_profit": str(self.take_profit) if self.take_profit is not None else None,
            "opened_at": _datetime_to_str(self.opened_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        """Create from dictionary produced by ``to_dict``."""
        return cls(
            symbol=data["symbol"],
            side=data["side"],
            size=data["size"],
            entry_price=data["entry_price"],
            leverage=data.get("leverage", "1"),
            margin=data.get("margin"),
            stop_loss=data.get("stop_loss"),
            take_profit=data.get("take_profit"),
            opened_at=data.get("opened_at"),
        )


@dataclass
class Attribution:
    """Share of a resolved position contributed by one trader."""

    trader_address: str
    contribution_size: Decimal
    percentage: Decimal

    def __post_init__(self) -> None:
        self.contribution_size = to_decimal(self.contribution_size)
        self.percentage = to_decimal(self.percentage)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "trader_address": self.trader_address,
            "contribution_size": str(self.contribution_size),
            "percentage": str(self.percentage),
        }


@dataclass
class ResolvedPosition:
    """
    A position of the merged trader book after conflict resolution.

    ``size`` and ``margin`` are already weighted by each contributing
    trader's allocation or capital scaling factor; ``attribution`` records
    who contributed what.
    """

    symbol: str
    side: PositionSide
    size: Decimal
    entry_price: Decimal
    leverage: Decimal
    margin: Decimal
    attribution: List[Attribution] = field(default_factory=list)
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    opened_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.side = PositionSide.parse(self.side)
        self.size = to_decimal(self.size)
        self.entry_price = to_decimal(self.entry_price)
        self.leverage = to_decimal(self.leverage)
        self.margin = to_decimal(self.margin)
        self.stop_loss = _optional_decimal(self.stop_loss)
        self.take_profit = _optional_decimal(self.take_profit)

    @property
    def key(self) -> PositionKey:
        return normalize_symbol(self.symbol), self.side

    @property
    def traders(self) -> List[str]:
        """Addresses of contributing traders."""
        return [a.trader_address for a in self.attribution]

    def as_position(self) -> Position:
        """View this resolved entry as a plain Position (for history tracking)."""
        return Position(
            symbol=self.symbol,
            side=self.side,
            size=self.size,
            entry_price=self.entry_price,
            leverage=self.leverage,
            margin=self.margin,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            opened_at=self.opened_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "size": str(self.size),
            "entry_price": str(self.entry_price),
            "leverage": str(self.leverage),
            "margin": str(self.margin),
            "attribution": [a.to_dict() for a in self.attribution],
            "stop_loss": str(self.stop_loss) if self.stop_loss is not None else None,
            "take_profit": str(self.take_profit) if self.take_profit is not None else None,
            "opened_at": _datetime_to_str(self.opened_at),
        }


@dataclass
class TargetPosition:
    """Desired follower position for this cycle, scaled to follower capital."""

    symbol: str
    side: PositionSide
    size: Decimal
    entry_price: Decimal
    leverage: Decimal
    margin: Decimal
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None

    def __post_init__(self) -> None:
        self.side = PositionSide.parse(self.side)
        self.size = to_decimal(self.size)
        self.entry_price = to_decimal(self.entry_price)
        self.leverage = to_decimal(self.leverage)
        self.margin = to_decimal(self.margin)
        self.stop_loss = _optional_decimal(self.stop_loss)
        self.take_profit = _optional_decimal(self.take_profit)

    @property
    def key(self) -> PositionKey:
        return normalize_symbol(self.symbol), self.side

    @property
    def notional_value(self) -> Decimal:
        return self.size * self.entry_price

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "size": str(self.size),
            "entry_price": str(self.entry_price),
            "leverage": str(self.leverage),
            "margin": str(self.margin),
            "stop_loss": str(self.stop_loss) if self.stop_loss is not None else None,
            "take_profit": str(self.take_profit) if self.take_profit is not None else None,
        }
