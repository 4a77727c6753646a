"""
Target Position Calculator.

Scales trader books down to the follower's capital. Each trader's book gets
one scaling factor against that trader's share of follower capital, so the
follower keeps the trader's relative exposure; positions are never scaled up.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, List, Protocol, Sequence, Tuple

from copytrader.core import get_logger

from ..models.position import Position, ResolvedPosition, TargetPosition, to_decimal
from ..models.trader import TraderPositions
from .allocator import get_allocated_capital

logger = get_logger(__name__)

HUNDRED = Decimal("100")
ONE = Decimal("1")
ZERO = Decimal("0")


class ScalingConfig(Protocol):
    """Settings consumed by the calculator (satisfied by SyncConfig)."""

    safety_buffer_percent: Decimal
    max_scaling_factor: Decimal
    min_position_value: Decimal


@dataclass
class SkippedTarget:
    """A source position that produced no target."""

    symbol: str
    side: str
    target_margin: Decimal
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "target_margin": str(self.target_margin),
            "reason": self.reason,
        }


@dataclass
class TraderScaling:
    """How one trader's book was fitted into its share of capital."""

    trader_address: str
    allocation_percent: Decimal
    allocated_capital: Decimal
    trader_margin: Decimal
    scaling_factor: Decimal

    @property
    def scaled_margin(self) -> Decimal:
        return self.trader_margin * self.scaling_factor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trader_address": self.trader_address,
            "allocation_percent": str(self.allocation_percent),
            "allocated_capital": str(self.allocated_capital),
            "trader_margin": str(self.trader_margin),
            "scaling_factor": str(self.scaling_factor),
        }


@dataclass
class TargetCalculation:
    """
    Result of scaling trader books to follower capital.

    Attributes:
        targets: Positions the follower should hold
        skipped: Positions dropped below the minimum margin
        scaling_factor: Margin multiplier applied (clamped); with per-trader
            scaling, the overall ratio of scaled to source margin
        trader_margin: Total margin of the source book
        target_margin_total: Total margin of the targets
        allocated_capital: Capital the book was scaled to
        traders: Per-trader scaling, empty for a single-book calculation
    """

    targets: List[TargetPosition] = field(default_factory=list)
    skipped: List[SkippedTarget] = field(default_factory=list)
    scaling_factor: Decimal = ZERO
    trader_margin: Decimal = ZERO
    target_margin_total: Decimal = ZERO
    allocated_capital: Decimal = ZERO
    traders: List[TraderScaling] = field(default_factory=list)

    @property
    def utilization_percent(self) -> Decimal:
        """Share of allocated capital committed as margin."""
        if self.allocated_capital <= 0:
            return ZERO
        return self.target_margin_total / self.allocated_capital * HUNDRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets": [t.to_dict() for t in self.targets],
            "skipped": [s.to_dict() for s in self.skipped],
            "scaling_factor": str(self.scaling_factor),
            "trader_margin": str(self.trader_margin),
            "target_margin_total": str(self.target_margin_total),
            "allocated_capital": str(self.allocated_capital),
            "utilization_percent": str(self.utilization_percent),
            "traders": [t.to_dict() for t in self.traders],
        }


def calculate_scaling_factor(
    total_margin: Decimal,
    allocated_capital: Decimal,
    safety_buffer_percent: Decimal,
    max_scaling_factor: Decimal,
) -> Decimal:
    """
    Margin multiplier that fits the trader book into the allocated capital.

    Returns 0 when the book has no margin, and never more than
    ``max_scaling_factor``.
    """
    if total_margin <= 0 or allocated_capital <= 0:
        return ZERO
    usable_capital = allocated_capital * safety_buffer_percent / HUNDRED
    return min(usable_capital / total_margin, max_scaling_factor)


def _collect_targets(
    positions: Sequence[ResolvedPosition | Position],
    scaling_factor: Decimal,
    config: ScalingConfig,
    result: TargetCalculation,
) -> None:
    for position in positions:
        target_margin = min(position.margin * scaling_factor, position.margin)

        if target_margin < config.min_position_value:
            result.skipped.append(
                SkippedTarget(
                    symbol=position.symbol,
                    side=position.side.value,
                    target_margin=target_margin,
                    reason="below minimum",
                )
            )
            logger.debug(
                f"Skipping {position.symbol} {position.side.value}: margin "
                f"{target_margin:.2f} < minimum {config.min_position_value}"
            )
            continue

        target_size = min(
            target_margin * position.leverage / position.entry_price,
            position.size,
        )
        result.targets.append(
            TargetPosition(
                symbol=position.symbol,
                side=position.side,
                size=target_size,
                entry_price=position.entry_price,
                leverage=position.leverage,
                margin=target_margin,
                stop_loss=position.stop_loss,
                take_profit=position.take_profit,
            )
        )
        result.target_margin_total += target_margin


def compute_targets(
    positions: Sequence[ResolvedPosition | Position],
    allocated_capital: Decimal,
    config: ScalingConfig,
) -> TargetCalculation:
    """
    Compute capital-scaled target positions for a single book.

    Args:
        positions: Resolved trader book (or plain positions)
        allocated_capital: Follower capital available to the book
        config: Buffer, clamp and minimum-size settings

    Returns:
        TargetCalculation with targets, skipped positions and the factor used
    """
    allocated_capital = to_decimal(allocated_capital)
    trader_margin = sum((p.margin for p in positions), ZERO)
    scaling_factor = calculate_scaling_factor(
        trader_margin,
        allocated_capital,
        config.safety_buffer_percent,
        config.max_scaling_factor,
    )

    result = TargetCalculation(
        scaling_factor=scaling_factor,
        trader_margin=trader_margin,
        allocated_capital=allocated_capital,
    )
    _collect_targets(positions, scaling_factor, config, result)

    logger.debug(
        f"Scaling factor {scaling_factor:.4f}: {len(result.targets)} targets, "
        f"{len(result.skipped)} below minimum"
    )
    return result


def scale_trader_books(
    books: Sequence[TraderPositions],
    total_capital: Decimal,
    config: ScalingConfig,
) -> Tuple[List[TraderPositions], List[TraderScaling]]:
    """
    Fit every trader's book into that trader's share of follower capital.

    Each book gets its own clamped scaling factor against
    ``total_capital * allocation_percent / 100``. The returned books carry
    the factor so conflict resolution weights contributions by it.

    Example:
        >>> books, scalings = scale_trader_books(roster.snapshot(), Decimal("100"), config)
        >>> [s.scaling_factor for s in scalings]
        [Decimal('0.05'), Decimal('0.5')]
    """
    total_capital = to_decimal(total_capital)
    scaled: List[TraderPositions] = []
    scalings: List[TraderScaling] = []

    for book in books:
        allocated = get_allocated_capital(book, total_capital)
        trader_margin = sum((p.margin for p in book.positions), ZERO)
        factor = calculate_scaling_factor(
            trader_margin,
            allocated,
            config.safety_buffer_percent,
            config.max_scaling_factor,
        )
        scalings.append(
            TraderScaling(
                trader_address=book.trader_address,
                allocation_percent=book.allocation_percent,
                allocated_capital=allocated,
                trader_margin=trader_margin,
                scaling_factor=factor,
            )
        )
        scaled.append(replace(book, positions=list(book.positions), scaling_factor=factor))
        logger.debug(
            f"{book.trader_address}: {allocated:.2f} USD for {trader_margin:.2f} USD margin, "
            f"factor {factor:.4f}"
        )

    return scaled, scalings


def compute_scaled_targets(
    resolved: Sequence[ResolvedPosition],
    scalings: Sequence[TraderScaling],
    config: ScalingConfig,
) -> TargetCalculation:
    """
    Targets for a book resolved from ``scale_trader_books`` output.

    Sizes are already scaled per trader, so only the minimum margin and the
    ``size <= source`` cap are applied here.
    """
    trader_margin = sum((s.trader_margin for s in scalings), ZERO)
    scaled_margin = sum((s.scaled_margin for s in scalings), ZERO)

    result = TargetCalculation(
        scaling_factor=scaled_margin / trader_margin if trader_margin > 0 else ZERO,
        trader_margin=trader_margin,
        allocated_capital=sum((s.allocated_capital for s in scalings), ZERO),
        traders=list(scalings),
    )
    _collect_targets(resolved, ONE, config, result)

    logger.debug(
        f"Per-trader scaling over {len(scalings)} traders: {len(result.targets)} targets, "
        f"{len(result.skipped)} below minimum"
    )
    return result
