"""
Capital Allocation Strategies.

Splits follower capital across followed traders. Each strategy is a pure
weighting function; ``compute_allocations`` normalizes the weights of the
active traders to percentages that sum to 100.
"""

from decimal import Decimal
from typing import Callable, Dict, List, Sequence

from copytrader.core import get_logger
from copytrader.core.exceptions import UnknownStrategyError

from ..models.state import AllocationStrategy
from ..models.trader import TraderPositions, TraderRecord

logger = get_logger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")
ALLOCATION_TOLERANCE = Decimal("0.000001")

WeightFunction = Callable[[Sequence[TraderRecord]], List[Decimal]]


def _equal_weights(traders: Sequence[TraderRecord]) -> List[Decimal]:
    return [Decimal("1")] * len(traders)


def _performance_weights(traders: Sequence[TraderRecord]) -> List[Decimal]:
    # Losing traders get nothing
    return [max(ZERO, t.performance.pnl) for t in traders]


def _sharpe_weights(traders: Sequence[TraderRecord]) -> List[Decimal]:
    return [max(ZERO, t.performance.sharpe_ratio) for t in traders]


def _custom_weights(traders: Sequence[TraderRecord]) -> List[Decimal]:
    # Traders without a user weight get an equal share
    default_weight = HUNDRED / len(traders)
    weights = []
    for t in traders:
        weight = t.custom_weight if t.custom_weight is not None else default_weight
        weights.append(max(ZERO, weight))
    return weights


ALLOCATION_WEIGHTS: Dict[AllocationStrategy, WeightFunction] = {
    AllocationStrategy.EQUAL: _equal_weights,
    AllocationStrategy.PERFORMANCE: _performance_weights,
    AllocationStrategy.SHARPE: _sharpe_weights,
    AllocationStrategy.CUSTOM: _custom_weights,
}


def parse_allocation_strategy(value: AllocationStrategy | str) -> AllocationStrategy:
    """
    Parse an allocation strategy name.

    Raises:
        UnknownStrategyError: If the name is not a known strategy
    """
    if isinstance(value, AllocationStrategy):
        return value
    try:
        return AllocationStrategy(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(s.value for s in AllocationStrategy)
        raise UnknownStrategyError(
            f"Unknown allocation strategy: {value!r} (expected one of: {valid})",
            code="ALLOCATION_STRATEGY",
        ) from None


def compute_allocations(
    traders: Sequence[TraderRecord],
    strategy: AllocationStrategy | str,
) -> None:
    """
    Recompute ``allocation_percent`` for every trader in place.

    Paused traders always end at 0. Active traders share 100%: by the
    strategy's weights, or equally when every weight is zero.

    Args:
        traders: All followed traders (active and paused)
        strategy: Allocation strategy

    Raises:
        UnknownStrategyError: If the strategy is not recognized
    """
    strategy = parse_allocation_strategy(strategy)

    active = []
    for trader in traders:
        if trader.is_active:
            active.append(trader)
        else:
            trader.allocation_percent = ZERO

    if not active:
        return

    weights = ALLOCATION_WEIGHTS[strategy](active)
    total = sum(weights, ZERO)
    if total <= 0:
        logger.debug(f"No positive {strategy.value} weights, falling back to equal split")
        weights = _equal_weights(active)
        total = Decimal(len(active))

    for trader, weight in zip(active, weights):
        trader.allocation_percent = weight / total * HUNDRED

    logger.debug(
        f"Allocations ({strategy.value}): "
        + ", ".join(f"{t.name}={t.allocation_percent:.2f}%" for t in active)
    )


def allocations_valid(traders: Sequence[TraderRecord]) -> bool:
    """Check paused traders hold 0 and active allocations sum to 100 (or 0 if none)."""
    if any(not t.is_active and t.allocation_percent != 0 for t in traders):
        return False
    active = [t for t in traders if t.is_active]
    if not active:
        return True
    total = sum((t.allocation_percent for t in active), ZERO)
    return abs(total - HUNDRED) <= ALLOCATION_TOLERANCE


def get_allocated_capital(
    trader: TraderRecord | TraderPositions,
    total_capital: Decimal,
) -> Decimal:
    """Capital assigned to a trader out of the follower's total."""
    return total_capital * trader.allocation_percent / HUNDRED
