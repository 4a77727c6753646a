"""
Position Diff Engine.

Turns desired (target) and actual follower positions into open/close
actions. Adjustments of an already-copied position are driven only by the
trader's own size change between cycles, so rounding drift between target
and actual sizes never causes churn.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from copytrader.core import get_logger

from ..models.position import Position, PositionKey, TargetPosition, to_decimal

logger = get_logger(__name__)

DEFAULT_CHANGE_THRESHOLD_PERCENT = Decimal("20")
HUNDRED = Decimal("100")


@dataclass
class PositionDiff:
    """Actions needed to bring the follower in line with the targets."""

    to_open: List[TargetPosition] = field(default_factory=list)
    to_close: List[Position] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_open and not self.to_close

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to_open": [p.to_dict() for p in self.to_open],
            "to_close": [p.to_dict() for p in self.to_close],
        }


def _size_by_key(positions: Sequence[Position]) -> Dict[PositionKey, Decimal]:
    return {p.key: p.size for p in positions}


def size_change_ratio(last_size: Decimal, current_size: Decimal) -> Decimal:
    """Relative change of the trader's size between two cycles."""
    if last_size <= 0:
        return Decimal("Infinity") if current_size > 0 else Decimal("0")
    return abs(current_size - last_size) / last_size


def diff(
    actual: Sequence[Position],
    target: Sequence[TargetPosition],
    last_trader_positions: Optional[Sequence[Position]],
    current_trader_positions: Sequence[Position],
    change_threshold_percent: Decimal = DEFAULT_CHANGE_THRESHOLD_PERCENT,
) -> PositionDiff:
    """
    Compute open/close actions.

    Rules, matched on normalized symbol + side:
    - target without actual: open
    - actual without target: close only if the trader no longer holds it
      (otherwise it was only filtered by the minimum size)
    - both present: nothing on the first cycle (no history); afterwards
      close + reopen only when the trader's own size moved by more than
      the threshold since the last cycle

    Args:
        actual: Follower's current positions
        target: Desired follower positions for this cycle
        last_trader_positions: Trader book from the previous cycle, None
            before the first cycle completed
        current_trader_positions: Trader book of this cycle
        change_threshold_percent: Trader size change that triggers a resize

    Returns:
        PositionDiff with disjoint open and close lists
    """
    threshold = to_decimal(change_threshold_percent) / HUNDRED
    actual_by_key = {p.key: p for p in actual}
    target_by_key = {t.key: t for t in target}
    current_sizes = _size_by_key(current_trader_positions)
    last_sizes = (
        _size_by_key(last_trader_positions) if last_trader_positions is not None else None
    )

    result = PositionDiff()

    for key, target_position in target_by_key.items():
        if key not in actual_by_key:
            result.to_open.append(target_position)

    for key, actual_position in actual_by_key.items():
        symbol, side = key
        target_position = target_by_key.get(key)

        if target_position is None:
            if key in current_sizes:
                logger.debug(f"Keeping {symbol} {side.value}: trader still holds it")
                continue
            result.to_close.append(actual_position)
            continue

        if last_sizes is None:
            continue

        last_size = last_sizes.get(key)
        current_size = current_sizes.get(key)
        if last_size is None or current_size is None:
            continue

        ratio = size_change_ratio(last_size, current_size)
        if ratio > threshold:
            logger.info(
                f"Trader changed {symbol} {side.value} by {ratio * HUNDRED:.1f}% "
                f"({last_size} -> {current_size}), resizing"
            )
            result.to_close.append(actual_position)
            result.to_open.append(target_position)

    return result


def _fmt(value: Decimal) -> str:
    return format(value.normalize(), "f")


def format_actions(position_diff: PositionDiff) -> List[str]:
    """
    Human-readable summary of a diff, closes first.

    Example:
        >>> format_actions(PositionDiff(to_close=[btc_long]))
        ['CLOSE BTC long 0.1']
    """
    if position_diff.is_empty:
        return ["No actions needed - positions in sync"]

    lines = []
    for position in position_diff.to_close:
        lines.append(f"CLOSE {position.symbol} {position.side.value} {_fmt(position.size)}")
    for t in position_diff.to_open:
        lines.append(
            f"OPEN {t.symbol} {t.side.value} {_fmt(t.size)} "
            f"@ {_fmt(t.entry_price)} ({_fmt(t.leverage)}x, "
            f"margin {t.margin:.2f})"
        )
    return lines
