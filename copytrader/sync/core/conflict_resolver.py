"""
Conflict Resolver.

Merges several traders' positions into one follower book:
- Groups positions by normalized symbol and side
- Weights every contribution by the trader's allocation, or by its capital
  scaling factor when the book was sized beforehand
- Applies the configured strategy when two or more traders hold the same
  symbol/side (combine, largest, first)
- Records conflicts for status reporting
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from copytrader.core import get_logger
from copytrader.core.exceptions import UnknownStrategyError

from ..models.position import (
    Attribution,
    Position,
    PositionKey,
    ResolvedPosition,
    normalize_symbol,
)
from ..models.state import ConflictStrategy
from ..models.trader import TraderPositions

logger = get_logger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")


@dataclass
class Contribution:
    """One trader's position inside a symbol/side group."""

    trader_address: str
    allocation_percent: Decimal
    position: Position
    order: int
    scaling_factor: Optional[Decimal] = None

    @property
    def weight(self) -> Decimal:
        """Capital scaling factor when known, otherwise the allocation share."""
        if self.scaling_factor is not None:
            return self.scaling_factor
        return self.allocation_percent / HUNDRED

    @property
    def weighted_size(self) -> Decimal:
        return self.position.size * self.weight

    @property
    def weighted_margin(self) -> Decimal:
        return self.position.margin * self.weight

    @property
    def weighted_notional(self) -> Decimal:
        return self.position.notional_value * self.allocation_percent


@dataclass
class ConflictRecord:
    """Record of a symbol/side held by more than one trader."""

    symbol: str
    side: str
    strategy: ConflictStrategy
    traders: List[str]
    winner: Optional[str]
    dropped: List[str] = field(default_factory=list)
    resolved_size: Decimal = ZERO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "side": self.side,
            "strategy": self.strategy.value,
            "traders": list(self.traders),
            "winner": self.winner,
            "dropped": list(self.dropped),
            "resolved_size": str(self.resolved_size),
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Strategy functions
# =============================================================================


def _single(contribution: Contribution) -> ResolvedPosition:
    """Build a resolved position attributed fully to one contribution."""
    position = contribution.position
    size = contribution.weighted_size
    return ResolvedPosition(
        symbol=position.symbol,
        side=position.side,
        size=size,
        entry_price=position.entry_price,
        leverage=position.leverage,
        margin=contribution.weighted_margin,
        attribution=[
            Attribution(
                trader_address=contribution.trader_address,
                contribution_size=size,
                percentage=HUNDRED,
            )
        ],
        stop_loss=position.stop_loss,
        take_profit=position.take_profit,
        opened_at=position.opened_at,
    )


def _combine(group: Sequence[Contribution]) -> Tuple[ResolvedPosition, List[Contribution]]:
    # Price, leverage and triggers follow the first contributor. Margin is the
    # sum of weighted margins at each contributor's own price and leverage,
    # so margin * leverage / entry_price need not equal size
    first = group[0].position
    total_size = sum((c.weighted_size for c in group), ZERO)
    total_margin = sum((c.weighted_margin for c in group), ZERO)

    attribution = []
    for c in group:
        share = c.weighted_size / total_size * HUNDRED if total_size > 0 else ZERO
        attribution.append(
            Attribution(
                trader_address=c.trader_address,
                contribution_size=c.weighted_size,
                percentage=share,
            )
        )

    resolved = ResolvedPosition(
        symbol=first.symbol,
        side=first.side,
        size=total_size,
        entry_price=first.entry_price,
        leverage=first.leverage,
        margin=total_margin,
        attribution=attribution,
        stop_loss=first.stop_loss,
        take_profit=first.take_profit,
        opened_at=first.opened_at,
    )
    return resolved, []


def _largest(group: Sequence[Contribution]) -> Tuple[ResolvedPosition, List[Contribution]]:
    # max() keeps the first of equal scores, i.e. configuration order
    winner = max(group, key=lambda c: c.weighted_notional)
    dropped = [c for c in group if c is not winner]
    return _single(winner), dropped


def _first(group: Sequence[Contribution]) -> Tuple[ResolvedPosition, List[Contribution]]:
    def sort_key(c: Contribution) -> Tuple[int, float, int]:
        opened = c.position.opened_at
        if opened is None:
            return (1, 0.0, c.order)
        return (0, opened.timestamp(), c.order)

    winner = min(group, key=sort_key)
    dropped = [c for c in group if c is not winner]
    return _single(winner), dropped


StrategyFunction = Callable[
    [Sequence[Contribution]], Tuple[ResolvedPosition, List[Contribution]]
]

CONFLICT_STRATEGIES: Dict[ConflictStrategy, StrategyFunction] = {
    ConflictStrategy.COMBINE: _combine,
    ConflictStrategy.LARGEST: _largest,
    ConflictStrategy.FIRST: _first,
}


def parse_conflict_strategy(
    value: ConflictStrategy | str,
    strict: bool = True,
) -> ConflictStrategy:
    """
    Parse a conflict strategy name.

    Args:
        value: Strategy enum or name
        strict: Raise on unknown names instead of falling back to combine

    Raises:
        UnknownStrategyError: If strict and the name is not recognized
    """
    if isinstance(value, ConflictStrategy):
        return value
    try:
        return ConflictStrategy(str(value).strip().lower())
    except ValueError:
        if strict:
            valid = ", ".join(s.value for s in ConflictStrategy)
            raise UnknownStrategyError(
                f"Unknown conflict strategy: {value!r} (expected one of: {valid})",
                code="CONFLICT_STRATEGY",
            ) from None
        logger.warning(f"Unknown conflict strategy {value!r}, using combine")
        return ConflictStrategy.COMBINE


def group_positions(
    per_trader_positions: Sequence[TraderPositions],
) -> Dict[PositionKey, List[Contribution]]:
    """Group contributions by symbol/side, in first-seen order."""
    groups: Dict[PositionKey, List[Contribution]] = {}
    for order, trader in enumerate(per_trader_positions):
        for position in trader.positions:
            groups.setdefault(position.key, []).append(
                Contribution(
                    trader_address=trader.trader_address,
                    allocation_percent=trader.allocation_percent,
                    position=position,
                    order=order,
                    scaling_factor=trader.scaling_factor,
                )
            )
    return groups


def _resolve(
    per_trader_positions: Sequence[TraderPositions],
    strategy: ConflictStrategy | str,
) -> Tuple[List[ResolvedPosition], List[ConflictRecord]]:
    strategy = parse_conflict_strategy(strategy, strict=False)
    strategy_fn = CONFLICT_STRATEGIES[strategy]

    resolved: List[ResolvedPosition] = []
    conflicts: List[ConflictRecord] = []

    for (symbol, side), group in group_positions(per_trader_positions).items():
        if len(group) == 1:
            result = _single(group[0])
        else:
            result, dropped = strategy_fn(group)
            winner = None if strategy == ConflictStrategy.COMBINE else result.traders[0]
            conflicts.append(
                ConflictRecord(
                    symbol=symbol,
                    side=side.value,
                    strategy=strategy,
                    traders=[c.trader_address for c in group],
                    winner=winner,
                    dropped=[c.trader_address for c in dropped],
                    resolved_size=result.size,
                )
            )
            for c in dropped:
                logger.info(
                    f"Skipping {symbol} {side.value} from {c.trader_address} "
                    f"({strategy.value} conflict, kept {winner})"
                )

        if result.size <= 0:
            logger.debug(f"Dropping {symbol} {side.value}: zero weighted size")
            continue
        resolved.append(result)

    return resolved, conflicts


def resolve_conflicts(
    per_trader_positions: Sequence[TraderPositions],
    strategy: ConflictStrategy | str = ConflictStrategy.COMBINE,
) -> List[ResolvedPosition]:
    """
    Merge per-trader positions into one allocation-weighted book.

    Args:
        per_trader_positions: Positions per trader, in configuration order
        strategy: Conflict strategy; unknown names fall back to combine

    Returns:
        Resolved positions, one per symbol/side

    Example:
        >>> resolved = resolve_conflicts(
        ...     [TraderPositions("0xa", 50, [btc_long_0_10]),
        ...      TraderPositions("0xb", 50, [btc_long_0_15])],
        ...     ConflictStrategy.COMBINE,
        ... )
        >>> resolved[0].size
        Decimal('0.125')
    """
    resolved, _ = _resolve(per_trader_positions, strategy)
    return resolved


class ConflictResolver:
    """
    Stateful wrapper around ``resolve_conflicts`` that keeps conflict history.

    Example:
        >>> resolver = ConflictResolver(ConflictStrategy.LARGEST)
        >>> book = resolver.resolve(per_trader_positions)
        >>> resolver.get_conflict_history(limit=10)
    """

    def __init__(
        self,
        strategy: ConflictStrategy | str = ConflictStrategy.COMBINE,
        max_history: int = 500,
    ):
        self._strategy = parse_conflict_strategy(strategy, strict=False)
        self._conflicts: List[ConflictRecord] = []
        self._max_conflicts = max_history
        self._stats = {
            "resolutions": 0,
            "groups": 0,
            "conflicts": 0,
            "skipped": 0,
        }

    @property
    def strategy(self) -> ConflictStrategy:
        return self._strategy

    def set_strategy(self, strategy: ConflictStrategy | str) -> None:
        """
        Change the conflict strategy.

        Raises:
            UnknownStrategyError: If the strategy is not recognized
        """
        self._strategy = parse_conflict_strategy(strategy, strict=True)
        logger.info(f"Conflict strategy changed to: {self._strategy.value}")

    def resolve(self, per_trader_positions: Sequence[TraderPositions]) -> List[ResolvedPosition]:
        """Resolve with the current strategy, recording any conflicts."""
        resolved, conflicts = _resolve(per_trader_positions, self._strategy)

        self._stats["resolutions"] += 1
        self._stats["groups"] += len(resolved)
        self._stats["conflicts"] += len(conflicts)
        self._stats["skipped"] += sum(len(c.dropped) for c in conflicts)

        self._conflicts.extend(conflicts)
        if len(self._conflicts) > self._max_conflicts:
            self._conflicts = self._conflicts[-self._max_conflicts:]

        return resolved

    def get_conflict_history(
        self,
        symbol: Optional[str] = None,
        limit: int = 100,
    ) -> List[ConflictRecord]:
        """Get recorded conflicts, newest last."""
        conflicts = self._conflicts
        if symbol:
            conflicts = [c for c in conflicts if c.symbol == normalize_symbol(symbol)]
        return conflicts[-limit:]

    def get_stats(self) -> Dict[str, int]:
        return self._stats.copy()

    def get_status(self) -> Dict[str, Any]:
        """Get resolver status."""
        return {
            "strategy": self._strategy.value,
            "stats": self._stats.copy(),
            "recent_conflicts": [c.to_dict() for c in self._conflicts[-10:]],
        }
