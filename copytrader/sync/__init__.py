"""
Position synchronization.

Models and pure computations are re-exported here. The roster and the
sync controller live in ``copytrader.sync.roster`` and
``copytrader.sync.controller``.
"""

from .core import (
    ConflictResolver,
    PositionDiff,
    TargetCalculation,
    compute_allocations,
    compute_scaled_targets,
    compute_targets,
    diff,
    format_actions,
    resolve_conflicts,
    scale_trader_books,
)
from .models import (
    AllocationStrategy,
    ConflictStrategy,
    Position,
    PositionSide,
    ResolvedPosition,
    SyncSessionState,
    SyncState,
    TargetPosition,
    TraderPositions,
    TraderRecord,
    normalize_symbol,
)

__all__ = [
    "AllocationStrategy",
    "ConflictResolver",
    "ConflictStrategy",
    "Position",
    "PositionDiff",
    "PositionSide",
    "ResolvedPosition",
    "SyncSessionState",
    "SyncState",
    "TargetCalculation",
    "TargetPosition",
    "TraderPositions",
    "TraderRecord",
    "compute_allocations",
    "compute_scaled_targets",
    "compute_targets",
    "diff",
    "format_actions",
    "normalize_symbol",
    "resolve_conflicts",
    "scale_trader_books",
]
