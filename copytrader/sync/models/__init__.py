"""Sync data models."""

from .position import (
    Attribution,
    Position,
    PositionKey,
    PositionSide,
    ResolvedPosition,
    TargetPosition,
    normalize_symbol,
    to_decimal,
)
from .records import (
    ActionRecord,
    ActionType,
    CycleResult,
    ExecutionResult,
    FetchResult,
)
from .state import (
    VALID_STATE_TRANSITIONS,
    AllocationStrategy,
    ConflictStrategy,
    SyncSessionState,
    SyncState,
    SyncStats,
)
from .trader import AccountData, TraderPerformance, TraderPositions, TraderRecord

__all__ = [
    # Positions
    "Attribution",
    "Position",
    "PositionKey",
    "PositionSide",
    "ResolvedPosition",
    "TargetPosition",
    "normalize_symbol",
    "to_decimal",
    # Traders
    "AccountData",
    "TraderPerformance",
    "TraderPositions",
    "TraderRecord",
    # State
    "AllocationStrategy",
    "ConflictStrategy",
    "SyncSessionState",
    "SyncState",
    "SyncStats",
    "VALID_STATE_TRANSITIONS",
    # Records
    "ActionRecord",
    "ActionType",
    "CycleResult",
    "ExecutionResult",
    "FetchResult",
]
