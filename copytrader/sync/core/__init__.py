"""Pure sync computations: allocation, conflict resolution, targets, diff."""

from .allocator import (
    ALLOCATION_WEIGHTS,
    allocations_valid,
    compute_allocations,
    get_allocated_capital,
    parse_allocation_strategy,
)
from .conflict_resolver import (
    CONFLICT_STRATEGIES,
    ConflictRecord,
    ConflictResolver,
    parse_conflict_strategy,
    resolve_conflicts,
)
from .diff_engine import PositionDiff, diff, format_actions, size_change_ratio
from .target_calculator import (
    SkippedTarget,
    TargetCalculation,
    TraderScaling,
    calculate_scaling_factor,
    compute_scaled_targets,
    compute_targets,
    scale_trader_books,
)

__all__ = [
    # Allocation
    "ALLOCATION_WEIGHTS",
    "allocations_valid",
    "compute_allocations",
    "get_allocated_capital",
    "parse_allocation_strategy",
    # Conflicts
    "CONFLICT_STRATEGIES",
    "ConflictRecord",
    "ConflictResolver",
    "parse_conflict_strategy",
    "resolve_conflicts",
    # Targets
    "SkippedTarget",
    "TargetCalculation",
    "TraderScaling",
    "calculate_scaling_factor",
    "compute_scaled_targets",
    "compute_targets",
    "scale_trader_books",
    # Diff
    "PositionDiff",
    "diff",
    "format_actions",
    "size_change_ratio",
]
