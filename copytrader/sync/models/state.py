"""
Sync State Models.

Strategy enums, the controller lifecycle state machine, and the cross-cycle
memory owned by the sync controller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .position import Position


class AllocationStrategy(str, Enum):
    """How follower capital is split across followed traders."""
    EQUAL = "equal"
    PERFORMANCE = "performance"
    SHARPE = "sharpe"
    CUSTOM = "custom"


class ConflictStrategy(str, Enum):
    """How positions from several traders on the same symbol/side are merged."""
    COMBINE = "combine"    # Sum allocation-weighted sizes
    LARGEST = "largest"    # Keep the largest allocation-weighted notional
    FIRST = "first"        # Keep the earliest opened


class SyncSessionState(str, Enum):
    """
    Sync controller lifecycle state.

    State transitions:
    IDLE -> INITIALIZING (start)
    INITIALIZING -> RUNNING (adapters connected) | IDLE (init failed)
    RUNNING -> STOPPING (stop)
    STOPPING -> IDLE (adapters released)
    """

    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPING = "stopping"


VALID_STATE_TRANSITIONS: dict[SyncSessionState, list[SyncSessionState]] = {
    SyncSessionState.IDLE: [SyncSessionState.INITIALIZING],
    SyncSessionState.INITIALIZING: [SyncSessionState.RUNNING, SyncSessionState.IDLE],
    SyncSessionState.RUNNING: [SyncSessionState.STOPPING],
    SyncSessionState.STOPPING: [SyncSessionState.IDLE],
}


@dataclass
class SyncState:
    """
    Memory carried between sync cycles.

    Attributes:
        last_trader_positions: Trader book seen on the previous cycle,
            None until the first cycle has completed
        last_trade_timestamp: Most recent trade time (epoch ms) observed
    """

    last_trader_positions: Optional[List[Position]] = None
    last_trade_timestamp: Optional[int] = None

    @property
    def has_history(self) -> bool:
        return self.last_trader_positions is not None

    def clear(self) -> None:
        self.last_trader_positions = None
        self.last_trade_timestamp = None


@dataclass
class SyncStats:
    """Counters exposed through controller status."""

    cycles_run: int = 0
    cycles_skipped: int = 0
    positions_opened: int = 0
    positions_closed: int = 0
    errors: int = 0
    last_sync_time: Optional[datetime] = None
    scaling_factor: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycles_run": self.cycles_run,
            "cycles_skipped": self.cycles_skipped,
            "positions_opened": self.positions_opened,
            "positions_closed": self.positions_closed,
            "errors": self.errors,
            "last_sync_time": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "scaling_factor": str(self.scaling_factor),
        }
