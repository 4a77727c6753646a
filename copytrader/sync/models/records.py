"""
Sync Record Models.

Results exchanged with adapters and the records kept for each cycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .position import Position
from .trader import AccountData


class ActionType(str, Enum):
    """Kind of follower action taken during a cycle."""
    OPEN = "open"
    CLOSE = "close"


@dataclass
class FetchResult:
    """Positions and account summary returned by a position source."""

    positions: List[Position] = field(default_factory=list)
    account_data: Optional[AccountData] = None


@dataclass
class ExecutionResult:
    """
    Outcome of one open/close request.

    Failures are reported here rather than raised.
    """

    success: bool
    tx_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, tx_id: Optional[str] = None) -> "ExecutionResult":
        return cls(success=True, tx_id=tx_id)

    @classmethod
    def failed(cls, error: str) -> "ExecutionResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "tx_id": self.tx_id, "error": self.error}


@dataclass
class ActionRecord:
    """
    Activity log entry for one executed action.

    Attributes:
        action: Open or close
        symbol: Position symbol
        side: Position side value
        size: Size requested
        success: Whether the adapter reported success
        tx_id: Adapter transaction id, when successful
        error: Adapter error message, when failed
        timestamp: When the action completed
    """

    action: ActionType
    symbol: str
    side: str
    size: Decimal
    success: bool
    tx_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "symbol": self.symbol,
            "side": self.side,
            "size": str(self.size),
            "success": self.success,
            "tx_id": self.tx_id,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CycleResult:
    """Summary of a single sync cycle."""

    skipped: bool = False
    discarded: bool = False
    opened: int = 0
    closed: int = 0
    failed: int = 0
    deferred: int = 0
    fetch_errors: List[str] = field(default_factory=list)
    actions: List[ActionRecord] = field(default_factory=list)
    scaling_factor: Decimal = Decimal("0")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.fetch_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "discarded": self.discarded,
            "opened": self.opened,
            "closed": self.closed,
            "failed": self.failed,
            "deferred": self.deferred,
            "fetch_errors": list(self.fetch_errors),
            "actions": [a.to_dict() for a in self.actions],
            "scaling_factor": str(self.scaling_factor),
            "timestamp": self.timestamp.isoformat(),
        }
