"""
Sync Configuration Model.

Tunables for target scaling, diff thresholds and the polling loop.
"""

from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator

from copytrader.core import get_logger
from copytrader.sync.models.state import AllocationStrategy, ConflictStrategy

from .base import BaseConfig

logger = get_logger(__name__)


class SyncConfig(BaseConfig):
    """
    Position synchronization configuration.

    Example:
        >>> config = SyncConfig(
        ...     safety_buffer_percent=Decimal("80"),
        ...     min_position_value=Decimal("20"),
        ...     conflict_strategy="largest",
        ... )
    """

    # Target scaling
    safety_buffer_percent: Decimal = Field(
        default=Decimal("100"),
        gt=Decimal("0"),
        le=Decimal("100"),
        description="Percentage of allocated capital usable as margin",
    )
    max_scaling_factor: Decimal = Field(
        default=Decimal("1.0"),
        gt=Decimal("0"),
        le=Decimal("1.0"),
        description="Upper clamp on the margin scaling factor (never scale up)",
    )
    min_position_value: Decimal = Field(
        default=Decimal("20"),
        ge=Decimal("0"),
        description="Minimum target margin in USD; smaller targets are skipped",
    )

    # Diff
    size_change_tolerance_percent: Decimal = Field(
        default=Decimal("20"),
        ge=Decimal("0"),
        le=Decimal("1000"),
        description="Trader size change (%) that triggers closing and reopening a copy",
    )

    # Loop
    poll_interval_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=3600.0,
        description="Seconds between sync cycles",
    )
    trade_check_enabled: bool = Field(
        default=True,
        description="Skip diff/execute when no trader traded since the last cycle",
    )

    # Multi-trader
    conflict_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.COMBINE,
        description="How overlapping trader positions are merged",
    )
    allocation_strategy: AllocationStrategy = Field(
        default=AllocationStrategy.EQUAL,
        description="How follower capital is split across traders",
    )
    max_traders: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum number of followed traders",
    )

    @field_validator("conflict_strategy", mode="before")
    @classmethod
    def default_unknown_conflict_strategy(cls, v: Any) -> Any:
        """Fall back to combine for unrecognized conflict strategies."""
        if isinstance(v, ConflictStrategy):
            return v
        value = str(v).strip().lower()
        if value not in {s.value for s in ConflictStrategy}:
            logger.warning(f"Unknown conflict strategy {v!r}, using combine")
            return ConflictStrategy.COMBINE
        return value

    @field_validator("allocation_strategy", mode="before")
    @classmethod
    def normalize_allocation_strategy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def change_threshold_ratio(self) -> Decimal:
        """Tolerance as a fraction (20% -> 0.2)."""
        return self.size_change_tolerance_percent / Decimal("100")
