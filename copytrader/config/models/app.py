"""
Application Configuration Model.

Combines the sync settings with the followed traders and the follower
account into a single configuration object.
"""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator, model_validator

from .base import BaseConfig
from .sync import SyncConfig

SUPPORTED_PLATFORMS = {"hyperliquid"}


class TraderConfig(BaseConfig):
    """A trader to follow."""

    address: str = Field(min_length=1, description="Trader wallet address")
    platform: str = Field(default="hyperliquid", description="Venue the trader trades on")
    name: Optional[str] = Field(default=None, description="Display name")
    custom_weight: Optional[Decimal] = Field(
        default=None,
        ge=Decimal("0"),
        description="Weight for the custom allocation strategy",
    )
    active: bool = Field(default=True, description="Start paused when false")

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SUPPORTED_PLATFORMS:
            raise ValueError(
                f"Unsupported platform '{v}' (expected one of: {', '.join(sorted(SUPPORTED_PLATFORMS))})"
            )
        return v


class FollowerConfig(BaseConfig):
    """
    The follower account positions are copied into.

    Only the paper account executes orders; ``paper_balance`` is its
    starting equity.
    """

    address: str = Field(default="paper", description="Follower wallet address")
    platform: str = Field(default="paper", description="Follower venue")
    paper_balance: Decimal = Field(
        default=Decimal("1000"),
        gt=Decimal("0"),
        description="Starting balance of the paper follower account (USD)",
    )

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str) -> str:
        v = v.strip().lower()
        if v != "paper":
            raise ValueError("Only the paper follower account can execute orders")
        return v


class AppConfig(BaseConfig):
    """
    Main application configuration.

    Example:
        >>> config = AppConfig(
        ...     sync=SyncConfig(poll_interval_seconds=10),
        ...     traders=[TraderConfig(address="0xabc...")],
        ... )

        >>> # Load from file
        >>> config = AppConfig.from_yaml("config/config.yaml")
    """

    app_name: str = Field(default="Copy Trader", description="Application name")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    sync: SyncConfig = Field(default_factory=SyncConfig, description="Sync settings")
    traders: list[TraderConfig] = Field(default_factory=list, description="Followed traders")
    follower: FollowerConfig = Field(
        default_factory=FollowerConfig,
        description="Follower account",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate and normalize environment."""
        v = v.lower().strip()
        valid_envs = {"development", "staging", "production", "dev", "prod", "test"}
        if v not in valid_envs:
            v = "development"
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        v = v.upper().strip()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            v = "INFO"
        return v

    @model_validator(mode="after")
    def validate_traders(self) -> "AppConfig":
        """Reject duplicate addresses and rosters above max_traders."""
        addresses = [t.address for t in self.traders]
        duplicates = sorted({a for a in addresses if addresses.count(a) > 1})
        if duplicates:
            raise ValueError(f"Duplicate trader addresses: {', '.join(duplicates)}")
        if len(self.traders) > self.sync.max_traders:
            raise ValueError(
                f"{len(self.traders)} traders configured, max_traders is {self.sync.max_traders}"
            )
        return self

    @property
    def active_traders(self) -> list[TraderConfig]:
        return [t for t in self.traders if t.active]

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        """
        Load configuration from YAML file without env overlays.

        Use ``ConfigLoader`` for .env loading and environment overrides.
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        return cls(**data)

    def summary(self) -> list[str]:
        """Human-readable configuration summary."""
        lines = [
            f"App:               {self.app_name} ({self.environment})",
            f"Follower:          {self.follower.address} ({self.follower.platform}, "
            f"balance {self.follower.paper_balance})",
            f"Poll interval:     {self.sync.poll_interval_seconds}s",
            f"Allocation:        {self.sync.allocation_strategy.value}",
            f"Conflicts:         {self.sync.conflict_strategy.value}",
            f"Safety buffer:     {self.sync.safety_buffer_percent}%",
            f"Min position:      {self.sync.min_position_value} USD",
            f"Change threshold:  {self.sync.size_change_tolerance_percent}%",
            f"Traders:           {len(self.traders)} / {self.sync.max_traders}",
        ]
        for trader in self.traders:
            state = "active" if trader.active else "paused"
            label = trader.name or trader.address
            lines.append(f"  - {label} [{trader.platform}, {state}]")
        return lines
