"""Configuration models."""

from .app import SUPPORTED_PLATFORMS, AppConfig, FollowerConfig, TraderConfig
from .base import BaseConfig
from .sync import SyncConfig

__all__ = [
    "AppConfig",
    "BaseConfig",
    "FollowerConfig",
    "SUPPORTED_PLATFORMS",
    "SyncConfig",
    "TraderConfig",
]
