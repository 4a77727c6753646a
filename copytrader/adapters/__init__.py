"""
Venue adapters.

Position sources and the follower executor, plus payload normalization.
"""

from typing import Any

from copytrader.core.exceptions import ConfigError

from .hyperliquid import HyperliquidInfoAPI
from .normalize import normalize_position, normalize_positions, normalize_response
from .paper import PaperAccount

POSITION_SOURCES = {
    "hyperliquid": HyperliquidInfoAPI,
    "paper": PaperAccount,
}


def create_position_source(platform: str, **kwargs: Any) -> Any:
    """
    Factory for position sources by platform name.

    Args:
        platform: "hyperliquid" or "paper"
        **kwargs: Passed to the adapter constructor

    Raises:
        ConfigError: If the platform is not supported
    """
    source_cls = POSITION_SOURCES.get(platform.strip().lower())
    if source_cls is None:
        raise ConfigError(
            f"Unsupported platform: {platform}",
            details={"supported": sorted(POSITION_SOURCES)},
        )
    return source_cls(**kwargs)


__all__ = [
    "HyperliquidInfoAPI",
    "PaperAccount",
    "POSITION_SOURCES",
    "create_position_source",
    "normalize_position",
    "normalize_positions",
    "normalize_response",
]
