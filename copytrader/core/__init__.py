"""
Core module for Copy Trader.

Provides logging utilities and the exception hierarchy.
"""

from .exceptions import (
    AdapterError,
    ConfigError,
    CopyTraderError,
    DataError,
    DuplicateTraderError,
    ExecutionError,
    FetchError,
    InitializationError,
    InvalidStateError,
    NotFoundError,
    TraderLimitError,
    UnknownStrategyError,
    ValidationError,
)
from .logger import get_logger, set_level, setup_logger

__all__ = [
    # Logging
    "setup_logger",
    "get_logger",
    "set_level",
    # Exceptions
    "CopyTraderError",
    "AdapterError",
    "FetchError",
    "ExecutionError",
    "DataError",
    "ValidationError",
    "NotFoundError",
    "ConfigError",
    "DuplicateTraderError",
    "TraderLimitError",
    "UnknownStrategyError",
    "InitializationError",
    "InvalidStateError",
]
