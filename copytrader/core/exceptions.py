"""
Custom exceptions for Copy Trader.

Exception hierarchy:
    CopyTraderError (base)
    ├── AdapterError
    │   ├── FetchError
    │   └── ExecutionError
    ├── DataError
    │   ├── ValidationError
    │   └── NotFoundError
    ├── ConfigError
    │   ├── DuplicateTraderError
    │   ├── TraderLimitError
    │   └── UnknownStrategyError
    ├── InitializationError
    └── InvalidStateError
"""

from typing import Any


class CopyTraderError(Exception):
    """Base exception for all copy trader errors."""

    default_message = "Copy trader error occurred"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.default_message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.append(f"[{self.code}]")
        if self.details:
            parts.append(f"Details: {self.details}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r})"
        )


# Adapter-related errors
class AdapterError(CopyTraderError):
    """Base exception for position source / executor errors."""

    default_message = "Adapter error occurred"


class FetchError(AdapterError):
    """Fetching positions or account data failed."""

    default_message = "Failed to fetch positions"

    def __init__(
        self,
        message: str | None = None,
        address: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, details)
        self.address = address

    def __str__(self) -> str:
        base = super().__str__()
        if self.address:
            return f"{base} address={self.address}"
        return base


class ExecutionError(AdapterError):
    """Opening or closing a follower position failed."""

    default_message = "Execution failed"

    def __init__(
        self,
        message: str | None = None,
        symbol: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, details)
        self.symbol = symbol

    def __str__(self) -> str:
        base = super().__str__()
        if self.symbol:
            return f"{base} symbol={self.symbol}"
        return base


# Data-related errors
class DataError(CopyTraderError):
    """Base exception for data-related errors."""

    default_message = "Data error occurred"


class ValidationError(DataError):
    """Data validation failed."""

    default_message = "Validation failed"


class NotFoundError(DataError):
    """Requested data not found."""

    default_message = "Data not found"


# Configuration errors
class ConfigError(CopyTraderError):
    """Configuration error."""

    default_message = "Configuration error"


class DuplicateTraderError(ConfigError):
    """Trader address is already followed."""

    default_message = "Trader is already followed"


class TraderLimitError(ConfigError):
    """Maximum number of followed traders reached."""

    default_message = "Maximum number of traders reached"


class UnknownStrategyError(ConfigError):
    """Allocation or conflict strategy is not recognized."""

    default_message = "Unknown strategy"


# Lifecycle errors
class InitializationError(CopyTraderError):
    """Adapters could not be connected when starting the sync loop."""

    default_message = "Initialization failed"


class InvalidStateError(CopyTraderError):
    """Requested lifecycle transition is not allowed."""

    default_message = "Invalid state transition"

    def __init__(
        self,
        current_state: str,
        target_state: str,
        message: str | None = None,
    ):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            message or f"Cannot transition from {current_state} to {target_state}",
            code="INVALID_STATE",
            details={"current": current_state, "target": target_state},
        )
