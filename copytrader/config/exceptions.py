"""
Configuration Exceptions.

Errors raised while loading configuration files. All derive from the core
``ConfigError`` so callers can catch configuration problems in one place.
"""

from copytrader.core.exceptions import ConfigError


class ConfigFileNotFoundError(ConfigError):
    """Raised when a configuration file is not found."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Configuration file not found: {path}", code="CONFIG_NOT_FOUND")


class ConfigParseError(ConfigError):
    """Raised when a configuration file cannot be parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Failed to parse configuration file '{path}': {reason}",
            code="CONFIG_PARSE",
        )


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        message = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(message, code="CONFIG_INVALID")
