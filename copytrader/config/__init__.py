# Config module - application configuration system
from .exceptions import (
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .loader import ConfigLoader, load_config
from .models import (
    AppConfig,
    BaseConfig,
    FollowerConfig,
    SyncConfig,
    TraderConfig,
)

__all__ = [
    # Exceptions
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "ConfigValidationError",
    # Loader
    "ConfigLoader",
    "load_config",
    # Models
    "AppConfig",
    "BaseConfig",
    "FollowerConfig",
    "SyncConfig",
    "TraderConfig",
]
