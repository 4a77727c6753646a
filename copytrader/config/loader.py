"""
Configuration Loader.

Reads ``config.yaml``, merges an optional ``config.<env>.yaml`` overlay,
expands ``${VAR}`` references (after loading the nearest ``.env``) and
validates the result into an ``AppConfig``.
"""

from copy import deepcopy
from pathlib import Path
from typing import Any, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from copytrader.core import get_logger

from .env import expand_tree
from .exceptions import (
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .models import AppConfig

logger = get_logger(__name__)


def overlay_path(path: Path, env: str) -> Path:
    """``config/config.yaml`` + ``production`` -> ``config/config.production.yaml``."""
    return path.with_name(f"{path.stem}.{env}{path.suffix}")


class ConfigLoader:
    """
    Loads and validates the application configuration.

    Example:
        >>> loader = ConfigLoader()
        >>> config = loader.load("config/config.yaml", env="production")
        >>> config.sync.poll_interval_seconds
        30.0
    """

    def __init__(self, env_file: Optional[str | Path] = None):
        """
        Initialize ConfigLoader.

        Args:
            env_file: .env file to load. Without one, the config directory,
                its parent and the working directory are searched.
        """
        self._env_file = Path(env_file) if env_file else None
        self._env_loaded: Optional[Path] = None

    @property
    def env_file_loaded(self) -> Optional[Path]:
        """The .env file that was applied, if any."""
        return self._env_loaded

    def load(self, path: str | Path, env: Optional[str] = None) -> AppConfig:
        """
        Load, merge, expand and validate.

        Raises:
            ConfigFileNotFoundError: If the base file does not exist
            ConfigParseError: If a file is not valid YAML or not a mapping
            ConfigValidationError: If the merged data fails validation
        """
        path = Path(path)
        self._load_env_file(path.parent)

        data = self.load_yaml(path)
        if env:
            overlay = overlay_path(path, env)
            if overlay.exists():
                data = self.merge_configs(data, self.load_yaml(overlay))
                logger.debug(f"Merged {env} overlay {overlay}")
            else:
                logger.debug(f"No {env} overlay at {overlay}")

        data = expand_tree(data, convert=True)

        try:
            config = AppConfig(**data)
        except PydanticValidationError as e:
            raise ConfigValidationError(self._format_errors(e)) from e

        logger.info(
            f"Loaded {path}: {len(config.active_traders)}/{len(config.traders)} traders active, "
            f"{config.sync.allocation_strategy.value} allocation, "
            f"{config.sync.conflict_strategy.value} conflicts"
        )
        return config

    def load_yaml(self, path: str | Path) -> dict[str, Any]:
        """
        Read one YAML file; an empty file is an empty mapping.

        Raises:
            ConfigFileNotFoundError: If the file does not exist
            ConfigParseError: If parsing fails or the root is not a mapping
        """
        path = Path(path)
        if not path.exists():
            raise ConfigFileNotFoundError(str(path))

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigParseError(str(path), str(e)) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigParseError(str(path), "top-level value must be a mapping")
        return data

    def merge_configs(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """
        Deep-merge ``override`` into a copy of ``base``.

        Mappings merge key by key; anything else, the ``traders`` list
        included, is replaced wholesale.
        """
        merged = deepcopy(base)
        for key, value in override.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged[key] = self.merge_configs(current, value)
            else:
                merged[key] = deepcopy(value)
        return merged

    @staticmethod
    def _format_errors(error: PydanticValidationError) -> List[str]:
        messages = []
        for item in error.errors():
            location = ".".join(str(part) for part in item["loc"]) or "config"
            messages.append(f"{location}: {item['msg']}")
        return messages

    def _load_env_file(self, config_dir: Path) -> None:
        # Only the first .env found is applied, and only once per loader
        if self._env_loaded:
            return

        candidates = [self._env_file] if self._env_file else []
        candidates += [config_dir / ".env", config_dir.parent / ".env", Path.cwd() / ".env"]

        for candidate in candidates:
            if candidate.is_file():
                load_dotenv(candidate)
                self._env_loaded = candidate
                logger.debug(f"Loaded environment from {candidate}")
                return


def load_config(
    path: str | Path,
    env: Optional[str] = None,
    env_file: Optional[str | Path] = None,
) -> AppConfig:
    """Load configuration from YAML file (see ``ConfigLoader.load``)."""
    return ConfigLoader(env_file=env_file).load(path, env=env)
