"""
Environment variable references in configuration values.

``${VAR}`` and ``${VAR:default}`` may appear anywhere in a string. When
``convert`` is set, a value that is exactly one reference is turned into a
bool, int or float so YAML numbers and flags survive substitution.
"""

import os
import re
from typing import Any, Optional

ENV_REFERENCE = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")

TRUE_VALUES = {"true", "yes", "on"}
FALSE_VALUES = {"false", "no", "off"}


def convert_scalar(value: str) -> Any:
    """Interpret an environment string as bool, int or float where possible."""
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False

    try:
        number = float(value)
    except ValueError:
        return value

    if number.is_integer() and "." not in value and "e" not in lowered:
        return int(number)
    return number


def _lookup(match: re.Match, missing: Optional[str]) -> Optional[str]:
    name, default = match.groups()
    value = os.environ.get(name)
    if value is not None:
        return value
    return default if default is not None else missing


def expand(value: str, convert: bool = False, missing: Optional[str] = None) -> Any:
    """
    Expand references in one string.

    Args:
        value: String possibly containing ``${...}`` references
        convert: Type-convert values that are a single reference
        missing: Replacement for unset variables without default;
            None leaves the reference in place

    Example:
        >>> os.environ["POLL"] = "15"
        >>> expand("${POLL:30}", convert=True)
        15
    """
    whole = ENV_REFERENCE.fullmatch(value)
    if whole and convert:
        resolved = _lookup(whole, missing)
        return value if resolved is None else convert_scalar(resolved)

    def replace(match: re.Match) -> str:
        resolved = _lookup(match, missing)
        return match.group(0) if resolved is None else resolved

    return ENV_REFERENCE.sub(replace, value)


def expand_tree(data: Any, convert: bool = False, missing: Optional[str] = None) -> Any:
    """Expand references in every string of nested dicts and lists."""
    if isinstance(data, str):
        return expand(data, convert=convert, missing=missing)
    if isinstance(data, dict):
        return {key: expand_tree(item, convert, missing) for key, item in data.items()}
    if isinstance(data, list):
        return [expand_tree(item, convert, missing) for item in data]
    return data
