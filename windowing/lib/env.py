"""Environment references in source properties.

Connection strings and credentials are usually kept out of configuration
files and written as references instead:

    connection_string: postgresql+psycopg2://${DB_HOST}:${DB_PORT:-5432}/shop
    user: $DB_USER

``${NAME}`` and ``$NAME`` are replaced with the variable's value, and
``${NAME:-fallback}`` (or ``${NAME:fallback}``) falls back when the variable
is unset or empty. A reference that cannot be resolved is kept as written so
the driver error names it; unresolved_references() lists them.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, List, Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

__all__ = ["expand_env_vars", "expand_options", "load_env_file", "unresolved_references"]

_REFERENCE = re.compile(
    r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::-?(?P<fallback>[^}]*))?\}"
    r"|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)"
)


def load_env_file(path: Optional[Union[str, Path]] = None, *, override: bool = False) -> bool:
    """Load a .env file into the environment.

    Args:
        path: File to load; searched upward from the working directory when None
        override: Replace variables already set

    Returns:
        True if a file was found and loaded
    """
    loaded = load_dotenv(dotenv_path=path, override=override)
    if loaded:
        logger.debug("Loaded environment from %s", path or ".env")
    return loaded


def _resolve(match: re.Match) -> Optional[str]:
    name = match.group("braced") or match.group("bare")
    value = os.environ.get(name)
    if value:
        return value
    if match.group("fallback") is not None:
        return match.group("fallback")
    return value


def unresolved_references(value: str) -> List[str]:
    """Names referenced in ``value`` that have no value and no fallback."""
    return [
        match.group("braced") or match.group("bare")
        for match in _REFERENCE.finditer(value)
        if _resolve(match) is None
    ]


def expand_env_vars(value: str, *, strict: bool = False) -> str:
    """Replace environment references in a string.

    Raises:
        KeyError: In strict mode, naming the first unresolved variable

    Example:
        >>> os.environ["DB_HOST"] = "localhost"
        >>> expand_env_vars("postgresql://${DB_HOST}:${DB_PORT:-5432}/orders")
        'postgresql://localhost:5432/orders'
    """

    def replace(match: re.Match) -> str:
        resolved = _resolve(match)
        if resolved is not None:
            return resolved
        if strict:
            raise KeyError(f"Environment variable not set: {match.group('braced') or match.group('bare')}")
        return match.group(0)

    return _REFERENCE.sub(replace, value)


def expand_options(options: Any, *, strict: bool = False) -> Any:
    """Expand references in every string of a property mapping.

    Mappings, lists and tuples are walked; other values are returned as is.
    """
    if isinstance(options, str):
        return expand_env_vars(options, strict=strict)
    if isinstance(options, dict):
        return {key: expand_options(value, strict=strict) for key, value in options.items()}
    if isinstance(options, (list, tuple)):
        return type(options)(expand_options(item, strict=strict) for item in options)
    return options
