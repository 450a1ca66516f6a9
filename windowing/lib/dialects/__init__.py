"""Dialect registry.

Dialects are looked up by the vendor prefix of a connection string. The
registry is an ordered list of ``(predicate, dialect)`` pairs: the first
predicate accepting the normalized prefix wins, and the default dialect is
used when none does. New vendors are added with ``register_dialect`` without
touching existing entries.

Example:
    >>> dialect_for_url("postgresql+psycopg2://host/db").name
    'postgresql'
    >>> dialect_for_url("jdbc:sqlserver://host:1433;databaseName=sales").name
    'sqlserver'
"""

from __future__ import annotations

import logging
from typing import Callable, List, Tuple

from windowing.lib.dialects.base import Dialect, LimitStyle, Query
from windowing.lib.dialects.generic import DEFAULT_DIALECT
from windowing.lib.dialects.mysql import MYSQL
from windowing.lib.dialects.oracle import ORACLE
from windowing.lib.dialects.postgres import POSTGRES, REDSHIFT
from windowing.lib.dialects.snowflake import SNOWFLAKE
from windowing.lib.dialects.sqlite import SQLITE
from windowing.lib.dialects.sqlserver import SQLSERVER

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_DIALECT",
    "Dialect",
    "LimitStyle",
    "Query",
    "dialect_for_url",
    "normalize_url_prefix",
    "prefix_predicate",
    "register_dialect",
    "registered_dialects",
]

Predicate = Callable[[str], bool]


def normalize_url_prefix(url: str) -> str:
    """Vendor part of a connection string.

    ``jdbc:`` is dropped, as is a SQLAlchemy ``+driver`` suffix, so
    ``jdbc:postgresql://...`` and ``postgresql+psycopg2://...`` both give
    ``postgresql``.
    """
    value = (url or "").strip().lower()
    if value.startswith("jdbc:"):
        value = value[len("jdbc:"):]
    scheme = value.split(":", 1)[0]
    return scheme.split("+", 1)[0]


def prefix_predicate(*prefixes: str) -> Predicate:
    """Predicate matching normalized prefixes starting with any of ``prefixes``."""
    wanted = tuple(p.lower() for p in prefixes)

    def matches(prefix: str) -> bool:
        return prefix.startswith(wanted)

    return matches


_registry: List[Tuple[Predicate, Dialect]] = [
    (prefix_predicate("redshift"), REDSHIFT),
    (prefix_predicate("postgres"), POSTGRES),
    (prefix_predicate("mysql", "mariadb"), MYSQL),
    (prefix_predicate("oracle"), ORACLE),
    (prefix_predicate("mssql", "sqlserver"), SQLSERVER),
    (prefix_predicate("snowflake"), SNOWFLAKE),
    (prefix_predicate("sqlite"), SQLITE),
]


def register_dialect(predicate: Predicate, dialect: Dialect, *, first: bool = False) -> None:
    """Add a dialect to the registry.

    Args:
        predicate: Called with the normalized prefix
        dialect: Dialect to use when the predicate matches
        first: Check this entry before the built-in ones
    """
    entry = (predicate, dialect)
    if first:
        _registry.insert(0, entry)
    else:
        _registry.append(entry)
    logger.debug("Registered dialect %s", dialect.name)


def registered_dialects() -> List[Dialect]:
    return [dialect for _, dialect in _registry]


def dialect_for_url(url: str) -> Dialect:
    """Select the dialect for a connection string."""
    prefix = normalize_url_prefix(url)
    for predicate, dialect in _registry:
        if predicate(prefix):
            return dialect
    logger.info("No dedicated dialect for '%s', using the default", prefix)
    return DEFAULT_DIALECT
