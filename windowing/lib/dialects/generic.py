"""Fallback dialect for databases without a dedicated entry."""

from __future__ import annotations

from windowing.lib.dialects.base import Dialect

__all__ = ["DEFAULT_DIALECT"]

DEFAULT_DIALECT = Dialect(name="default")
