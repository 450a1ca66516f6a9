"""Structured exception hierarchy for table windowing.

Provides specific exception types for the failure modes of an incremental
table scan, with rich context for debugging and troubleshooting.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from windowing.lib.validate import ValidationIssue

__all__ = [
    "WindowingError",
    "ConfigurationError",
    "TransientIOError",
    "BoundaryViolationError",
]


class WindowingError(Exception):
    """Base exception for all windowing errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.table = table
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if table:
            parts.insert(0, f"[{table}]")

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "table": self.table,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(WindowingError):
    """Error in source configuration.

    Raised when the table, its columns or the connection properties cannot
    support an incremental scan.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        issues: Optional[List["ValidationIssue"]] = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value
        self.issues = list(issues or [])

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if self.issues:
            details["issue_count"] = len(self.issues)
            issue_lines = "\n".join(f"  - {issue}" for issue in self.issues)
            message = f"{message}\n\nIssues found:\n{issue_lines}"

        super().__init__(message, details=details, **kwargs)


class TransientIOError(WindowingError):
    """A database round trip failed.

    Not retried here. The caller owns the retry policy; any cursor or
    connection involved has already been released when this is raised.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.operation = operation
        self.cause = cause

        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Check that the database is reachable and retry the scan. "
                "Progress is only recorded for windows that completed."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class BoundaryViolationError(WindowingError, RuntimeError):
    """A row cannot be placed in any window.

    Raised when every configured timestamp column of a row is NULL. The scan
    is aborted instead of skipping the row.
    """

    def __init__(
        self,
        message: str,
        *,
        columns: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.columns = list(columns or [])

        details = kwargs.pop("details", {})
        if self.columns:
            details["timestamp_columns"] = ", ".join(self.columns)

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Make the timestamp columns NOT NULL or add a fallback column "
                "to the timestamp column list."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)
