"""Validation issue types and reporting helpers.

Configuration problems are collected as field-level ValidationIssues so a
caller can show all of them at once instead of failing on the first one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "ValidationIssue",
    "ValidationSeverity",
    "errors_only",
    "format_validation_report",
    "issues_from_pydantic",
    "validate_and_raise",
]


class ValidationSeverity(Enum):
    """Severity of validation issues."""

    ERROR = "error"  # Source cannot be scanned
    WARNING = "warning"  # Scan can run, but probably not as intended


@dataclass
class ValidationIssue:
    """A validation issue found in source configuration."""

    severity: ValidationSeverity
    message: str
    field: str
    suggestion: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == ValidationSeverity.ERROR

    def __str__(self) -> str:
        prefix = "ERROR" if self.is_error else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Fix: {self.suggestion}"
        return result


def errors_only(issues: List[ValidationIssue]) -> List[ValidationIssue]:
    return [i for i in issues if i.is_error]


def issues_from_pydantic(exc: PydanticValidationError) -> List[ValidationIssue]:
    """Convert pydantic errors into field-level issues."""
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "config"
        issues.append(
            ValidationIssue(
                severity=ValidationSeverity.ERROR,
                field=location,
                message=error.get("msg", "invalid value"),
            )
        )
    return issues


def validate_and_raise(issues: List[ValidationIssue], *, table: Optional[str] = None) -> None:
    """Log warnings and raise if any issue is an error.

    Raises:
        ConfigurationError: If any validation errors are found
    """
    from windowing.lib.errors import ConfigurationError

    for issue in issues:
        if not issue.is_error:
            logger.warning(str(issue))

    errors = errors_only(issues)
    if errors:
        raise ConfigurationError(
            "Source configuration validation failed",
            field=errors[0].field,
            issues=errors,
            table=table,
        )


def format_validation_report(issues: List[ValidationIssue]) -> str:
    """Format validation issues as a readable report."""
    if not issues:
        return "Configuration is valid."

    errors = errors_only(issues)
    warnings = [i for i in issues if not i.is_error]

    lines = []

    if errors:
        lines.append(f"Found {len(errors)} error(s):")
        lines.append("-" * 40)
        for error in errors:
            lines.append(str(error))
            lines.append("")

    if warnings:
        lines.append(f"Found {len(warnings)} warning(s):")
        lines.append("-" * 40)
        for warning in warnings:
            lines.append(str(warning))
            lines.append("")

    return "\n".join(lines)
