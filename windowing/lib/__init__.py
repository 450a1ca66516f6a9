"""Windowing library modules.

This package contains the building blocks of incremental table scans:
watermarks, planning, vendor dialects, table metadata and the bounded
cursor shared by the windows of one scan.
"""

from windowing.lib.catalog import (
    ColumnInfo,
    SqlTypeCategory,
    TableMetadata,
    load_table_metadata,
    parse_column_list,
    resolve_columns,
)
from windowing.lib.config import (
    EngineSettings,
    SourceConfig,
    load_source_config,
    parse_source_config,
)
from windowing.lib.connections import (
    dispose_all_engines,
    dispose_engine,
    get_engine,
    open_connection,
    to_sqlalchemy_url,
    url_key,
)
from windowing.lib.cursor import BoundedCursor, CursorState, FetchedRow, WindowReader
from windowing.lib.dialects import (
    DEFAULT_DIALECT,
    Dialect,
    LimitStyle,
    Query,
    dialect_for_url,
    normalize_url_prefix,
    register_dialect,
    registered_dialects,
)
from windowing.lib.env import expand_env_vars, expand_options, load_env_file, unresolved_references
from windowing.lib.errors import (
    BoundaryViolationError,
    ConfigurationError,
    TransientIOError,
    WindowingError,
)
from windowing.lib.logging import JSONFormatter, ScanLogger, setup_logging, setup_logging_from_settings
from windowing.lib.planner import PlannedWindow, ScanMode, TaskPlanner, plan_tasks
from windowing.lib.resilience import is_retryable_db_error, with_retry
from windowing.lib.source import (
    LoadedData,
    NoDataLoader,
    TableSource,
    WindowLoader,
    validate_source,
)
from windowing.lib.state import (
    clear_all_watermarks,
    delete_watermark,
    get_watermark,
    get_watermark_age,
    list_watermarks,
    save_watermark,
)
from windowing.lib.validate import (
    ValidationIssue,
    ValidationSeverity,
    format_validation_report,
    validate_and_raise,
)
from windowing.lib.watermark import EPOCH, TimeRange, Watermark, reshard

__all__ = [
    # Catalog
    "ColumnInfo",
    "SqlTypeCategory",
    "TableMetadata",
    "load_table_metadata",
    "parse_column_list",
    "resolve_columns",
    # Config
    "EngineSettings",
    "SourceConfig",
    "load_source_config",
    "parse_source_config",
    # Connections
    "dispose_all_engines",
    "dispose_engine",
    "get_engine",
    "open_connection",
    "to_sqlalchemy_url",
    "url_key",
    # Cursor
    "BoundedCursor",
    "CursorState",
    "FetchedRow",
    "WindowReader",
    # Dialects
    "DEFAULT_DIALECT",
    "Dialect",
    "LimitStyle",
    "Query",
    "dialect_for_url",
    "normalize_url_prefix",
    "register_dialect",
    "registered_dialects",
    # Environment
    "expand_env_vars",
    "expand_options",
    "load_env_file",
    "unresolved_references",
    # Errors
    "BoundaryViolationError",
    "ConfigurationError",
    "TransientIOError",
    "WindowingError",
    # Logging
    "JSONFormatter",
    "ScanLogger",
    "setup_logging",
    "setup_logging_from_settings",
    # Planning
    "PlannedWindow",
    "ScanMode",
    "TaskPlanner",
    "plan_tasks",
    # Resilience
    "is_retryable_db_error",
    "with_retry",
    # Source
    "LoadedData",
    "NoDataLoader",
    "TableSource",
    "WindowLoader",
    "validate_source",
    # State
    "clear_all_watermarks",
    "delete_watermark",
    "get_watermark",
    "get_watermark_age",
    "list_watermarks",
    "save_watermark",
    # Validation
    "ValidationIssue",
    "ValidationSeverity",
    "format_validation_report",
    "validate_and_raise",
    # Watermark
    "EPOCH",
    "TimeRange",
    "Watermark",
    "reshard",
]
