"""Logging for table scans.

Records emitted through a ScanLogger carry the scan they belong to: the
source, table, dialect and scan mode once the source is configured, plus the
window bounds and planned watermark for records about a single window.
JSONFormatter lifts those fields to the top level of each line so records
can be grouped by table and window without parsing messages.

Applications configure handlers once, usually from EngineSettings:

    from windowing.lib.logging import setup_logging_from_settings
    setup_logging_from_settings()  # WINDOWING_LOG_LEVEL, WINDOWING_LOG_FORMAT, ...
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

if TYPE_CHECKING:
    from windowing.lib.config import EngineSettings
    from windowing.lib.watermark import TimeRange, Watermark

__all__ = [
    "JSONFormatter",
    "SCAN_FIELDS",
    "ScanLogger",
    "setup_logging",
    "setup_logging_from_settings",
]

# Context fields promoted to the top level of JSON records
SCAN_FIELDS = ("source", "table", "dialect", "mode", "window_start", "window_end", "watermark")

_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Scan context fields become top-level keys, metric records get a
    ``metric`` object, and anything else passed through ``extra=`` is kept
    under ``extra``.

    Example output:
        {"timestamp": "2024-01-01T00:05:00.120Z", "level": "INFO",
         "logger": "windowing.lib.source", "message": "METRIC rows_read=42",
         "table": "public.orders", "window_start": "2024-01-01T00:04:00+00:00",
         "metric": {"name": "rows_read", "value": 42, "unit": "rows"}}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        data: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        for name in SCAN_FIELDS:
            if name in extra:
                data[name] = extra.pop(name)

        if "metric_name" in extra:
            metric = {"name": extra.pop("metric_name"), "value": extra.pop("metric_value", None)}
            unit = extra.pop("metric_unit", None)
            if unit:
                metric["unit"] = unit
            data["metric"] = metric

        if extra:
            data["extra"] = extra
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class ScanLogger:
    """Logger bound to the context of one scan.

    Example:
        log = ScanLogger("windowing.lib.source", source="orders")
        log.set_context(table="public.orders", mode="time_only")
        window_log = log.for_window(time_range, watermark)
        window_log.metric("rows_read", 120, unit="rows")
    """

    def __init__(self, name: str, **context: Any) -> None:
        self._logger = logging.getLogger(name)
        self.context: Dict[str, Any] = dict(context)

    @property
    def name(self) -> str:
        return self._logger.name

    def set_context(self, **context: Any) -> None:
        self.context.update(context)

    def bind(self, **context: Any) -> "ScanLogger":
        """Child logger with extra context; this logger is left unchanged."""
        return ScanLogger(self.name, **{**self.context, **context})

    def for_window(self, time_range: "TimeRange", watermark: "Watermark") -> "ScanLogger":
        return self.bind(
            window_start=time_range.start.isoformat(),
            window_end=time_range.end.isoformat(),
            watermark=str(watermark),
        )

    def log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        extra = {**self.context, **kwargs.pop("extra", {})}
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def metric(self, name: str, value: Any, unit: Optional[str] = None, **tags: Any) -> None:
        """Log a measured value, e.g. ``rows_read`` once a window is read."""
        extra: Dict[str, Any] = {"metric_name": name, "metric_value": value, **tags}
        if unit:
            extra["metric_unit"] = unit
        self.log(logging.INFO, "METRIC %s=%s", name, value, extra=extra)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Install console (and optional file) handlers on the root logger.

    Existing root handlers are replaced. SQLAlchemy's engine and pool
    loggers are kept at WARNING, as they echo every statement at INFO.
    """
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(_CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_logging_from_settings(settings: Optional["EngineSettings"] = None) -> None:
    """Configure logging from ``log_level``, ``log_format`` and ``log_file``."""
    if settings is None:
        from windowing.lib.config import EngineSettings

        settings = EngineSettings()
    setup_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        log_file=settings.log_file,
    )
