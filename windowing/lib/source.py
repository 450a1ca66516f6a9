"""Incremental table source.

TableSource is the entry point of the library. A run looks like:

    source = TableSource(config).configure()
    previous = get_watermark(source.name)
    task_info = source.get_task_info(previous, TimeRange(run_start, run_end))
    for loader in source.get_data_loaders(task_info, wanted_ranges, previous=previous):
        data = loader.load_data()
        write(data.column_names, data.rows)
        save_watermark(source.name, loader.completed_watermark())

Loaders of one round share a single cursor and must be consumed in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from windowing.lib.catalog import TableMetadata, load_table_metadata, resolve_columns
from windowing.lib.config import EngineSettings, SourceConfig, parse_source_config
from windowing.lib.connections import (
    INFO_ROLE,
    SCAN_ROLE,
    dispose_engine,
    get_engine,
    open_connection,
    to_sqlalchemy_url,
    url_key,
)
from windowing.lib.cursor import BoundedCursor, WindowReader
from windowing.lib.dialects import Dialect, dialect_for_url
from windowing.lib.dialects.base import Query
from windowing.lib.errors import ConfigurationError, TransientIOError
from windowing.lib.logging import ScanLogger
from windowing.lib.planner import PlannedWindow, ScanMode, TaskPlanner
from windowing.lib.validate import (
    ValidationIssue,
    ValidationSeverity,
    validate_and_raise,
)
from windowing.lib.watermark import EPOCH, TimeRange, Watermark, reshard, shift_seconds

logger = logging.getLogger(__name__)

__all__ = [
    "LoadedData",
    "NoDataLoader",
    "TableSource",
    "WindowLoader",
    "validate_source",
]

MAX_KEY = 2**63 - 1
DEFAULT_SAMPLE_SIZE = 100


@dataclass
class LoadedData:
    """Rows of one window, ready for serialization."""

    column_names: List[str]
    rows: Iterable[List[Any]] = field(default_factory=list)
    time_range: Optional[TimeRange] = None

    def __iter__(self) -> Iterator[List[Any]]:
        return iter(self.rows)


class NoDataLoader:
    """Loader for a window that needs no query.

    Its completed watermark is the watermark it was given.
    """

    noop = True

    def __init__(self, time_range: TimeRange, watermark: Watermark, column_names: List[str]) -> None:
        self.time_range = time_range
        self.watermark = watermark
        self.column_names = column_names

    def load_data(self) -> LoadedData:
        return LoadedData(self.column_names, [], self.time_range)

    def completed_watermark(self) -> Watermark:
        return self.watermark

    def close(self) -> None:
        pass


class WindowLoader:
    """Loader for one window of a scan.

    ``open_reader`` is called on the first load; readers over a shared
    cursor are handed in ready-made, full-load readers open their own.
    """

    noop = False

    def __init__(
        self,
        time_range: TimeRange,
        watermark: Watermark,
        open_reader: Callable[[], WindowReader],
        column_names: List[str],
        scan_logger: Optional[ScanLogger] = None,
    ) -> None:
        self.time_range = time_range
        self.watermark = watermark
        self.column_names = column_names
        self._open_reader = open_reader
        self._reader: Optional[WindowReader] = None
        self._log = (scan_logger or ScanLogger(__name__)).for_window(time_range, watermark)

    @property
    def reader(self) -> WindowReader:
        if self._reader is None:
            self._reader = self._open_reader()
        return self._reader

    def _rows(self, reader: WindowReader) -> Iterator[List[Any]]:
        yield from reader.rows()
        self._log.metric(
            "rows_read",
            reader.rows_read,
            unit="rows",
            completed_watermark=str(reader.completed_watermark()),
        )

    def load_data(self) -> LoadedData:
        return LoadedData(self.column_names, self._rows(self.reader), self.time_range)

    def completed_watermark(self) -> Watermark:
        if self._reader is None:
            return self.watermark
        return self._reader.completed_watermark()

    def close(self) -> None:
        if self._reader is not None:
            self._reader.cursor.close()


Loader = Union[NoDataLoader, WindowLoader]


class TableSource:
    """Incremental source over one table.

    Args:
        config: SourceConfig or a plain property dict
        settings: Engine settings (defaults from WINDOWING_* variables)
    """

    def __init__(
        self,
        config: Union[SourceConfig, Dict[str, Any]],
        settings: Optional[EngineSettings] = None,
    ) -> None:
        if not isinstance(config, SourceConfig):
            config = parse_source_config(config)
        self.config = config
        self.settings = settings or EngineSettings()
        self._dialect: Optional[Dialect] = None
        self._metadata: Optional[TableMetadata] = None
        self._mode: Optional[ScanMode] = None
        self._planner: Optional[TaskPlanner] = None
        self._utc_offset = 0
        self._url_key: Optional[str] = None
        self._log = ScanLogger(__name__, source=self.name)

    @property
    def name(self) -> str:
        return self.config.source_name

    # Configuration

    def _engine(self, role: str) -> Engine:
        try:
            engine = get_engine(
                self.name,
                self.config.connection_string,
                user=self.config.user,
                password=self.config.password,
                role=role,
                settings=self.settings,
            )
        except (SQLAlchemyError, ImportError) as exc:
            raise ConfigurationError(
                f"Cannot create a database engine: {exc}",
                field="connection_string",
                table=self.config.table_name,
            ) from exc
        self._url_key = url_key(
            to_sqlalchemy_url(self.config.connection_string, self.config.user, self.config.password)
        )
        return engine

    def _inspect(self) -> Tuple[Dialect, int, TableMetadata, List[ValidationIssue]]:
        dialect = dialect_for_url(self.config.connection_string)
        connection = open_connection(
            self._engine(INFO_ROLE),
            "configure",
            attempts=self.config.connect_retries,
        )
        try:
            utc_offset = dialect.utc_offset_seconds(connection)
            metadata = load_table_metadata(
                connection,
                dialect,
                self.config.table_name,
                schema=self.config.schema_pattern,
                keep_types=self.config.keep_types,
            )
        except SQLAlchemyError as exc:
            raise TransientIOError(
                "Reading table metadata failed",
                operation="configure",
                cause=exc,
                table=self.config.table_name,
            ) from exc
        finally:
            connection.close()

        metadata, issues = resolve_columns(
            metadata,
            incrementing_column=self.config.incrementing_column,
            timestamp_columns=self.config.timestamp_columns,
            full_load=self.config.full_load_interval > 0,
        )
        return dialect, utc_offset, metadata, issues

    def configure(self) -> "TableSource":
        """Connect, reflect the table and decide the scan mode.

        Raises:
            ConfigurationError: If the table or its columns cannot be scanned
            TransientIOError: If the database cannot be reached
        """
        dialect, utc_offset, metadata, issues = self._inspect()
        validate_and_raise(issues, table=metadata.full_name)

        mode = metadata.scan_mode(self.config.full_load_interval)
        self._dialect = dialect
        self._utc_offset = utc_offset
        self._metadata = metadata
        self._mode = mode
        self._planner = TaskPlanner(
            mode,
            read_delay=self.config.read_delay,
            full_load_interval=self.config.full_load_interval,
        )

        self._log.set_context(table=metadata.full_name, dialect=dialect.name, mode=mode.value)
        self._log.info(
            "Configured %s: increment=%s, timestamps=%s, utc_offset=%ss",
            metadata.full_name,
            metadata.inc_column.name if metadata.inc_column else None,
            [c.name for c in metadata.time_columns] or None,
            utc_offset,
        )
        return self

    def validate(self) -> List[ValidationIssue]:
        """Field-level problems of this source. Empty means scannable."""
        try:
            _, _, _, issues = self._inspect()
        except ConfigurationError as exc:
            if exc.issues:
                return list(exc.issues)
            return [
                ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    field=exc.field or "config",
                    message=exc.message,
                    suggestion=exc.suggestion,
                )
            ]
        except TransientIOError as exc:
            return [
                ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    field="connection_string",
                    message=f"Cannot connect to the database: {exc.cause}",
                    suggestion="Check the connection string, credentials and network access",
                )
            ]
        return issues

    def _require_configured(self) -> Tuple[Dialect, TableMetadata, ScanMode, TaskPlanner]:
        if self._dialect is None or self._metadata is None or self._mode is None or self._planner is None:
            raise ConfigurationError(
                "Source is not configured",
                table=self.config.table_name,
                suggestion="Call configure() first",
            )
        return self._dialect, self._metadata, self._mode, self._planner

    @property
    def dialect(self) -> Dialect:
        return self._require_configured()[0]

    @property
    def metadata(self) -> TableMetadata:
        return self._require_configured()[1]

    @property
    def mode(self) -> ScanMode:
        return self._require_configured()[2]

    @property
    def utc_offset(self) -> int:
        return self._utc_offset

    @property
    def column_names(self) -> List[str]:
        return self.metadata.column_names

    def start_time(self) -> Optional[datetime]:
        """Earliest time to schedule from; only set in full-load mode."""
        if self.config.full_load_interval <= 0:
            return None
        return datetime.now(timezone.utc) - timedelta(minutes=self.config.full_load_interval)

    # Task info

    def _run_info_query(self, query: Query) -> Optional[Sequence[Any]]:
        connection = open_connection(self._engine(INFO_ROLE), "task_info")
        try:
            return connection.execute(query.statement()).first()
        except SQLAlchemyError as exc:
            raise TransientIOError(
                "Task info query failed",
                operation="task_info",
                cause=exc,
                table=self.metadata.full_name,
                details={"sql": query.sql},
            ) from exc
        finally:
            connection.close()

    def get_task_info(self, previous: Optional[Watermark], task_range: TimeRange) -> Watermark:
        """Discover the overall range available to scan up to ``task_range.end``.

        Args:
            previous: Last completed watermark, None on the first run
                (the table is then read from its beginning)
            task_range: Whole time range of this scheduling round
        """
        dialect, table, mode, _ = self._require_configured()

        previous = previous or Watermark.initial()
        if mode is ScanMode.FULL_LOAD:
            return Watermark(0, 0, task_range.start, task_range.end)

        max_time = shift_seconds(task_range.end, -self.config.read_delay)
        # Bounds are compared in the database's wall clock
        query_start = shift_seconds(previous.end_time, self._utc_offset)  # type: ignore[arg-type]
        query_max = shift_seconds(max_time, self._utc_offset)

        if mode is ScanMode.INCREMENT_ONLY:
            query = dialect.task_info_by_inc(table, previous.exclusive_end)
        elif mode is ScanMode.TIME_ONLY:
            query = dialect.task_info_by_time(table, query_start, query_max)
        elif mode is ScanMode.INCREMENT_AND_TIME:
            query = dialect.task_info_by_inc_and_time(
                table, previous.exclusive_end, query_start, query_max
            )
        else:
            raise ValueError(f"Unknown scan mode: {mode}")

        row = self._run_info_query(query)

        # Aggregates over no rows come back as a single all-NULL row
        if row is None or row[0] is None:
            start_from = 0 if mode is ScanMode.TIME_ONLY else previous.exclusive_end
            info = Watermark(start_from, start_from, previous.end_time, previous.end_time)
        else:
            if mode is ScanMode.TIME_ONLY:
                low, high = 0, 0
            else:
                low, high = int(row[0]), int(row[1]) + 1
            end_time = max(task_range.end, previous.end_time)  # type: ignore[type-var]
            info = Watermark(low, high, previous.end_time, end_time)

        self._log.debug("Task info for %s: %s", task_range, info)
        return info

    # Data

    def _open_full_scan(self, watermark: Watermark) -> WindowReader:
        dialect, table, mode, _ = self._require_configured()
        query = dialect.query_full_table(table, watermark)
        connection = open_connection(self._engine(SCAN_ROLE), "full_load")
        cursor = BoundedCursor.open(connection, query, table, mode, self._utc_offset)
        return WindowReader(cursor, watermark, is_last=True)

    def get_data_loaders(
        self,
        task_info: Watermark,
        wanted_ranges: Sequence[TimeRange],
        completed_count: int = 0,
        previous: Optional[Watermark] = None,
    ) -> List[Loader]:
        """Build one loader per wanted window.

        Args:
            task_info: Overall range from get_task_info()
            wanted_ranges: Windows to produce, in time order
            completed_count: Windows of this round already produced earlier
            previous: Last completed watermark; no window starts below it

        Raises:
            TransientIOError: If the scan query cannot be executed
        """
        dialect, table, mode, planner = self._require_configured()
        wanted = list(wanted_ranges)
        planned = planner.plan(task_info, wanted, completed_count + len(wanted), previous)
        if not planned:
            return []

        columns = table.column_names

        if mode is ScanMode.FULL_LOAD:
            return [self._full_load_loader(p, columns) for p in planned]

        if all(p.noop for p in planned):
            self._log.debug("Nothing to read for %d windows", len(planned))
            return [NoDataLoader(p.time_range, p.watermark, columns) for p in planned]

        watermarks = [p.watermark for p in planned]
        combined = Watermark(
            min(w.inclusive_start for w in watermarks),
            max(w.exclusive_end for w in watermarks),
            min(w.start_time for w in watermarks),  # type: ignore[type-var]
            max(w.end_time for w in watermarks),  # type: ignore[type-var]
        )
        query = dialect.query_data(table, mode, combined.adjust_with_delay(self._utc_offset))

        connection = open_connection(self._engine(SCAN_ROLE), "scan")
        cursor = BoundedCursor.open(connection, query, table, mode, self._utc_offset)
        self._log.info("Scanning %s for %d windows over %s", table.full_name, len(planned), combined)

        loaders: List[Loader] = []
        last_index = len(planned) - 1
        for index, p in enumerate(planned):
            reader = WindowReader(cursor, p.watermark, is_last=index == last_index)
            loaders.append(
                WindowLoader(p.time_range, p.watermark, _ready(reader), columns, self._log)
            )
        return loaders

    def _full_load_loader(self, planned: PlannedWindow, columns: List[str]) -> Loader:
        if planned.noop:
            return NoDataLoader(planned.time_range, planned.watermark, columns)
        watermark = planned.watermark
        return WindowLoader(
            planned.time_range,
            watermark,
            lambda: self._open_full_scan(watermark),
            columns,
            self._log,
        )

    def get_sample(self, limit: int = DEFAULT_SAMPLE_SIZE) -> LoadedData:
        """Read up to ``limit`` rows in scan order."""
        dialect, table, mode, _ = self._require_configured()
        watermark = Watermark(0, MAX_KEY, EPOCH, datetime.now(timezone.utc))
        query = dialect.query_data(table, mode, watermark.adjust_with_delay(self._utc_offset), limit)

        connection = open_connection(self._engine(SCAN_ROLE), "sample")
        with BoundedCursor.open(connection, query, table, mode, self._utc_offset) as cursor:
            rows = list(WindowReader(cursor, watermark, is_last=True).rows())
        return LoadedData(table.column_names, rows)

    def reshard(self, previous: Sequence[Watermark]) -> Watermark:
        """Starting watermark for every shard of a new layout."""
        return reshard(previous)

    def close(self) -> None:
        if self._url_key is not None:
            dispose_engine(self.name, self._url_key)

    def __enter__(self) -> "TableSource":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _ready(reader: WindowReader) -> Callable[[], WindowReader]:
    return lambda: reader


def validate_source(
    properties: Union[SourceConfig, Dict[str, Any]],
    settings: Optional[EngineSettings] = None,
) -> List[ValidationIssue]:
    """Validate source properties against the live database.

    Never raises for configuration problems; they come back as issues.
    """
    try:
        config = properties if isinstance(properties, SourceConfig) else parse_source_config(properties)
    except ConfigurationError as exc:
        return list(exc.issues)

    source = TableSource(config, settings)
    try:
        return source.validate()
    finally:
        source.close()
