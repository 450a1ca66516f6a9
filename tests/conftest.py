"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest
from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Time,
    create_engine,
    insert,
)

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from windowing.lib.connections import dispose_all_engines  # noqa: E402

# Every test table starts here; aligned to any whole number of minutes
BASE_TIME = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def minute(n: int) -> datetime:
    """UTC instant ``n`` minutes after BASE_TIME."""
    return BASE_TIME + timedelta(minutes=n)


def naive_minute(n: int) -> datetime:
    """Naive wall-clock value as stored in the test databases."""
    return minute(n).replace(tzinfo=None)


test_metadata = MetaData()

# INTEGER PRIMARY KEY: detected as the increment column
events_table = Table(
    "events",
    test_metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(50)),
    Column("updated_at", DateTime),
    Column("created_at", DateTime),
)

# No primary key: scanned by time only
readings_table = Table(
    "readings",
    test_metadata,
    Column("sensor", String(20)),
    Column("reading", Integer),
    Column("taken_at", DateTime),
)

# One column per value category
samples_table = Table(
    "samples",
    test_metadata,
    Column("id", Integer, primary_key=True),
    Column("day", Date),
    Column("clock", Time),
    Column("payload", LargeBinary),
    Column("label", String(20)),
)


class SqliteDatabase:
    """A file-backed SQLite database holding the test tables."""

    def __init__(self, path: Path):
        self.path = path
        self.url = f"sqlite:///{path}"
        self.engine = create_engine(self.url)
        test_metadata.create_all(self.engine)

    def insert(self, table: Table, rows: List[Dict[str, Any]]) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(table), rows)

    def insert_events(self, *minutes: int, **overrides: Any) -> None:
        """One event per minute offset, id and name derived from the offset."""
        rows = []
        for n in minutes:
            row = {"id": n, "name": f"e{n}", "updated_at": naive_minute(n), "created_at": None}
            row.update(overrides)
            rows.append(row)
        self.insert(events_table, rows)

    def insert_readings(self, *minutes: int) -> None:
        self.insert(
            readings_table,
            [{"sensor": f"r{n}", "reading": n, "taken_at": naive_minute(n)} for n in minutes],
        )

    def source_config(self, table_name: str = "events", **overrides: Any) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "connection_string": self.url,
            "table_name": table_name,
            "name": f"test_{table_name}",
        }
        config.update(overrides)
        return config

    def dispose(self) -> None:
        self.engine.dispose()


@pytest.fixture
def sqlite_db(tmp_path):
    """Fresh SQLite database with empty test tables."""
    db = SqliteDatabase(tmp_path / "windowing_test.db")
    yield db
    db.dispose()


@pytest.fixture(autouse=True)
def clean_engines():
    """Ensure the engine registry is clean before and after each test."""
    dispose_all_engines()
    yield
    dispose_all_engines()


@pytest.fixture
def state_dir(tmp_path, monkeypatch):
    """Point watermark persistence at a temporary directory."""
    path = tmp_path / "state"
    monkeypatch.setenv("WINDOWING_STATE_DIR", str(path))
    return path


@pytest.fixture
def sample_properties():
    """Provide valid source properties without a database behind them."""
    return {
        "connection_string": "sqlite:///shop.db",
        "table_name": "orders",
        "timestamp_columns": "updated_at, created_at",
        "read_delay": 30,
    }
