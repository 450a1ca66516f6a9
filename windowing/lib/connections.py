"""Pooled SQLAlchemy engines for table sources.

Each source gets two engines from the registry: one for scans, which hold a
connection for as long as their windows are being read, and a small one for
task-info queries, which are short-lived and must never wait behind a scan.

Pools block callers while exhausted (up to ``pool_timeout``) instead of
opening extra connections, and recycle connections older than the idle
timeout.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Tuple
from urllib.parse import quote_plus

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool

from windowing.lib.config import EngineSettings
from windowing.lib.errors import ConfigurationError, TransientIOError
from windowing.lib.resilience import is_retryable_db_error, with_retry

logger = logging.getLogger(__name__)

__all__ = [
    "INFO_ROLE",
    "SCAN_ROLE",
    "dispose_all_engines",
    "dispose_engine",
    "get_engine",
    "open_connection",
    "to_sqlalchemy_url",
    "url_key",
]

SCAN_ROLE = "scan"
INFO_ROLE = "info"
INFO_POOL_SIZE = 2
DEFAULT_MSSQL_DRIVER = "ODBC Driver 18 for SQL Server"

# Engine registry - keyed by (source name, role, rendered URL)
_engines: Dict[Tuple[str, str, str], Engine] = {}
_engines_lock = threading.Lock()

_JDBC_SCHEMES = {
    "postgresql": "postgresql",
    "postgres": "postgresql",
    "redshift": "redshift+psycopg2",
    "mysql": "mysql",
    "mariadb": "mariadb",
    "snowflake": "snowflake",
}


def _from_jdbc(connection_string: str) -> str:
    body = connection_string[len("jdbc:"):]
    vendor, _, rest = body.partition(":")
    vendor = vendor.lower()

    if vendor == "sqlserver":
        # jdbc:sqlserver://host:1433;databaseName=sales;encrypt=true
        address, *settings = rest.lstrip("/").split(";")
        options = dict(s.split("=", 1) for s in settings if "=" in s)
        database = options.pop("databaseName", options.pop("database", ""))
        query = "&".join(f"{k}={quote_plus(v)}" for k, v in options.items())
        url = f"mssql+pyodbc://{address}/{database}"
        return f"{url}?{query}" if query else url

    if vendor == "oracle":
        # jdbc:oracle:thin:@//host:1521/service or jdbc:oracle:thin:@host:1521:SID
        _, _, target = rest.partition("@")
        if target.startswith("//"):
            address, _, service = target[2:].partition("/")
            return f"oracle+oracledb://{address}/?service_name={service}"
        host, port, sid = (target.split(":") + ["", ""])[:3]
        return f"oracle+oracledb://{host}:{port}/{sid}"

    if vendor == "sqlite":
        # jdbc:sqlite:/var/db/shop.db or jdbc:sqlite::memory:
        return f"sqlite:///{rest}"

    scheme = _JDBC_SCHEMES.get(vendor)
    if scheme is None:
        raise ValueError(f"Unsupported JDBC vendor: {vendor}")
    return f"{scheme}:{rest}"


def to_sqlalchemy_url(
    connection_string: str,
    user: Optional[str] = None,
    password: Optional[str] = None,
) -> URL:
    """Turn a connection string into a SQLAlchemy URL.

    JDBC-style strings are translated; credentials given separately
    override those embedded in the string.

    Raises:
        ConfigurationError: If the string cannot be parsed
    """
    raw = connection_string.strip()
    try:
        if raw.lower().startswith("jdbc:"):
            raw = _from_jdbc(raw)
        url = make_url(raw)
    except (ArgumentError, ValueError) as exc:
        raise ConfigurationError(
            f"Cannot parse connection string: {exc}",
            field="connection_string",
            value=connection_string.split("@")[-1],
        ) from exc

    if user:
        url = url.set(username=user)
    if password:
        url = url.set(password=password)
    if url.get_backend_name() == "mssql" and "driver" not in url.query and "odbc_connect" not in url.query:
        url = url.update_query_dict({"driver": DEFAULT_MSSQL_DRIVER})
    return url


def _is_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def _create_engine(url: URL, settings: EngineSettings, pool_size: int) -> Engine:
    if _is_memory_sqlite(url):
        # One shared connection, otherwise every checkout sees an empty database
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    connect_args = {"check_same_thread": False} if url.get_backend_name() == "sqlite" else {}
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=0,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.idle_timeout,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def url_key(url: URL) -> str:
    """Registry form of a URL; credentials included so two logins never share a pool."""
    return url.render_as_string(hide_password=False)


def get_engine(
    name: str,
    connection_string: str,
    *,
    user: Optional[str] = None,
    password: Optional[str] = None,
    role: str = SCAN_ROLE,
    settings: Optional[EngineSettings] = None,
) -> Engine:
    """Get or create the pooled engine of a source.

    Engines are shared only between callers asking for the same name, role
    and database, so two sources named alike on different databases each
    get their own pool.

    Args:
        name: Source name
        connection_string: SQLAlchemy URL or JDBC-style string
        user: Optional user overriding the URL's
        password: Optional password overriding the URL's
        role: SCAN_ROLE or INFO_ROLE
        settings: Pool settings (defaults from the environment)
    """
    url = to_sqlalchemy_url(connection_string, user, password)
    if _is_memory_sqlite(url):
        role = SCAN_ROLE

    key = (name, role, url_key(url))
    with _engines_lock:
        if key in _engines:
            logger.debug("Reusing engine %s/%s", name, role)
            return _engines[key]

        settings = settings or EngineSettings()
        pool_size = settings.pool_size if role == SCAN_ROLE else INFO_POOL_SIZE
        logger.info(
            "Creating %s engine for %s (%s, pool_size=%d)",
            role,
            name,
            url.render_as_string(hide_password=True),
            pool_size,
        )
        engine = _create_engine(url, settings, pool_size)
        _engines[key] = engine
        return engine


def open_connection(engine: Engine, operation: str, *, attempts: int = 1) -> Connection:
    """Check a connection out of the pool.

    Args:
        engine: Pooled engine
        operation: Name used in errors and logs
        attempts: Tries for transient connection failures (1 = no retry)

    Raises:
        TransientIOError: If no connection can be opened
    """
    connect = engine.connect
    if attempts > 1:
        connect = with_retry(
            max_attempts=attempts,
            backoff_seconds=1.0,
            retry_if=is_retryable_db_error,
        )(engine.connect)
    try:
        return connect()
    except SQLAlchemyError as exc:
        raise TransientIOError(
            f"Could not open a database connection for {operation}",
            operation=operation,
            cause=exc,
        ) from exc


def dispose_engine(name: str, url: Optional[str] = None) -> int:
    """Dispose the engines of a source. Returns how many were disposed.

    Args:
        name: Source name
        url: Only engines on this database (see url_key); all when None
    """
    with _engines_lock:
        keys = [key for key in _engines if key[0] == name and (url is None or key[2] == url)]
        engines = [_engines.pop(key) for key in keys]
    for key, engine in zip(keys, engines):
        engine.dispose()
        logger.debug("Disposed engine %s/%s", key[0], key[1])
    return len(keys)


def dispose_all_engines() -> None:
    """Dispose all pooled engines."""
    with _engines_lock:
        engines = list(_engines.values())
        _engines.clear()
    for engine in engines:
        engine.dispose()
    logger.info("Disposed %d engines", len(engines))
