"""Tests for windowing/lib/dialects - vendor SQL, facts and registry."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.types import (
    BIGINT,
    INTEGER,
    JSON,
    Date,
    DateTime,
    Integer,
    LargeBinary,
    String,
    Time,
)

from windowing.lib import dialects
from windowing.lib.catalog import ColumnInfo, SqlTypeCategory, TableMetadata
from windowing.lib.dialects import (
    DEFAULT_DIALECT,
    Dialect,
    LimitStyle,
    dialect_for_url,
    normalize_url_prefix,
    prefix_predicate,
    register_dialect,
    registered_dialects,
)
from windowing.lib.dialects.base import zone_offset_seconds
from windowing.lib.dialects.mysql import MYSQL
from windowing.lib.dialects.oracle import ORACLE
from windowing.lib.dialects.postgres import POSTGRES, REDSHIFT, postgres_utc_offset
from windowing.lib.dialects.snowflake import SNOWFLAKE, snowflake_utc_offset
from windowing.lib.dialects.sqlite import SQLITE
from windowing.lib.dialects.sqlserver import SQLSERVER
from windowing.lib.planner import ScanMode
from windowing.lib.watermark import Watermark

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

ID = ColumnInfo("id", Integer(), is_increment_candidate=True, position=0)
UPDATED = ColumnInfo("updated_at", DateTime(), SqlTypeCategory.TIMESTAMP, is_time_type=True, position=1)
CREATED = ColumnInfo("created_at", DateTime(), SqlTypeCategory.TIMESTAMP, is_time_type=True, position=2)


def make_table(time_columns=(UPDATED,), schema=None) -> TableMetadata:
    return TableMetadata(
        name="orders",
        schema=schema,
        columns=(ID, UPDATED, CREATED),
        inc_column=ID,
        time_columns=tuple(time_columns),
    )


WINDOW = Watermark(10, 100, T0, T0 + timedelta(minutes=5))


# ============================================
# Data queries
# ============================================


class TestDataQueries:
    """Tests for the shape of scan queries."""

    def test_query_by_inc(self):
        query = DEFAULT_DIALECT.query_by_inc(make_table(), WINDOW)
        assert query.sql == (
            "SELECT * FROM orders WHERE id BETWEEN :inc_start AND :inc_end ORDER BY id ASC"
        )
        assert query.params == {"inc_start": 10, "inc_end": 99}

    def test_query_by_time(self):
        query = DEFAULT_DIALECT.query_by_time(make_table(), WINDOW)
        assert query.sql == (
            "SELECT * FROM orders WHERE updated_at >= :start_time AND updated_at < :end_time "
            "ORDER BY updated_at ASC"
        )
        assert query.params == {
            "start_time": datetime(2024, 1, 1, 12, 0),
            "end_time": datetime(2024, 1, 1, 12, 5),
        }

    def test_query_by_inc_and_time(self):
        query = DEFAULT_DIALECT.query_by_inc_and_time(make_table(), WINDOW)
        assert query.sql == (
            "SELECT * FROM orders WHERE updated_at < :end_time AND "
            "((updated_at = :start_time AND id >= :inc_start) OR (updated_at > :start_time)) "
            "ORDER BY updated_at, id ASC"
        )
        assert query.params["inc_start"] == 10

    def test_coalesced_timestamp(self):
        query = DEFAULT_DIALECT.query_by_time(make_table((UPDATED, CREATED)), WINDOW)
        assert "COALESCE(updated_at, created_at) >= :start_time" in query.sql
        assert query.sql.endswith("ORDER BY COALESCE(updated_at, created_at) ASC")

    def test_full_table(self):
        assert DEFAULT_DIALECT.query_full_table(make_table()).sql == "SELECT * FROM orders"

    def test_schema_qualified(self):
        query = DEFAULT_DIALECT.query_full_table(make_table(schema="sales"))
        assert query.sql == "SELECT * FROM sales.orders"

    def test_queries_are_idempotent(self):
        """Building the same query twice gives equal SQL and parameters."""
        table = make_table()
        for mode in ScanMode:
            assert DEFAULT_DIALECT.query_data(table, mode, WINDOW) == DEFAULT_DIALECT.query_data(
                table, mode, WINDOW
            )

    def test_query_data_dispatch(self):
        table = make_table()
        assert "BETWEEN" in DEFAULT_DIALECT.query_data(table, ScanMode.INCREMENT_ONLY, WINDOW).sql
        assert ":inc_start" not in DEFAULT_DIALECT.query_data(table, ScanMode.TIME_ONLY, WINDOW).sql
        assert "WHERE" not in DEFAULT_DIALECT.query_data(table, ScanMode.FULL_LOAD, WINDOW).sql

    def test_time_params_bound_with_column_type(self):
        query = DEFAULT_DIALECT.query_by_time(make_table(), WINDOW)
        assert isinstance(query.param_types["start_time"], DateTime)

    def test_requires_columns(self):
        table = TableMetadata(name="t", columns=(ID,))
        with pytest.raises(ValueError):
            DEFAULT_DIALECT.query_by_inc(table, WINDOW)
        with pytest.raises(ValueError):
            DEFAULT_DIALECT.query_by_time(table, WINDOW)

    def test_statement_binds_params(self):
        stmt = DEFAULT_DIALECT.query_by_inc(make_table(), WINDOW).statement()
        compiled = stmt.compile()
        assert compiled.params == {"inc_start": 10, "inc_end": 99}


class TestRowLimits:
    """Tests for vendor row-limit syntax."""

    def test_limit_at_end(self):
        query = DEFAULT_DIALECT.query_by_inc(make_table(), WINDOW, limit=5)
        assert query.sql.endswith("ORDER BY id ASC LIMIT 5")

    def test_top(self):
        query = SQLSERVER.query_by_inc(make_table(), WINDOW, limit=5)
        assert query.sql.startswith("SELECT TOP 5 * FROM orders WHERE")
        assert "LIMIT" not in query.sql

    def test_rownum_applied_after_ordering(self):
        query = ORACLE.query_by_inc(make_table(), WINDOW, limit=5)
        assert query.sql == (
            "SELECT * FROM (SELECT * FROM ORDERS WHERE ID BETWEEN :inc_start AND :inc_end "
            "ORDER BY ID ASC) WHERE ROWNUM <= 5"
        )

    def test_rownum_time_query_wrapped(self):
        sql = ORACLE.query_by_time(make_table(), WINDOW, limit=5).sql
        assert sql.startswith("SELECT * FROM (SELECT * FROM ORDERS WHERE ")
        assert sql.endswith(") WHERE ROWNUM <= 5")
        inner = sql[len("SELECT * FROM ("):-len(") WHERE ROWNUM <= 5")]
        assert "ROWNUM" not in inner
        assert "ORDER BY" in inner

    def test_rownum_unlimited_not_wrapped(self):
        sql = ORACLE.query_by_inc(make_table(), WINDOW).sql
        assert sql.startswith("SELECT * FROM ORDERS WHERE")
        assert "ROWNUM" not in sql

    def test_rownum_full_table(self):
        assert ORACLE.query_full_table(make_table(), limit=3).sql == (
            "SELECT * FROM ORDERS WHERE ROWNUM <= 3"
        )

    def test_only_own_style_emitted(self):
        assert DEFAULT_DIALECT.top_limit(5) is None
        assert DEFAULT_DIALECT.rownum_condition(5) is None
        assert SQLSERVER.end_limit(5) is None
        assert ORACLE.end_limit(None) is None
        assert SQLSERVER.top_limit(None) is None


class TestTaskInfoQueries:
    """Tests for range discovery queries."""

    def test_by_inc(self):
        query = DEFAULT_DIALECT.task_info_by_inc(make_table(), 42)
        assert query.sql == (
            "SELECT MIN(id) AS min_value, MAX(id) AS max_value FROM orders WHERE id >= :start_from"
        )
        assert query.params == {"start_from": 42}

    def test_by_time(self):
        query = DEFAULT_DIALECT.task_info_by_time(make_table(), T0, T0 + timedelta(minutes=1))
        assert query.sql == (
            "SELECT MAX(updated_at) AS last_time FROM orders "
            "WHERE updated_at > :start_time AND updated_at < :max_time"
        )
        assert query.params["start_time"].tzinfo is None

    def test_by_inc_and_time(self):
        query = DEFAULT_DIALECT.task_info_by_inc_and_time(make_table(), 7, T0, T0)
        assert "MIN(id) AS min_value" in query.sql
        assert "MAX(updated_at) AS last_time" in query.sql
        assert "((updated_at = :start_time AND id >= :start_from) OR (updated_at > :start_time))" in query.sql
        assert query.params["start_from"] == 7


# ============================================
# Vendor facts
# ============================================


class TestAutoIncrementDetection:
    """Tests for per-vendor auto-increment predicates."""

    def test_reported_flag(self):
        assert DEFAULT_DIALECT.is_auto_increment_column({"autoincrement": True})
        assert not DEFAULT_DIALECT.is_auto_increment_column({"autoincrement": "auto"})
        assert SQLSERVER.is_auto_increment_column({"autoincrement": True})
        assert MYSQL.is_auto_increment_column({"autoincrement": True})

    def test_postgres(self):
        assert POSTGRES.is_auto_increment_column({"default": "nextval('orders_id_seq'::regclass)"})
        assert POSTGRES.is_auto_increment_column({"default": None, "identity": {"start": 1}})
        assert not POSTGRES.is_auto_increment_column({"default": "0"})

    def test_redshift(self):
        assert REDSHIFT.is_auto_increment_column({"default": '"identity"(101, 0, \'1,1\'::text)'})
        assert not REDSHIFT.is_auto_increment_column({"default": "nextval('s')"})

    def test_oracle(self):
        assert ORACLE.is_auto_increment_column({"default": '"APP"."ISEQ$$_73001".nextval'})
        assert not ORACLE.is_auto_increment_column({"default": "orders_seq.nextval"})

    def test_snowflake(self):
        assert SNOWFLAKE.is_auto_increment_column({"default": "IDENTITY START 1 INCREMENT 1"})
        assert SNOWFLAKE.is_auto_increment_column({"default": "autoincrement"})
        assert not SNOWFLAKE.is_auto_increment_column({"default": None})

    def test_sqlite_integer_primary_key(self):
        assert SQLITE.is_auto_increment_column(
            {"type": INTEGER(), "primary_key": True, "primary_key_size": 1}
        )
        assert not SQLITE.is_auto_increment_column(
            {"type": BIGINT(), "primary_key": True, "primary_key_size": 1}
        )
        assert not SQLITE.is_auto_increment_column(
            {"type": INTEGER(), "primary_key": True, "primary_key_size": 2}
        )


class TestTypes:
    """Tests for type classification and value getters."""

    def test_time_types(self):
        assert DEFAULT_DIALECT.is_time_type(DateTime())
        assert DEFAULT_DIALECT.is_time_type(Date())
        assert not DEFAULT_DIALECT.is_time_type(Time())
        assert not DEFAULT_DIALECT.is_time_type(String())

    def test_categories(self):
        assert DEFAULT_DIALECT.categorize(DateTime()) is SqlTypeCategory.TIMESTAMP
        assert DEFAULT_DIALECT.categorize(Date()) is SqlTypeCategory.DATE
        assert DEFAULT_DIALECT.categorize(Time()) is SqlTypeCategory.TIME
        assert DEFAULT_DIALECT.categorize(LargeBinary()) is SqlTypeCategory.BINARY
        assert DEFAULT_DIALECT.categorize(JSON()) is SqlTypeCategory.STRUCTURED
        assert DEFAULT_DIALECT.categorize(Integer()) is SqlTypeCategory.DEFAULT

    def test_keep_types(self):
        value = datetime(2024, 1, 1, 12, 0)
        assert DEFAULT_DIALECT.value_getters(True)[SqlTypeCategory.TIMESTAMP](value) is value
        assert DEFAULT_DIALECT.value_getters(False)[SqlTypeCategory.TIMESTAMP](value) == "2024-01-01 12:00:00"
        assert DEFAULT_DIALECT.value_getters(False)[SqlTypeCategory.DATE](date(2024, 1, 1)) == "2024-01-01"

    def test_keep_types_leaves_other_categories(self):
        getters = DEFAULT_DIALECT.value_getters(False)
        assert getters[SqlTypeCategory.DEFAULT](5) == 5
        assert getters[SqlTypeCategory.BINARY](b"\x01") == b"\x01"

    def test_null_stays_null(self):
        for getter in DEFAULT_DIALECT.value_getters(False).values():
            assert getter(None) is None

    def test_mysql_time_as_string(self):
        getter = MYSQL.value_getters(True)[SqlTypeCategory.TIME]
        assert getter(timedelta(hours=1, minutes=30)) == "1:30:00"

    def test_oracle_binary_as_hex(self):
        assert ORACLE.value_getters(True)[SqlTypeCategory.BINARY](b"\x01\xff") == "01ff"

    def test_postgres_structured_as_string(self):
        assert POSTGRES.value_getters(True)[SqlTypeCategory.STRUCTURED]([1, 2]) == "[1, 2]"

    def test_sqlserver_extra_time_type(self):
        class DATETIMEOFFSET(String):
            __visit_name__ = "DATETIMEOFFSET"

        assert SQLSERVER.is_time_type(DATETIMEOFFSET())
        assert not DEFAULT_DIALECT.is_time_type(DATETIMEOFFSET())


class TestIdentifiers:
    """Tests for identifier case handling."""

    def test_uppercase_vendors(self):
        assert ORACLE.requires_uppercase_names()
        assert SNOWFLAKE.requires_uppercase_names()
        assert not POSTGRES.requires_uppercase_names()

    def test_to_upper_case_if_required(self):
        assert ORACLE.to_upper_case_if_required("orders") == "ORDERS"
        assert MYSQL.to_upper_case_if_required("orders") == "orders"


class TestUtcOffsets:
    """Tests for server offset lookup."""

    def test_zone_names(self):
        winter = datetime(2024, 1, 15, tzinfo=timezone.utc)
        summer = datetime(2024, 7, 15, tzinfo=timezone.utc)
        assert zone_offset_seconds("UTC") == 0
        assert zone_offset_seconds("Europe/Berlin", winter) == 3600
        assert zone_offset_seconds("Europe/Berlin", summer) == 7200

    def test_fixed_offsets(self):
        assert zone_offset_seconds("+02") == 7200
        assert zone_offset_seconds("-05:30") == -19800
        assert zone_offset_seconds("+0100") == 3600

    def test_unknown_zone(self):
        assert zone_offset_seconds("Not/AZone") is None

    def test_default_is_utc(self):
        assert DEFAULT_DIALECT.utc_offset_seconds(MagicMock()) == 0
        assert SQLITE.utc_offset_seconds(MagicMock()) == 0

    def test_mysql_reads_server_difference(self):
        connection = MagicMock()
        connection.execute.return_value.scalar.return_value = -18000
        assert MYSQL.utc_offset_seconds(connection) == -18000

    def test_postgres_named_zone(self):
        connection = MagicMock()
        connection.execute.return_value.scalar.return_value = "UTC"
        assert postgres_utc_offset(connection) == 0

    def test_postgres_falls_back_to_server(self):
        connection = MagicMock()
        connection.execute.return_value.scalar.side_effect = ["<+03>-03", 10800]
        assert postgres_utc_offset(connection) == 10800

    def test_snowflake_reads_value_column(self):
        connection = MagicMock()
        connection.execute.return_value.mappings.return_value.first.return_value = {
            "key": "TIMEZONE",
            "value": "Etc/GMT-2",
        }
        assert snowflake_utc_offset(connection) == 7200


# ============================================
# Registry
# ============================================


class TestRegistry:
    """Tests for selecting dialects by connection string."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("mysql+pymysql://u:p@db/shop", MYSQL),
            ("mariadb://db/shop", MYSQL),
            ("jdbc:mysql://db:3306/shop", MYSQL),
            ("postgresql+psycopg2://db/shop", POSTGRES),
            ("postgres://db/shop", POSTGRES),
            ("jdbc:postgresql://db:5432/shop", POSTGRES),
            ("redshift+psycopg2://cluster/dw", REDSHIFT),
            ("jdbc:redshift://cluster:5439/dw", REDSHIFT),
            ("oracle+oracledb://db/?service_name=ORCL", ORACLE),
            ("jdbc:oracle:thin:@//db:1521/ORCL", ORACLE),
            ("mssql+pyodbc://db/sales", SQLSERVER),
            ("jdbc:sqlserver://db:1433;databaseName=sales", SQLSERVER),
            ("snowflake://acct/db", SNOWFLAKE),
            ("sqlite:///shop.db", SQLITE),
            ("duckdb:///shop.duckdb", DEFAULT_DIALECT),
        ],
    )
    def test_dialect_for_url(self, url, expected):
        assert dialect_for_url(url) is expected

    def test_normalize_url_prefix(self):
        assert normalize_url_prefix("JDBC:PostgreSQL://db") == "postgresql"
        assert normalize_url_prefix("mssql+pyodbc://db") == "mssql"
        assert normalize_url_prefix("") == ""

    def test_register_first_overrides(self, monkeypatch):
        """A dialect registered first wins over the built-in entry."""
        monkeypatch.setattr(dialects, "_registry", list(dialects._registry))
        custom = Dialect(name="custom-pg", limit_style=LimitStyle.TOP)
        register_dialect(prefix_predicate("postgres"), custom, first=True)
        assert dialect_for_url("postgresql://db/shop") is custom
        assert registered_dialects()[0] is custom

    def test_register_appended(self, monkeypatch):
        monkeypatch.setattr(dialects, "_registry", list(dialects._registry))
        duck = Dialect(name="duckdb")
        register_dialect(prefix_predicate("duckdb"), duck)
        assert dialect_for_url("duckdb:///x.duckdb") is duck
        assert dialect_for_url("postgresql://db/shop") is POSTGRES
