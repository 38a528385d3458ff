"""
tests/test_database.py
----------------------
Unit tests for core/database.py using a mocked psycopg2 pool.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from core.database import Connection, QueryResult, translate_placeholders
from core.errors import (
    AlreadyInTransactionError,
    ConnectionLostError,
    DatabaseError,
    InvalidStateError,
    NoActiveTransactionError,
)
from shared.models import ConnectionSettings


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _raw_connection(rows=None, rowcount: int = 0) -> MagicMock:
    raw = MagicMock()
    cursor = raw.cursor.return_value.__enter__.return_value
    cursor.description = [("id",)] if rows is not None else None
    cursor.fetchall.return_value = rows or []
    cursor.rowcount = rowcount
    return raw


@pytest.fixture
def raw_conn() -> MagicMock:
    return _raw_connection(rows=[{"id": 1}], rowcount=1)


@pytest.fixture
def pool(raw_conn: MagicMock) -> MagicMock:
    pool = MagicMock()
    pool.closed = False
    pool.getconn.return_value = raw_conn
    return pool


@pytest.fixture
def conn(pool: MagicMock) -> Connection:
    connection = Connection(ConnectionSettings(), max_retries=1, retry_delay=0)
    with patch("core.database.ThreadedConnectionPool", return_value=pool):
        connection.connect()
    return connection


def _cursor(raw: MagicMock) -> MagicMock:
    return raw.cursor.return_value.__enter__.return_value


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------

class TestTranslatePlaceholders:
    def test_positional(self) -> None:
        sql, params = translate_placeholders("SELECT * FROM t WHERE a = $1 AND b = $2", [1, 2])
        assert sql == "SELECT * FROM t WHERE a = %s AND b = %s"
        assert params == (1, 2)

    def test_reused_placeholder_repeats_param(self) -> None:
        sql, params = translate_placeholders("a ILIKE $1 OR b ILIKE $1 AND c = $2", ["%x%", 3])
        assert sql == "a ILIKE %s OR b ILIKE %s AND c = %s"
        assert params == ("%x%", "%x%", 3)

    def test_literal_percent_is_escaped(self) -> None:
        sql, _ = translate_placeholders("SELECT '100%' WHERE a = $1", [1])
        assert sql == "SELECT '100%%' WHERE a = %s"

    def test_no_params_leaves_sql_untouched(self) -> None:
        body = "CREATE FUNCTION f() RETURNS TRIGGER AS $$ BEGIN RETURN NEW; END; $$"
        assert translate_placeholders(body, None) == (body, None)

    def test_out_of_range(self) -> None:
        with pytest.raises(InvalidStateError):
            translate_placeholders("a = $2", [1])


# ---------------------------------------------------------------------------
# Connect / query
# ---------------------------------------------------------------------------

class TestConnect:
    def test_retries_then_fails(self) -> None:
        connection = Connection(ConnectionSettings(), max_retries=2, retry_delay=0)
        with patch(
            "core.database.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("refused"),
        ) as ctor:
            with pytest.raises(ConnectionLostError):
                connection.connect()
        assert ctor.call_count == 2

    def test_query_before_connect(self) -> None:
        with pytest.raises(ConnectionLostError):
            Connection(ConnectionSettings()).query("SELECT 1")


class TestQuery:
    def test_autocommit_statement(self, conn: Connection, pool: MagicMock, raw_conn: MagicMock) -> None:
        result = conn.query("SELECT * FROM users WHERE id = $1", [1])
        assert isinstance(result, QueryResult)
        assert result.first() == {"id": 1}
        assert result.rowcount == 1
        _cursor(raw_conn).execute.assert_called_once_with(
            "SELECT * FROM users WHERE id = %s", (1,)
        )
        raw_conn.commit.assert_called_once()
        pool.putconn.assert_called_once_with(raw_conn)

    def test_driver_error_rolls_back_and_wraps(
        self, conn: Connection, pool: MagicMock, raw_conn: MagicMock
    ) -> None:
        _cursor(raw_conn).execute.side_effect = psycopg2.ProgrammingError("boom")
        with pytest.raises(DatabaseError):
            conn.query("SELECT nope")
        raw_conn.rollback.assert_called_once()
        raw_conn.commit.assert_not_called()
        pool.putconn.assert_called_once_with(raw_conn)

    def test_health_check(self, conn: Connection) -> None:
        assert conn.health_check()

    def test_statement_log_omits_parameter_values(self, conn: Connection, caplog) -> None:
        caplog.set_level(logging.DEBUG, logger="pgrecord.sql")
        conn.query("SELECT * FROM users WHERE email = $1 AND password = $2", ["a@b.io", "s3cret"])
        records = [r for r in caplog.records if r.name == "pgrecord.sql"]
        assert len(records) == 1
        message = records[0].getMessage()
        assert "WHERE email = $1 AND password = $2" in message
        assert "2 param(s)" in message
        assert "s3cret" not in caplog.text
        assert "a@b.io" not in caplog.text


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TestTransactions:
    def test_begin_twice_raises(self, conn: Connection) -> None:
        conn.begin()
        with pytest.raises(AlreadyInTransactionError):
            conn.begin()
        conn.rollback()

    def test_commit_without_transaction(self, conn: Connection) -> None:
        with pytest.raises(NoActiveTransactionError):
            conn.commit()

    def test_rollback_without_transaction(self, conn: Connection) -> None:
        with pytest.raises(NoActiveTransactionError):
            conn.rollback()

    def test_statements_share_the_reserved_connection(
        self, conn: Connection, pool: MagicMock, raw_conn: MagicMock
    ) -> None:
        with conn.transaction():
            assert conn.in_transaction
            conn.query("INSERT INTO a VALUES ($1)", [1])
            conn.query("INSERT INTO b VALUES ($1)", [2])
        assert pool.getconn.call_count == 1
        raw_conn.commit.assert_called_once()
        assert not conn.in_transaction

    def test_exception_rolls_back(self, conn: Connection, raw_conn: MagicMock) -> None:
        with pytest.raises(RuntimeError):
            with conn.transaction():
                conn.query("INSERT INTO a VALUES ($1)", [1])
                raise RuntimeError("abort")
        raw_conn.rollback.assert_called_once()
        raw_conn.commit.assert_not_called()
        assert not conn.in_transaction

    def test_with_transaction_returns_result(self, conn: Connection) -> None:
        assert conn.with_transaction(lambda: 42) == 42
