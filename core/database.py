"""
core/database.py
----------------
PostgreSQL connection wrapper: pooled statement execution and explicit,
non-reentrant transactions.

Design Decisions:
    * ``Connection`` is a context manager so callers can use it with
      ``with`` statements and be guaranteed the pool is closed on exit.
    * Statements are written with PostgreSQL-style ``$1..$n`` placeholders
      and translated to psycopg2's ``%s`` form here. A reused ``$n`` repeats
      its parameter, so builders may bind one value to several conditions.
    * Outside a transaction every statement checks a connection out of a
      ``ThreadedConnectionPool``, commits, and returns it. Inside a
      transaction every statement runs, in submission order, on the one
      reserved connection.
    * Only one transaction may be open per wrapper. A second ``begin()``
      raises :class:`AlreadyInTransactionError`; there is no nesting.
    * Pool creation is retried with linear back-off
      (``max_retries`` / ``retry_delay``).
    * Data values are never interpolated into SQL strings; only identifiers
      validated by the query builder are.
"""
from __future__ import annotations

import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Generator, Sequence, TypeVar

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from config import CONFIG
from core.errors import (
    AlreadyInTransactionError,
    ConnectionLostError,
    DatabaseError,
    InvalidStateError,
    NoActiveTransactionError,
)
from logger import get_logger, get_sql_logger
from shared.models import ConnectionSettings

log = get_logger(__name__)
sql_log = get_sql_logger()

T = TypeVar("T")

_PLACEHOLDER_RE = re.compile(r"\$(\d+)")


@dataclass
class QueryResult:
    """Rows (as dicts) and affected-row count of one statement."""
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None


def translate_placeholders(
    sql: str, params: Sequence[Any] | None
) -> tuple[str, tuple[Any, ...] | None]:
    """
    Rewrite ``$n`` placeholders into psycopg2 ``%s`` markers.

    Args:
        sql:    Statement using ``$1..$n`` placeholders.
        params: Positional values; ``params[n-1]`` binds ``$n``.

    Returns:
        ``(driver_sql, driver_params)``. Without params the SQL is returned
        untouched (psycopg2 does no ``%`` processing then) and params is None.

    Raises:
        InvalidStateError: If a placeholder refers past the end of *params*.

    Example::

        translate_placeholders("a ILIKE $1 OR b ILIKE $1 AND c = $2", ["%x%", 3])
        # ("a ILIKE %s OR b ILIKE %s AND c = %s", ("%x%", "%x%", 3))
    """
    if not params:
        return sql, None

    ordered: list[Any] = []

    def _bind(match: re.Match) -> str:
        index = int(match.group(1)) - 1
        if index < 0 or index >= len(params):
            raise InvalidStateError(
                f"Placeholder ${index + 1} has no parameter ({len(params)} given)"
            )
        ordered.append(params[index])
        return "%s"

    escaped = sql.replace("%", "%%")
    return _PLACEHOLDER_RE.sub(_bind, escaped), tuple(ordered)


class Connection:
    """
    Pooled PostgreSQL connection wrapper.

    Provides:
        * ``query(sql, params)`` returning a :class:`QueryResult`.
        * ``begin()`` / ``commit()`` / ``rollback()`` and the
          ``transaction()`` context manager / ``with_transaction(fn)``.
        * Automatic rollback of a failed statement outside a transaction.

    Example::

        with Connection.from_config() as conn:
            conn.query("SELECT * FROM users WHERE id = $1", [user_id])
            conn.with_transaction(lambda: conn.query("DELETE FROM users"))
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self._settings = settings
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        self._pool: ThreadedConnectionPool | None = None
        self._tx_conn: Any = None
        self._state_lock = threading.Lock()
        self._tx_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_config(cls) -> "Connection":
        """Convenience factory using values from the application config."""
        return cls(
            ConnectionSettings(
                host=CONFIG.db.host,
                port=CONFIG.db.port,
                dbname=CONFIG.db.dbname,
                user=CONFIG.db.user,
                password=CONFIG.db.password,
                connect_timeout=CONFIG.db.connect_timeout,
                min_conn=CONFIG.db.min_conn,
                max_conn=CONFIG.db.max_conn,
            )
        )

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs: Any) -> "Connection":
        return cls(ConnectionSettings(dsn=dsn), **kwargs)

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "Connection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None and self.in_transaction:
            log.warning("Unhandled exception with an open transaction: %s", exc_val)
            self.rollback()
        self.close()
        return False  # Never suppress exceptions

    # ------------------------------------------------------------------
    # Pool lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """
        Open the connection pool, retrying with back-off.

        Raises:
            ConnectionLostError: If the pool cannot be opened after all retries.
        """
        if self._pool is not None:
            return
        for attempt in range(1, self._max_retries + 1):
            try:
                log.info(
                    "Connecting to PostgreSQL at %s (attempt %d/%d)",
                    self._settings.describe(), attempt, self._max_retries,
                )
                self._pool = ThreadedConnectionPool(
                    self._settings.min_conn,
                    self._settings.max_conn,
                    cursor_factory=RealDictCursor,
                    **self._settings.connect_kwargs(),
                )
                log.info("Connected to PostgreSQL successfully.")
                return
            except psycopg2.Error as exc:
                log.warning("Connection attempt %d failed: %s", attempt, exc)
                if attempt < self._max_retries:
                    time.sleep(self._retry_delay * attempt)
        raise ConnectionLostError(
            f"Could not connect to PostgreSQL at {self._settings.describe()} "
            f"after {self._max_retries} attempts."
        )

    def close(self) -> None:
        """Close every pooled connection."""
        if self._pool is None:
            return
        try:
            self._pool.closeall()
            log.info("Connection pool closed.")
        except psycopg2.Error as exc:
            log.warning("Error while closing the pool: %s", exc)
        self._pool = None
        self._tx_conn = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None and not self._pool.closed

    def _ensure_connected(self) -> ThreadedConnectionPool:
        if not self.is_connected:
            raise ConnectionLostError(
                "Connection pool is not open. Call connect() first."
            )
        assert self._pool is not None
        return self._pool

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        """
        Execute one statement and return its rows and row count.

        Args:
            sql:    SQL statement with ``$n`` placeholders.
            params: Positional parameter values (optional).

        Raises:
            ConnectionLostError: If the pool is not open.
            DatabaseError: On PostgreSQL execution errors.
        """
        pool = self._ensure_connected()
        driver_sql, driver_params = translate_placeholders(sql, params)
        sql_log.debug("%s | %d param(s)", " ".join(sql.split()), len(driver_params or ()))

        with self._tx_lock:
            if self._tx_conn is not None:
                return self._execute(self._tx_conn, driver_sql, driver_params)

        conn = pool.getconn()
        try:
            result = self._execute(conn, driver_sql, driver_params)
            conn.commit()
            return result
        except Exception:
            self._safe_rollback(conn)
            raise
        finally:
            pool.putconn(conn)

    @staticmethod
    def _execute(conn: Any, sql: str, params: tuple[Any, ...] | None) -> QueryResult:
        try:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
                rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
                return QueryResult(rows=rows, rowcount=cursor.rowcount)
        except psycopg2.Error as exc:
            log.error("SQL execution error: %s | SQL: %.500s", exc, sql)
            raise DatabaseError(str(exc).strip()) from exc

    @staticmethod
    def _safe_rollback(conn: Any) -> None:
        try:
            conn.rollback()
            log.debug("Transaction rolled back.")
        except psycopg2.Error as exc:
            log.warning("Rollback failed: %s", exc)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._tx_conn is not None

    def begin(self) -> None:
        """
        Reserve a pooled connection for an explicit transaction.

        Raises:
            AlreadyInTransactionError: If this wrapper already holds one.
        """
        pool = self._ensure_connected()
        with self._state_lock:
            if self._tx_conn is not None:
                raise AlreadyInTransactionError()
            self._tx_conn = pool.getconn()
        log.debug("Transaction started.")

    def commit(self) -> None:
        conn = self._release_transaction()
        try:
            conn.commit()
            log.debug("Transaction committed.")
        except psycopg2.Error as exc:
            self._safe_rollback(conn)
            raise DatabaseError(f"Commit failed: {exc}") from exc
        finally:
            self._return(conn)

    def rollback(self) -> None:
        conn = self._release_transaction()
        try:
            self._safe_rollback(conn)
        finally:
            self._return(conn)

    def _release_transaction(self) -> Any:
        with self._state_lock:
            if self._tx_conn is None:
                raise NoActiveTransactionError()
            conn, self._tx_conn = self._tx_conn, None
        return conn

    def _return(self, conn: Any) -> None:
        if self._pool is not None:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator["Connection", None, None]:
        """
        Explicit transaction block.

        Commits on clean exit, rolls back on any exception.

        Example::

            with conn.transaction():
                conn.query("INSERT INTO ...", [...])
                conn.query("INSERT INTO ...", [...])
            # auto-committed
        """
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    def with_transaction(self, fn: Callable[[], T]) -> T:
        """Run *fn* inside a transaction and return its result."""
        with self.transaction():
            return fn()

    def health_check(self) -> bool:
        """Return True if ``SELECT 1`` succeeds."""
        try:
            return self.query("SELECT 1 AS ok").first() is not None
        except DatabaseError as exc:
            log.error("Health check failed: %s", exc)
            return False
