from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Dialect, Engine, make_url
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import ArgumentError, NoSuchModuleError
from sqlalchemy.pool import NullPool

from ..config import SinkConfig
from ..errors import ConfigurationError
from .helpers import build_insert, load_dialect, render_sql
from .metrics import observe_db_write
from .models import InsertDescription

logger = logging.getLogger(__name__)


def build_url(config: SinkConfig) -> URL:
    """
    Combine connectionURL, driver and credentials into a SQLAlchemy URL.

    The driver replaces whatever driver the URL names. Credentials are applied only
    when both user and password are set.

    Raises:
        ConfigurationError: If the URL cannot be parsed
    """
    try:
        url = make_url(config.connection_url)
    except ArgumentError as exc:
        raise ConfigurationError(f"Invalid connectionURL: {exc}") from exc

    backend = url.get_backend_name()
    drivername = backend if config.driver == backend else f"{backend}+{config.driver}"
    url = url.set(drivername=drivername)
    if config.has_credentials:
        url = url.set(username=config.user, password=config.password)
    return url


class DbTransaction:
    """
    One destination transaction on the sink's connection.

    The transaction begins on construction and must be explicitly committed or
    rolled back. After either, it cannot be used again; the connection stays open
    for the next transaction.

    Usage:
        tx = db.begin()
        try:
            tx.execute_batch(descriptions)
            tx.commit()
        except Exception:
            tx.rollback()
            raise
    """

    def __init__(self, conn: Connection, debug_dialect: Optional[Dialect] = None) -> None:
        self._conn = conn
        self._debug_dialect = debug_dialect
        self._closed = False
        self._tables: dict[str, int] = {}
        self._start_time: Optional[float] = None
        self._tx = conn.begin()

    @property
    def is_active(self) -> bool:
        return not self._closed

    def _require_open(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction is already closed")

    def execute_batch(self, descriptions: Iterable[InsertDescription]) -> int:
        """
        Execute one INSERT per description, in order.

        Stops at the first failing statement and propagates its error; nothing is
        committed until commit() is called.

        Returns:
            Number of statements executed
        """
        self._require_open()
        if self._start_time is None:
            self._start_time = time.monotonic()

        executed = 0
        for description in descriptions:
            stmt = build_insert(description)
            if self._debug_dialect is not None and logger.isEnabledFor(logging.DEBUG):
                logger.debug("SQL: %s", render_sql(stmt, self._debug_dialect))
            result = self._conn.execute(stmt)
            result.close()
            self._tables[description.table] = self._tables.get(description.table, 0) + 1
            executed += 1
        return executed

    def commit(self) -> None:
        """
        Commit the transaction.

        On commit failure the transaction is rolled back before the error propagates.

        Raises:
            RuntimeError: If transaction is already closed
        """
        self._require_open()
        status = "success"
        try:
            self._tx.commit()
        except Exception:
            status = "error"
            try:
                self._tx.rollback()
            except Exception:
                logger.exception("Failed to rollback after commit failure")
            raise
        finally:
            self._finish(status)

    def rollback(self) -> None:
        """
        Rollback the transaction.

        Raises:
            RuntimeError: If transaction is already closed
        """
        self._require_open()
        try:
            self._tx.rollback()
        finally:
            self._finish("error")

    def _finish(self, status: str) -> None:
        self._closed = True
        self._tx = None
        if self._start_time is None:
            return
        latency = time.monotonic() - self._start_time
        for table_name, statements in self._tables.items():
            observe_db_write(table=table_name, status=status, latency_s=latency, statements=statements)


class DbConnection:
    """
    The single destination connection owned by a sink.

    Autocommit stays off: every write happens inside an explicit DbTransaction.
    No pooling; closing the DbConnection closes the underlying DBAPI connection.
    """

    def __init__(self, engine: Engine, debug_dialect: Optional[Dialect] = None) -> None:
        self.engine = engine
        self._debug_dialect = debug_dialect
        self._conn: Connection | None = engine.connect()
        self._current: DbTransaction | None = None

    @classmethod
    def open(cls, config: SinkConfig, **engine_kwargs: Any) -> "DbConnection":
        """
        Connect to the destination described by the configuration.

        Raises:
            ConfigurationError: If the URL is invalid or the driver cannot be loaded
        """
        url = build_url(config)
        logger.debug("start to initialize driver: %s", url.drivername)
        try:
            engine = create_engine(url, poolclass=NullPool, **engine_kwargs)
        except (NoSuchModuleError, ImportError) as exc:
            raise ConfigurationError(f"Cannot load driver {config.driver!r}: {exc}") from exc

        try:
            return cls(engine, debug_dialect=load_dialect(config.dialect))
        except Exception:
            engine.dispose()
            raise

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("DbConnection is closed")
        return self._conn

    def begin(self) -> DbTransaction:
        """
        Begin a new transaction.

        Raises:
            RuntimeError: If the connection is closed or a transaction is still open
        """
        conn = self._connection()
        if self._current is not None and self._current.is_active:
            raise RuntimeError("A transaction is already active on this connection")
        self._current = DbTransaction(conn, self._debug_dialect)
        return self._current

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            if self._current is not None and self._current.is_active:
                self._current.rollback()
        finally:
            self._conn.close()
            self._conn = None
            self._current = None
            self.engine.dispose()
