from __future__ import annotations

from typing import Any, Mapping, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.base import NestedTransaction
from sqlalchemy.sql.elements import TextClause

from .session import _run_write


class DbTx(Protocol):
    """
    Protocol shared by DbSession and DbTransaction.

    The record store only needs statement execution and savepoints, so it can
    run a chunk inside either a short-lived session or a long-lived
    checkpoint transaction.
    """

    def savepoint(self) -> NestedTransaction:
        """Begin a savepoint usable as a context manager."""
        ...

    def execute(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> int:
        """Execute a non-SELECT statement and return affected row count."""
        ...

    def execute_insert(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Execute an INSERT and return the generated row id, if any."""
        ...

    def fetch_one(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Execute a SELECT expected to return 0 or 1 row."""
        ...


class DbTransaction:
    """
    Database transaction with explicit commit/rollback methods.

    This class provides the same SQL execution interface as DbSession
    but with explicit commit() and rollback() methods instead of
    context manager semantics. Rollback-mode runs keep one DbTransaction
    open across every chunk so that the whole run can be undone later.

    The transaction begins on construction and must be explicitly
    committed or rolled back. After commit or rollback, the connection
    is closed and the transaction cannot be used again.

    Usage:
        factory = DbFactory(engine)
        tx = factory.begin()
        try:
            tx.execute("INSERT INTO ...", {...})
            tx.commit()
        except Exception:
            tx.rollback()
            raise
    """

    def __init__(self, engine: Engine) -> None:
        """
        Initialize and begin a new transaction.

        Args:
            engine: SQLAlchemy Engine instance
        """
        self.engine = engine
        self._conn: Connection | None = None
        self._tx = None
        self._closed = False

        # Begin transaction immediately
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()

    @property
    def closed(self) -> bool:
        return self._closed

    def _connection(self) -> Connection:
        """Get the active connection, raising if closed."""
        if self._closed or self._conn is None:
            raise RuntimeError("Transaction is closed")
        return self._conn

    def _close(self) -> None:
        self._closed = True
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._tx = None

    def commit(self) -> None:
        """
        Commit the transaction and close the connection.

        Raises:
            RuntimeError: If transaction is already closed
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")

        try:
            if self._tx is not None:
                self._tx.commit()
        except Exception:
            # Best-effort rollback on commit failure; the commit error is what matters
            try:
                if self._tx is not None:
                    self._tx.rollback()
            except Exception:
                pass
            raise
        finally:
            self._close()

    def rollback(self) -> None:
        """
        Rollback the transaction and close the connection.

        Raises:
            RuntimeError: If transaction is already closed
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")

        try:
            if self._tx is not None:
                self._tx.rollback()
        finally:
            self._close()

    def savepoint(self) -> NestedTransaction:
        """
        Begin a SAVEPOINT inside this transaction.

        Usable as a context manager, or kept as a handle and rolled back
        explicitly with ``handle.rollback()``.
        """
        return self._connection().begin_nested()

    def execute(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Execute a non-SELECT statement and return affected row count.

        Raises:
            RuntimeError: If transaction is closed or rowcount is None
        """
        result = _run_write(self._connection(), sql, params)
        try:
            if result.rowcount is None:
                raise RuntimeError(
                    "execute() received None rowcount for statement. "
                    "This may indicate a DDL statement or unsupported operation type."
                )
            return int(result.rowcount)
        finally:
            result.close()

    def execute_insert(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        result = _run_write(self._connection(), sql, params)
        try:
            return result.lastrowid
        finally:
            result.close()

    def fetch_one(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Execute a SELECT expected to return 0 or 1 row. Raises if more than one row.

        Raises:
            RuntimeError: If transaction is closed
            MultipleResultsFound: If more than one row is returned
        """
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        result = conn.execute(stmt, params or {})
        try:
            row = result.mappings().one_or_none()
            if row is None:
                return None
            return dict(row)
        finally:
            result.close()

    def fetch_all(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        result = conn.execute(stmt, params or {})
        try:
            return [dict(row) for row in result.mappings()]
        finally:
            result.close()


class DbFactory:
    """
    Factory for creating database transactions.

    Usage:
        factory = DbFactory(engine)
        tx = factory.begin()
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def begin(self) -> DbTransaction:
        """
        Begin a new transaction.

        Returns:
            A new DbTransaction instance with an active transaction
        """
        return DbTransaction(self.engine)
