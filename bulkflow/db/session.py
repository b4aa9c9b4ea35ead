from __future__ import annotations

import time
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.engine.base import NestedTransaction
from sqlalchemy.sql import TextClause

from .helpers import _parse_sql_operation
from .metrics import observe_db_write


def _run_write(conn: Connection, sql: str | TextClause, params: Mapping[str, Any] | None) -> CursorResult:
    """Execute a write statement on conn and emit DB write metrics."""
    start_time = time.monotonic()
    table_name, op_type = _parse_sql_operation(sql)
    stmt = text(sql) if isinstance(sql, str) else sql
    status = "success"
    try:
        return conn.execute(stmt, params or {})
    except Exception:
        status = "error"
        raise
    finally:
        if op_type != "unknown":
            try:
                observe_db_write(table_name, op_type, status, time.monotonic() - start_time)
            except Exception:
                # Silently ignore metric errors to avoid masking real exceptions
                pass


class DbSession:
    """
    Transactional wrapper around a SQLAlchemy Engine connection.

    Use as:
        with DbSession(engine) as session:
            session.execute(...)
            with session.savepoint():
                session.execute(...)  # rolled back alone if it raises
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._conn: Connection | None = None
        self._tx = None

    def __enter__(self) -> "DbSession":
        if self._conn is not None:
            raise RuntimeError("DbSession is already active; nested sessions are not allowed")
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._tx is not None:
                if exc_type:
                    self._tx.rollback()
                else:
                    self._tx.commit()
        finally:
            if self._conn is not None:
                self._conn.close()

            self._conn = None
            self._tx = None

        # propagate exceptions (if any)
        return False

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("DbSession is not active; use within a context manager")
        return self._conn

    def savepoint(self) -> NestedTransaction:
        """
        Begin a SAVEPOINT inside the session's transaction.

        The returned object is a context manager: it releases the savepoint on
        normal exit and rolls back to it if the block raises.
        """
        return self._connection().begin_nested()

    def execute(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Execute a non-SELECT statement and return affected row count.
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
        """
        Execute an INSERT and return the generated row id, if the driver reports one.
        """
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
        """
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        result = conn.execute(stmt, params or {})
        row = result.mappings().one_or_none()
        if row is None:
            return None
        return dict(row)

    def fetch_all(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Execute a SELECT expected to return multiple rows.
        """
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        result = conn.execute(stmt, params or {})
        return [dict(row) for row in result.mappings()]
