from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Protocol, Sequence

from sqlalchemy.engine import Engine

from .db.helpers import _validate_identifier
from .db.session import DbSession
from .records import RecordFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogHeader:
    """Run-level audit metadata, written once at run completion."""
    run_id: str
    operation: str
    total_records: int
    succeeded: int
    failed: int
    attempt: int
    started_at: float
    finished_at: float
    outcome: str


@dataclass(frozen=True)
class LogEntry:
    """Error detail for one failing record."""
    run_id: str
    record_type: str
    record: dict[str, Any]
    error: str
    failure_kind: str
    attempt: int

    @classmethod
    def from_failure(cls, run_id: str, failure: RecordFailure) -> "LogEntry":
        return cls(
            run_id=run_id,
            record_type=failure.record.record_type,
            record=dict(failure.record.fields),
            error=failure.error,
            failure_kind=failure.kind.value,
            attempt=failure.attempt,
        )


class LogSink(Protocol):
    """
    Write-only audit sink.

    The processor treats sinks as fire-and-forget: an exception raised here is
    logged and does not fail the run.
    """

    def write_header(self, header: LogHeader) -> None:
        ...

    def write_entries(self, entries: Sequence[LogEntry]) -> None:
        ...


class LoggerSink:
    """Sink that emits audit artifacts as structured ``logging`` records."""

    def __init__(self, name: str = "bulkflow.audit") -> None:
        self._logger = logging.getLogger(name)

    def write_header(self, header: LogHeader) -> None:
        self._logger.info(
            "run %s %s: %d records, %d succeeded, %d failed (%s)",
            header.run_id,
            header.operation,
            header.total_records,
            header.succeeded,
            header.failed,
            header.outcome,
            extra={"bulkflow_header": asdict(header)},
        )

    def write_entries(self, entries: Sequence[LogEntry]) -> None:
        for entry in entries:
            self._logger.warning(
                "run %s %s record failed (%s): %s",
                entry.run_id,
                entry.record_type,
                entry.failure_kind,
                entry.error,
                extra={"bulkflow_entry": asdict(entry)},
            )


class SqlLogSink:
    """
    Sink appending headers and entries to two tables.

    Expected columns:
        header table: run_id, operation, total_records, succeeded, failed,
                      attempt, started_at, finished_at, outcome
        entry table:  run_id, record_type, record_json, error, failure_kind, attempt

    Table names MUST be trusted identifiers; they are validated and then
    interpolated into SQL.
    """

    def __init__(
        self,
        engine: Engine,
        header_table: str = "bulkflow_log_header",
        entry_table: str = "bulkflow_log_entry",
    ) -> None:
        self.engine = engine
        self.header_table = _validate_identifier(header_table, "table")
        self.entry_table = _validate_identifier(entry_table, "table")

    def write_header(self, header: LogHeader) -> None:
        sql = (
            f"INSERT INTO {self.header_table} "
            "(run_id, operation, total_records, succeeded, failed, attempt, "
            "started_at, finished_at, outcome) VALUES "
            "(:run_id, :operation, :total_records, :succeeded, :failed, :attempt, "
            ":started_at, :finished_at, :outcome)"
        )
        with DbSession(self.engine) as session:
            session.execute(sql, asdict(header))

    def write_entries(self, entries: Sequence[LogEntry]) -> None:
        if not entries:
            return
        sql = (
            f"INSERT INTO {self.entry_table} "
            "(run_id, record_type, record_json, error, failure_kind, attempt) VALUES "
            "(:run_id, :record_type, :record_json, :error, :failure_kind, :attempt)"
        )
        with DbSession(self.engine) as session:
            for entry in entries:
                params = asdict(entry)
                params["record_json"] = json.dumps(params.pop("record"), sort_keys=True, default=str)
                session.execute(sql, params)
