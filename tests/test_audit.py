from __future__ import annotations

import json
import logging

import pytest

from bulkflow.audit import LogEntry, LoggerSink, LogHeader, SqlLogSink
from bulkflow.db.session import DbSession
from bulkflow.records import FailureKind, Record, RecordFailure


def _header(**overrides) -> LogHeader:
    values = dict(
        run_id="run-1",
        operation="create",
        total_records=3,
        succeeded=2,
        failed=1,
        attempt=0,
        started_at=10.0,
        finished_at=12.5,
        outcome="partial_success",
    )
    values.update(overrides)
    return LogHeader(**values)


def _entry() -> LogEntry:
    failure = RecordFailure(Record("account", {"name": "r1", "amount": 5}), "duplicate", FailureKind.DML_FAILURE, 1)
    return LogEntry.from_failure("run-1", failure)


@pytest.fixture
def log_tables(table_factory) -> tuple[str, str]:
    header_table = table_factory(
        """
        run_id VARCHAR(64) NOT NULL,
        operation VARCHAR(16) NOT NULL,
        total_records INT NOT NULL,
        succeeded INT NOT NULL,
        failed INT NOT NULL,
        attempt INT NOT NULL,
        started_at DOUBLE PRECISION NOT NULL,
        finished_at DOUBLE PRECISION NOT NULL,
        outcome VARCHAR(32) NOT NULL
        """
    )
    entry_table = table_factory(
        """
        run_id VARCHAR(64) NOT NULL,
        record_type VARCHAR(64) NOT NULL,
        record_json TEXT NOT NULL,
        error TEXT NOT NULL,
        failure_kind VARCHAR(32) NOT NULL,
        attempt INT NOT NULL
        """
    )
    return header_table, entry_table


class TestLogEntry:
    def test_from_failure_copies_record_fields(self) -> None:
        entry = _entry()
        assert entry.record == {"name": "r1", "amount": 5}
        assert entry.failure_kind == "dml_failure"
        assert entry.attempt == 1


class TestLoggerSink:
    """Tests for the logging-backed sink."""

    def test_header_is_logged_with_structured_extra(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="bulkflow.audit"):
            LoggerSink().write_header(_header())

        (record,) = caplog.records
        assert record.bulkflow_header["run_id"] == "run-1"
        assert "partial_success" in record.getMessage()

    def test_entries_are_logged_as_warnings(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="bulkflow.audit"):
            LoggerSink().write_entries([_entry(), _entry()])

        assert [r.levelno for r in caplog.records] == [logging.WARNING, logging.WARNING]
        assert caplog.records[0].bulkflow_entry["error"] == "duplicate"


class TestSqlLogSink:
    """Tests for the table-backed sink."""

    def test_writes_header_and_entries(self, engine, log_tables) -> None:
        header_table, entry_table = log_tables
        sink = SqlLogSink(engine, header_table, entry_table)

        sink.write_header(_header())
        sink.write_entries([_entry()])
        sink.write_entries([])

        with DbSession(engine) as session:
            headers = session.fetch_all(f"SELECT run_id, succeeded, outcome FROM {header_table}")
            entries = session.fetch_all(f"SELECT record_json, failure_kind FROM {entry_table}")

        assert headers == [{"run_id": "run-1", "succeeded": 2, "outcome": "partial_success"}]
        assert json.loads(entries[0]["record_json"]) == {"amount": 5, "name": "r1"}
        assert entries[0]["failure_kind"] == "dml_failure"

    def test_rejects_unsafe_table_names(self, engine) -> None:
        with pytest.raises(ValueError):
            SqlLogSink(engine, header_table="log; DROP TABLE x")
