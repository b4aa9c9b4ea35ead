from __future__ import annotations

from fakes import FakeJobQueue, FakeStore, FixedClock

from bulkflow.config import ProcessorConfig
from bulkflow.metrics import observe_chunk
from bulkflow.metrics.registry import (
    CHUNK_LATENCY_SECONDS,
    RECORDS_TOTAL,
    RETRY_EXHAUSTED_TOTAL,
    RETRY_JOBS_SCHEDULED_TOTAL,
)
from bulkflow.processor import Processor
from bulkflow.records import ChunkOutcome, OperationKind, Record, RecordFailure


def _value(metric, **labels) -> float:
    return metric.labels(**labels)._value.get()


class TestObserveChunk:
    """Tests for observe_chunk() function."""

    def test_counts_succeeded_and_failed_records(self) -> None:
        ok = _value(RECORDS_TOTAL, operation="delete", status="success")
        bad = _value(RECORDS_TOTAL, operation="delete", status="failure")
        outcome = ChunkOutcome(
            succeeded=[Record("a"), Record("a")],
            failed=[RecordFailure(Record("a"), "x")],
        )

        observe_chunk(OperationKind.DELETE, outcome, 0.01)

        assert _value(RECORDS_TOTAL, operation="delete", status="success") == ok + 2
        assert _value(RECORDS_TOTAL, operation="delete", status="failure") == bad + 1
        assert len(list(CHUNK_LATENCY_SECONDS.labels(operation="delete").collect())) > 0


class TestRunMetrics:
    """Metrics emitted by processor runs."""

    def test_scheduled_and_exhausted_retries(self, make_records) -> None:
        scheduled = _value(RETRY_JOBS_SCHEDULED_TOTAL, operation="update")
        exhausted = _value(RETRY_EXHAUSTED_TOTAL, operation="update")
        clock = FixedClock()
        store = FakeStore(fail_when=lambda r, op: "missing")

        Processor(
            store,
            ProcessorConfig(operation=OperationKind.UPDATE, records=make_records(2), retries_enabled=True, max_retry=1),
            job_queue=FakeJobQueue(clock),
            clock=clock,
        ).run_now()
        Processor(
            store,
            ProcessorConfig(operation=OperationKind.UPDATE, records=make_records(3)),
        ).run_now()

        assert _value(RETRY_JOBS_SCHEDULED_TOTAL, operation="update") == scheduled + 2
        assert _value(RETRY_EXHAUSTED_TOTAL, operation="update") == exhausted + 3
