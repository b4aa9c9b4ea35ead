from __future__ import annotations

from ..records import ChunkOutcome, OperationKind
from .registry import (
    CHUNK_LATENCY_SECONDS,
    RECORDS_TOTAL,
    RETRY_EXHAUSTED_TOTAL,
    RETRY_JOBS_SCHEDULED_TOTAL,
)


def observe_chunk(operation: OperationKind, outcome: ChunkOutcome, latency_s: float) -> None:
    try:
        RECORDS_TOTAL.labels(operation=operation.value, status="success").inc(len(outcome.succeeded))
        RECORDS_TOTAL.labels(operation=operation.value, status="failure").inc(len(outcome.failed))
        CHUNK_LATENCY_SECONDS.labels(operation=operation.value).observe(latency_s)
    except Exception:
        # Metrics must never mask real errors
        pass


def observe_retry(operation: OperationKind, scheduled: int, exhausted: int) -> None:
    try:
        if scheduled:
            RETRY_JOBS_SCHEDULED_TOTAL.labels(operation=operation.value).inc(scheduled)
        if exhausted:
            RETRY_EXHAUSTED_TOTAL.labels(operation=operation.value).inc(exhausted)
    except Exception:
        pass


__all__ = ["observe_chunk", "observe_retry"]
