from __future__ import annotations

from ..metrics.registry import (
    CHECKPOINTS_TOTAL,
    DB_WRITE_LATENCY_SECONDS,
    DB_WRITE_TOTAL,
)


def observe_db_write(table: str, op_type: str, status: str, latency_s: float) -> None:
    DB_WRITE_TOTAL.labels(table=table, op_type=op_type, status=status).inc()
    DB_WRITE_LATENCY_SECONDS.labels(table=table, op_type=op_type).observe(latency_s)


def observe_checkpoint(event: str) -> None:
    CHECKPOINTS_TOTAL.labels(event=event).inc()
