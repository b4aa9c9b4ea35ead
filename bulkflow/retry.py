from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, Sequence

from .config import ProcessorConfig
from .context import ExecutionContext
from .metrics import observe_retry
from .records import OperationKind, Record, RecordFailure

logger = logging.getLogger(__name__)

JOB_KIND_RUN = "run"
JOB_KIND_RETRY = "retry"


class JobQueue(Protocol):
    """The asynchronous job facility: run a payload now, or after a delay."""

    def enqueue(self, payload: Mapping[str, Any]) -> str:
        ...

    def schedule_after(self, delay_s: float, payload: Mapping[str, Any]) -> str:
        ...


def backoff_delay(base_delay_s: float, attempt: int) -> float:
    """Delay before the retry that follows a failure at ``attempt`` (0-indexed)."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return base_delay_s * (2 ** attempt)


@dataclass
class RetryJob:
    """
    One failed record waiting for its next attempt.

    ``attempt`` is the attempt the job will run as. ``config`` is the
    originating configuration payload, which never carries the rollback flag.
    """
    run_id: str
    operation: OperationKind
    record: Record
    attempt: int
    eligible_at: float
    config: dict[str, Any]
    pipeline: str = "default"
    job_id: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": JOB_KIND_RETRY,
            "run_id": self.run_id,
            "operation": self.operation.value,
            "records": [self.record.snapshot()],
            "attempt": self.attempt,
            "eligible_at": self.eligible_at,
            "config": dict(self.config),
            "pipeline": self.pipeline,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], job_id: Optional[str] = None) -> "RetryJob":
        (snapshot,) = payload["records"]
        return cls(
            run_id=payload["run_id"],
            operation=OperationKind(payload["operation"]),
            record=Record.from_snapshot(snapshot),
            attempt=int(payload["attempt"]),
            eligible_at=float(payload["eligible_at"]),
            config=dict(payload["config"]),
            pipeline=payload.get("pipeline", "default"),
            job_id=job_id,
        )


def run_payload(config: ProcessorConfig, run_id: str, attempt: int = 0) -> dict[str, Any]:
    """Payload handed to the job facility by Processor.run_async()."""
    return {
        "kind": JOB_KIND_RUN,
        "run_id": run_id,
        "operation": config.operation.value,
        "records": [record.snapshot() for record in config.records],
        "attempt": attempt,
        "config": config.to_payload(),
        "pipeline": config.pipeline,
    }


@dataclass
class RetryDecision:
    scheduled: list[RetryJob] = field(default_factory=list)
    terminal: list[RecordFailure] = field(default_factory=list)


class RetryScheduler:
    """
    Decides what happens to the failures of one pass.

    Failures are terminal when retries are disabled, the run's attempt has
    reached max_retry, or there is no job queue to schedule on (the processor
    has then already retried them inline). Otherwise one RetryJob per failed
    record is scheduled ``base_delay * 2 ** attempt`` seconds out and the run
    returns with its partial results.
    """

    def __init__(
        self,
        job_queue: Optional[JobQueue] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.job_queue = job_queue
        self.clock = clock

    def capture(
        self,
        failures: Sequence[RecordFailure],
        context: ExecutionContext,
        config: ProcessorConfig,
    ) -> RetryDecision:
        decision = RetryDecision()
        if not failures:
            return decision

        if not config.retries_enabled or context.attempt >= config.max_retry or self.job_queue is None:
            for failure in failures:
                failure.terminal = True
            decision.terminal = list(failures)
            observe_retry(context.operation, 0, len(failures))
            return decision

        delay = backoff_delay(config.base_delay_s, context.attempt)
        eligible_at = self.clock() + delay
        config_payload = config.to_payload()
        for failure in failures:
            job = RetryJob(
                run_id=context.run_id,
                operation=context.operation,
                record=failure.record,
                attempt=context.attempt + 1,
                eligible_at=eligible_at,
                config=config_payload,
                pipeline=config.pipeline,
            )
            job.job_id = self.job_queue.schedule_after(delay, job.to_payload())
            decision.scheduled.append(job)

        context.retry_jobs.extend(decision.scheduled)
        observe_retry(context.operation, len(decision.scheduled), 0)
        logger.info(
            "Run %s scheduled %d retry job(s) for attempt %d in %.1fs",
            context.run_id,
            len(decision.scheduled),
            context.attempt + 1,
            delay,
        )
        return decision
