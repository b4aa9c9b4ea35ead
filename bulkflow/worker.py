from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any, Mapping, Optional, Protocol

from .audit import LogSink
from .config import ProcessorConfig
from .errors import BulkflowError
from .executor import RecordStore
from .pipeline import Pipeline, PipelineRegistry
from .processor import Processor
from .queue.models import QueuedJob
from .records import Record
from .retry import JOB_KIND_RETRY, JobQueue

logger = logging.getLogger(__name__)


class AckingJobQueue(JobQueue, Protocol):
    """A job facility whose claimed jobs are deleted by ack()."""

    def ack(self, job: QueuedJob) -> None:
        ...


def _group_key(payload: Mapping[str, Any]) -> tuple:
    return (
        payload.get("kind", JOB_KIND_RETRY),
        payload["run_id"],
        int(payload["attempt"]),
        payload.get("pipeline", "default"),
        json.dumps(payload["config"], sort_keys=True),
    )


class ScheduledRetryExecutor:
    """
    Job body for queued runs and due retry jobs.

    Retry jobs that share a run id, attempt and configuration are folded into
    one fresh Processor run over just those records. The rebuilt run never
    has rollback enabled and always runs synchronously inside the job; its
    own RetryScheduler schedules the next attempt or makes failures terminal.

    Groups are independent. A group whose run aborts with a BulkflowError
    (a hook or validator error) is logged and the remaining groups still run.
    Through handle(), the jobs of each group are acknowledged as soon as its
    run returned, aborted or not, so no executed job is claimed twice.

    Usage:
        executor = ScheduledRetryExecutor(store, consumer.queue, PipelineRegistry([pipeline]))
        consumer.run(handler=executor.handle)
    """

    def __init__(
        self,
        store: RecordStore,
        job_queue: AckingJobQueue,
        pipelines: Optional[PipelineRegistry] = None,
        sink: Optional[LogSink] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.job_queue = job_queue
        self.pipelines = pipelines if pipelines is not None else PipelineRegistry()
        self.sink = sink
        self.clock = clock
        self.sleep = sleep

    def handle(self, jobs: Sequence[QueuedJob]) -> list[Processor]:
        """Consumer handler: runs claimed jobs group by group, acking each group once it ran."""
        groups: dict[tuple, list[QueuedJob]] = {}
        for job in jobs:
            groups.setdefault(_group_key(job.payload), []).append(job)

        processors = []
        for key, members in groups.items():
            processors.append(self._run_group(key, [job.payload for job in members]))
            for job in members:
                self.job_queue.ack(job)
        return processors

    def execute(self, payloads: Sequence[Mapping[str, Any]]) -> list[Processor]:
        """Run already-dequeued payloads."""
        groups: dict[tuple, list[Mapping[str, Any]]] = {}
        for payload in payloads:
            groups.setdefault(_group_key(payload), []).append(payload)
        return [self._run_group(key, members) for key, members in groups.items()]

    def _run_group(self, key: tuple, members: Sequence[Mapping[str, Any]]) -> Processor:
        kind, run_id, attempt, pipeline_name, _ = key
        records = [
            Record.from_snapshot(snapshot)
            for payload in members
            for snapshot in payload["records"]
        ]
        config = ProcessorConfig.from_payload(members[0]["config"], records, asynchronous=False)
        processor = Processor(
            self.store,
            config,
            pipeline=self._pipeline(pipeline_name),
            job_queue=self.job_queue,
            sink=self.sink,
            clock=self.clock,
            sleep=self.sleep,
            run_id=run_id,
            attempt=attempt,
        )
        logger.info(
            "Executing %s job(s) for run %s: %d record(s) at attempt %d",
            kind,
            run_id,
            len(records),
            attempt,
        )
        try:
            processor.run_now()
        except BulkflowError:
            logger.exception("Run %s aborted at attempt %d", run_id, attempt)
        return processor

    def _pipeline(self, name: str) -> Pipeline:
        if name in self.pipelines:
            return self.pipelines.get(name)
        logger.warning("No pipeline registered as %r; running without hooks or validators", name)
        return Pipeline(name=name)
