from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Sequence
from typing import Optional

from redis import Redis

from ..config import QueueConfig
from ..errors import QueueError
from .models import QueuedJob
from .redis_jobs import RedisJobQueue


class JobConsumer:
    """
    Control-flow wrapper that drains due jobs from a RedisJobQueue.

    It coordinates:
    - Claiming due jobs in batches
    - Shutdown behavior
    - Delivery to user code

    It deliberately avoids retries of its own: a job that fails is rescheduled
    by the processor it runs, never by this loop.

    Usage:
        consumer = JobConsumer(redis_client, config)

        # Option 1: Manual control
        while True:
            jobs = consumer.next()
            if not jobs:
                continue
            ...
            for job in jobs:
                consumer.ack(job)

        # Option 2: Template method
        executor = ScheduledRetryExecutor(store, consumer.queue, registry)
        consumer.run(handler=executor.handle)
    """

    def __init__(
        self,
        redis: Redis,
        config: QueueConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._queue = RedisJobQueue(redis, config, clock)
        self._stopping = threading.Event()

    @property
    def queue(self) -> RedisJobQueue:
        return self._queue

    def next(self, block_ms: Optional[int] = None) -> list[QueuedJob]:
        """
        Claim the next batch of due jobs.

        If nothing is due, waits up to ``block_ms`` (default config.block_ms)
        and returns an empty list; stop() interrupts the wait.

        Raises:
            QueueError: If Redis fails or block_ms is invalid
        """
        if self._stopping.is_set():
            return []

        actual_block_ms = block_ms if block_ms is not None else self.config.block_ms
        if not isinstance(actual_block_ms, int) or actual_block_ms <= 0:
            raise QueueError("block_ms must be a positive integer (> 0)")

        jobs = self._queue.claim_due(count=self.config.max_read_count)
        if not jobs:
            self._stopping.wait(actual_block_ms / 1000.0)
        return jobs

    def iter_jobs(self) -> Iterator[list[QueuedJob]]:
        """
        Yield non-empty batches of due jobs until stopped.

        Propagates all exceptions.
        """
        while not self._stopping.is_set():
            jobs = self.next(block_ms=self.config.block_ms)
            if not jobs:
                continue
            yield jobs

    def ack(self, job: QueuedJob) -> None:
        """Explicitly acknowledge (delete) an executed job."""
        self._queue.ack(job)

    def stop(self) -> None:
        """
        Signal graceful shutdown.

        No new claims are made; jobs already claimed but not acknowledged
        stay in the executing set and can be recovered with recover_stale().
        """
        self._stopping.set()

    def run(self, *, handler: Callable[[Sequence[QueuedJob]], object]) -> None:
        """
        Template-method runner:
        1) claim a batch of due jobs
        2) handler(jobs)
        3) ack every job of the batch

        - Does not retry
        - Does not swallow handler exceptions (re-raises); jobs the handler
          did not ack itself stay in the executing set
        - Acknowledges only after the handler returned. A handler may ack
          jobs earlier, as ScheduledRetryExecutor.handle does per run;
          acking twice is harmless
        """
        while not self._stopping.is_set():
            jobs = self.next(block_ms=self.config.block_ms)
            if not jobs:
                continue

            handler(jobs)
            for job in jobs:
                self.ack(job)

    def run_once(self, *, handler: Callable[[Sequence[QueuedJob]], object]) -> int:
        """Process at most one batch without waiting. Returns the number of jobs handled."""
        jobs = self._queue.claim_due(count=self.config.max_read_count)
        if not jobs:
            return 0
        handler(jobs)
        for job in jobs:
            self.ack(job)
        return len(jobs)

    def recover_stale(self, min_idle_ms: Optional[int] = None, count: int = 1) -> list[QueuedJob]:
        """
        Claim jobs that were claimed longer than min_idle_ms ago and never acked.

        Best-effort and explicit: call it periodically from user code.
        """
        actual_min_idle_ms = min_idle_ms if min_idle_ms is not None else self.config.claim_idle_ms
        return self._queue.claim_stale(min_idle_ms=actual_min_idle_ms, count=count)
