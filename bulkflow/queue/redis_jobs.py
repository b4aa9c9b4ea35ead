from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from typing import Any, Mapping, Optional

from redis import Redis
from redis.exceptions import RedisError

from ..config import QueueConfig
from ..errors import QueueError
from ..metrics.registry import (
    QUEUE_CLAIM_LATENCY_SECONDS,
    QUEUE_JOBS_ACK_TOTAL,
    QUEUE_JOBS_CLAIMED_TOTAL,
    QUEUE_JOBS_SCHEDULED_TOTAL,
)
from .models import QueuedJob


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


# KEYS: source set, executing set, payload hash. ARGV: job id, claim time.
# Returns the payload, or nil if the job was already taken or has no payload.
CLAIM_SCRIPT = """
if redis.call("ZREM", KEYS[1], ARGV[1]) == 0 then
    return false
end
local body = redis.call("HGET", KEYS[3], ARGV[1])
if not body then
    return false
end
redis.call("ZADD", KEYS[2], ARGV[2], ARGV[1])
return body
"""


class RedisJobQueue:
    """
    Delayed job queue on Redis.

    Layout, under ``config.queue_key``:
        <key>:pending    sorted set, job id scored by eligible-at (epoch seconds)
        <key>:executing  sorted set, job id scored by claim time
        <key>:payloads   hash, job id -> JSON payload

    Claiming a job moves it from the pending set to the executing set in one
    Lua script (ZREM, HGET, ZADD). The script runs atomically, so when several
    consumers race for the same job exactly one of them gets it, and a crash
    never leaves a job in neither set. A claimed job stays in the executing
    set until ack(), which deletes it for good.

    All Redis failures are raised as QueueError.
    """

    def __init__(
        self,
        redis: Redis,
        config: QueueConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self.config = config
        self.clock = clock
        self._pending = f"{config.queue_key}:pending"
        self._executing = f"{config.queue_key}:executing"
        self._payloads = f"{config.queue_key}:payloads"
        self._claim = redis.register_script(CLAIM_SCRIPT)

    def enqueue(self, payload: Mapping[str, Any]) -> str:
        """Make a job due immediately. Returns its job id."""
        return self.schedule_after(0, payload)

    def schedule_after(self, delay_s: float, payload: Mapping[str, Any]) -> str:
        """
        Store a job that becomes due ``delay_s`` seconds from now.

        Raises:
            QueueError: If the payload is not JSON serializable or Redis fails
        """
        if delay_s < 0:
            raise QueueError("delay_s must be >= 0")
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            raise QueueError(f"payload is not JSON serializable: {exc}") from exc

        job_id = uuid.uuid4().hex
        eligible_at = self.clock() + delay_s
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(self._payloads, job_id, body)
            pipe.zadd(self._pending, {job_id: eligible_at})
            pipe.execute()
        except RedisError as exc:
            raise QueueError(f"failed to schedule job: {exc}") from exc

        QUEUE_JOBS_SCHEDULED_TOTAL.labels(queue=self.config.queue_key).inc()
        return job_id

    def claim_due(self, count: Optional[int] = None, now: Optional[float] = None) -> list[QueuedJob]:
        """
        Claim up to ``count`` jobs whose eligible-at has passed, oldest first.

        Each returned job belongs to this caller alone and must be ack()ed
        once it was executed.
        """
        start_time = time.monotonic()
        now = self.clock() if now is None else now
        count = count if count is not None else self.config.max_read_count
        if count <= 0:
            raise QueueError("count must be > 0")

        jobs: list[QueuedJob] = []
        try:
            due = self.redis.zrangebyscore(self._pending, "-inf", now, start=0, num=count, withscores=True)
            for raw_id, eligible_at in due:
                job_id = _decode(raw_id)
                body = self._move(self._pending, job_id, now)
                if body is None:
                    # another consumer won the race
                    continue
                jobs.append(QueuedJob(job_id, json.loads(body), float(eligible_at), now))
        except RedisError as exc:
            raise QueueError(f"failed to claim jobs: {exc}") from exc

        if jobs:
            QUEUE_JOBS_CLAIMED_TOTAL.labels(queue=self.config.queue_key).inc(len(jobs))
            QUEUE_CLAIM_LATENCY_SECONDS.labels(queue=self.config.queue_key).observe(
                time.monotonic() - start_time
            )
        return jobs

    def ack(self, job: QueuedJob) -> None:
        """Delete an executed job. Acknowledging twice is harmless."""
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.zrem(self._executing, job.job_id)
            pipe.hdel(self._payloads, job.job_id)
            removed, _ = pipe.execute()
        except RedisError as exc:
            raise QueueError(f"failed to ack job {job.job_id}: {exc}") from exc

        if removed:
            QUEUE_JOBS_ACK_TOTAL.labels(queue=self.config.queue_key).inc()

    def claim_stale(self, min_idle_ms: int, count: int = 1) -> list[QueuedJob]:
        """
        Take over jobs claimed more than ``min_idle_ms`` ago and never acked.

        This re-executes work whose worker died mid-job, so the mutation may
        be applied twice; it is a recovery tool, not part of the hot path.
        """
        now = self.clock()
        cutoff = now - min_idle_ms / 1000.0
        jobs: list[QueuedJob] = []
        try:
            stale = self.redis.zrangebyscore(self._executing, "-inf", cutoff, start=0, num=count)
            for raw_id in stale:
                job_id = _decode(raw_id)
                body = self._move(self._executing, job_id, now)
                if body is None:
                    continue
                payload = json.loads(body)
                jobs.append(QueuedJob(job_id, payload, float(payload.get("eligible_at", now)), now))
        except RedisError as exc:
            raise QueueError(f"failed to claim stale jobs: {exc}") from exc

        if jobs:
            QUEUE_JOBS_CLAIMED_TOTAL.labels(queue=self.config.queue_key).inc(len(jobs))
        return jobs

    def _move(self, source: str, job_id: str, now: float) -> Optional[bytes]:
        return self._claim(keys=[source, self._executing, self._payloads], args=[job_id, now])

    def pending_count(self) -> int:
        try:
            return int(self.redis.zcard(self._pending))
        except RedisError as exc:
            raise QueueError(str(exc)) from exc

    def executing_count(self) -> int:
        try:
            return int(self.redis.zcard(self._executing))
        except RedisError as exc:
            raise QueueError(str(exc)) from exc

    def eligible_at(self, job_id: str) -> Optional[float]:
        """Eligible-at of a pending job, or None if it is not pending."""
        try:
            score = self.redis.zscore(self._pending, job_id)
        except RedisError as exc:
            raise QueueError(str(exc)) from exc
        return None if score is None else float(score)
