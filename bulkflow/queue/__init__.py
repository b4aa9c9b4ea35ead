from __future__ import annotations

from ..config import QueueConfig
from .consumer import JobConsumer
from .models import QueuedJob
from .redis_jobs import RedisJobQueue

__all__ = [
    "QueueConfig",
    "QueuedJob",
    "RedisJobQueue",
    "JobConsumer",
]
