from dataclasses import dataclass
from typing import Any, Mapping


@dataclass
class QueuedJob:
    """
    A job claimed from the queue.

    The job stays in the queue's executing set until it is acknowledged.
    """
    job_id: str
    payload: Mapping[str, Any]
    eligible_at: float
    claimed_at: float
