from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from .audit import LogEntry
from .records import ChunkOutcome, OperationKind, Record, RecordFailure


@dataclass
class ExecutionContext:
    """
    Mutable state of one processor run.

    Owned by a single Processor; hooks and validators receive it but it is
    never shared between runs.
    """
    operation: OperationKind
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempt: int = 0
    succeeded: list[Record] = field(default_factory=list)
    failures: list[RecordFailure] = field(default_factory=list)
    log_entries: list[LogEntry] = field(default_factory=list)
    chunk_index: int = -1
    chunks_processed: int = 0
    checkpoint: Optional[Any] = None
    retry_jobs: list[Any] = field(default_factory=list)
    hook_errors: list[Any] = field(default_factory=list)
    # free-form scratch space for hooks
    attributes: dict[str, Any] = field(default_factory=dict)

    def merge(self, outcome: ChunkOutcome) -> None:
        """Fold one chunk's outcome into the run accumulators, in chunk order."""
        self.succeeded.extend(outcome.succeeded)
        self.failures.extend(outcome.failed)
        self.chunks_processed += 1

    def take_failures(self, failures: list[RecordFailure]) -> list[Record]:
        """Remove failures that are about to be re-attempted and return their records."""
        taken = {id(f) for f in failures}
        self.failures = [f for f in self.failures if id(f) not in taken]
        return [f.record for f in failures]

    def buffer_failure_entries(self, failures: list[RecordFailure]) -> None:
        for failure in failures:
            self.log_entries.append(LogEntry.from_failure(self.run_id, failure))

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)
