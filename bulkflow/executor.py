from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

from .records import (
    Chunk,
    ChunkOutcome,
    FailureKind,
    MutationResult,
    OperationKind,
    Record,
    RecordFailure,
)

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """
    The persistent store as the orchestrator sees it.

    ``mutate`` must report one MutationResult per record, in order, rather
    than abort on the first rejected record. Anything it raises is treated as
    a failure of the whole chunk.
    """

    def mutate(
        self,
        operation: OperationKind,
        records: Sequence[Record],
        external_id_field: Optional[str] = None,
        checkpoint: Optional[Any] = None,
    ) -> list[MutationResult]:
        ...

    def acquire_checkpoint(self) -> Any:
        ...

    def rollback_to(self, checkpoint: Any) -> None:
        ...

    def release(self, checkpoint: Any) -> None:
        ...


class OperationExecutor:
    """Runs one chunk against the store and translates the per-record results."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def execute(
        self,
        chunk: Chunk,
        operation: OperationKind,
        external_id_field: Optional[str] = None,
        checkpoint: Optional[Any] = None,
        attempt: int = 0,
    ) -> ChunkOutcome:
        try:
            results = self.store.mutate(
                operation,
                chunk.records,
                external_id_field=external_id_field,
                checkpoint=checkpoint,
            )
            if len(results) != len(chunk.records):
                raise RuntimeError(
                    f"store returned {len(results)} results for {len(chunk.records)} records"
                )
        except Exception as exc:
            logger.warning(
                "Chunk %d (%s, %d records) failed as a whole: %s",
                chunk.index,
                chunk.record_type,
                len(chunk.records),
                exc,
            )
            return ChunkOutcome(
                failed=[
                    RecordFailure(record, str(exc), FailureKind.SYSTEMIC_FAILURE, attempt)
                    for record in chunk.records
                ]
            )

        outcome = ChunkOutcome()
        for record, result in zip(chunk.records, results):
            if result.success:
                outcome.succeeded.append(record)
            else:
                outcome.failed.append(
                    RecordFailure(record, result.error or "unknown error", FailureKind.DML_FAILURE, attempt)
                )
        return outcome
