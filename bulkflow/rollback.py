from __future__ import annotations

import logging

from .context import ExecutionContext
from .errors import NoCheckpointError, RollbackUnavailableError
from .executor import RecordStore

logger = logging.getLogger(__name__)


class RollbackController:
    """
    Owns the transaction checkpoint of a rollback-mode run.

    The checkpoint is taken before the first chunk is mutated and kept in the
    run context. Rolling back a live run is always the caller's decision. A
    run dropped while still holding its checkpoint is rolled back by discard()
    so the store gets its budget and locks back.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def acquire(self, context: ExecutionContext) -> None:
        """
        Raises:
            ResourceLimitExceededError: If the store has no checkpoint budget left
        """
        context.checkpoint = self.store.acquire_checkpoint()
        logger.info("Run %s holds a checkpoint", context.run_id)

    def rollback(self, context: ExecutionContext, enabled: bool) -> None:
        if not enabled:
            raise RollbackUnavailableError("rollback was not enabled for this run")
        if context.checkpoint is None:
            raise NoCheckpointError("no checkpoint is held for this run")

        checkpoint, context.checkpoint = context.checkpoint, None
        self.store.rollback_to(checkpoint)
        logger.info(
            "Run %s rolled back (%d succeeded record(s) undone)",
            context.run_id,
            len(context.succeeded),
        )

    def release(self, context: ExecutionContext) -> bool:
        """Commit the checkpointed work. Returns False if nothing was held."""
        if context.checkpoint is None:
            return False
        checkpoint, context.checkpoint = context.checkpoint, None
        self.store.release(checkpoint)
        return True

    def discard(self, context: ExecutionContext) -> None:
        """
        Roll back a checkpoint whose run was dropped without commit() or rollback().

        Registered as a finalizer of the owning Processor; a no-op once the
        checkpoint was released explicitly.
        """
        if context.checkpoint is None:
            return
        checkpoint, context.checkpoint = context.checkpoint, None
        logger.warning("Run %s was abandoned holding a checkpoint; rolling back", context.run_id)
        try:
            self.store.rollback_to(checkpoint)
        except Exception:
            logger.exception("Rolling back the abandoned checkpoint of run %s failed", context.run_id)
