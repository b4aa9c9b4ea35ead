from __future__ import annotations

import logging
import time
import uuid
import weakref
from collections.abc import Callable
from dataclasses import replace
from enum import Enum
from typing import Optional

from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_exponential

from .audit import LogHeader, LoggerSink, LogSink
from .chunking import chunk_records
from .config import ProcessorConfig
from .context import ExecutionContext
from .errors import (
    AlreadyExecutedError,
    HookError,
    MissingInputError,
    NoCheckpointError,
    NotYetExecutedError,
    RollbackUnavailableError,
)
from .executor import OperationExecutor, RecordStore
from .hooks import Phase
from .metrics import observe_chunk
from .pipeline import Pipeline
from .records import Chunk, Record, RecordFailure
from .retry import JobQueue, RetryJob, RetryScheduler, run_payload
from .rollback import RollbackController
from .validation import validate_config

logger = logging.getLogger(__name__)


class ProcessorState(str, Enum):
    UNCONFIGURED = "unconfigured"
    VALIDATED = "validated"
    EXECUTING = "executing"
    COMPLETED = "completed"
    QUEUED = "queued"


class Processor:
    """
    Single entry point of a bulk mutation run.

    A processor is single-use: ``run_now()`` validates the configuration,
    runs the business validators, then processes chunks strictly in sequence
    (before-hooks, mutation, after-hooks, merge into the context). Failures
    are either made terminal, scheduled for a backoff retry, or, in rollback
    mode, left for the caller to decide on with ``rollback()``.

    Results are read through the query methods once the run completed.

    Usage:
        processor = Processor(store, ProcessorConfig(
            operation=OperationKind.CREATE,
            records=records,
            retries_enabled=True,
        ), job_queue=queue)
        processor.run_now()
        if processor.has_failures():
            for failure in processor.get_failed_records():
                ...

    Rollback mode:
        with Processor(store, ProcessorConfig(..., rollback=True)) as processor:
            processor.run_now()
            if processor.has_failures():
                processor.rollback()
        # a checkpoint still held here is committed on clean exit

    A rollback-mode processor dropped while it still holds its checkpoint
    rolls the checkpoint back when it is garbage collected.
    """

    def __init__(
        self,
        store: RecordStore,
        config: ProcessorConfig,
        pipeline: Optional[Pipeline] = None,
        job_queue: Optional[JobQueue] = None,
        sink: Optional[LogSink] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        run_id: Optional[str] = None,
        attempt: int = 0,
    ) -> None:
        self.store = store
        self.config = config
        self.pipeline = pipeline if pipeline is not None else Pipeline(name=config.pipeline)
        self.job_queue = job_queue
        if sink is None and config.logging_enabled:
            sink = LoggerSink()
        self.sink = sink
        self.clock = clock
        self.sleep = sleep
        self.run_id = run_id or uuid.uuid4().hex
        self.initial_attempt = attempt

        self.state = ProcessorState.UNCONFIGURED
        self.context: Optional[ExecutionContext] = None
        self._executor = OperationExecutor(store)
        self._retry = RetryScheduler(job_queue, clock)
        self._rollback = RollbackController(store)
        self._aborted = False
        self._started_at = 0.0
        self._finished_at = 0.0

    # -- execution --------------------------------------------------------

    def run_now(self) -> None:
        """
        Run one synchronous pass over every chunk.

        Returns once all chunks were processed (scheduled retries happen
        later, out of band). Configuration and validator errors are raised
        before anything is mutated; hook errors abort the run mid-way and
        leave earlier chunks' effects in place.
        """
        self._ensure_not_executed()
        validate_config(self.config)
        self.state = ProcessorState.VALIDATED

        context = self._new_context()
        self.pipeline.validators.run(self.config.records, context)
        self._execute(context)

    def run_async(self) -> str:
        """
        Validate, then hand the run to the job facility and return its job id.

        Queries stay valid afterwards and reflect the empty state before the
        hand-off.
        """
        self._ensure_not_executed()
        if self.job_queue is None:
            raise MissingInputError("asynchronous runs require a job queue")

        config = replace(self.config, asynchronous=True)
        validate_config(config)
        self.state = ProcessorState.VALIDATED
        self.context = self._new_context()

        job_id = self.job_queue.enqueue(run_payload(config, self.run_id, self.initial_attempt))
        self.state = ProcessorState.QUEUED
        logger.info("Run %s queued as job %s (%d records)", self.run_id, job_id, len(config.records))
        return job_id

    def _ensure_not_executed(self) -> None:
        if self.state in (ProcessorState.EXECUTING, ProcessorState.COMPLETED, ProcessorState.QUEUED):
            raise AlreadyExecutedError(f"run {self.run_id} was already executed")

    def _new_context(self) -> ExecutionContext:
        self.context = ExecutionContext(
            operation=self.config.operation,
            run_id=self.run_id,
            attempt=self.initial_attempt,
        )
        return self.context

    def _execute(self, context: ExecutionContext) -> None:
        config = self.config
        self.state = ProcessorState.EXECUTING
        self._started_at = self.clock()
        logger.info(
            "Run %s: %s %d record(s), attempt %d",
            context.run_id,
            config.operation.value,
            len(config.records),
            context.attempt,
        )

        try:
            if config.rollback:
                self._rollback.acquire(context)
                weakref.finalize(self, self._rollback.discard, context)

            if config.retries_enabled and self.job_queue is None:
                failures = self._run_inline(context)
            else:
                failures = self._run_pass(list(config.records), context)
            decision = self._retry.capture(failures, context, config)
            if decision.terminal:
                self._handle_terminal(decision.terminal, context)
        except Exception:
            self._aborted = True
            self._finish(context)
            raise

        self._finish(context)
        if self.pipeline.on_complete is not None:
            self.pipeline.on_complete(context)

    def _run_pass(self, records: list[Record], context: ExecutionContext) -> list[RecordFailure]:
        config = self.config
        operation = config.operation
        use_hooks = not config.lightweight
        on_hook_error = self._on_hook_error if config.suppress_hook_errors else None
        failures: list[RecordFailure] = []

        for chunk in chunk_records(records, config.chunk_size, config.heterogeneous):
            context.chunk_index = chunk.index
            start = time.monotonic()

            if use_hooks:
                self.pipeline.hooks.run(operation, Phase.BEFORE, chunk, context, on_hook_error)

            outcome = self._executor.execute(
                chunk,
                operation,
                config.external_id_field,
                checkpoint=context.checkpoint,
                attempt=context.attempt,
            )
            try:
                if use_hooks:
                    self.pipeline.hooks.run(operation, Phase.AFTER, chunk, context, on_hook_error)
            finally:
                context.merge(outcome)
                failures.extend(outcome.failed)
                observe_chunk(operation, outcome, time.monotonic() - start)

        return failures

    def _run_inline(self, context: ExecutionContext) -> list[RecordFailure]:
        """
        Synchronous retry mode, used when no job queue is configured.

        The failures of each pass are re-run in place after
        ``base_delay * 2 ** attempt`` seconds until they succeed or the
        attempt reaches max_retry, so run_now() blocks for every retry.
        Returns the failures of the last pass.
        """
        config = self.config
        pending: list[RecordFailure] = []

        def one_pass() -> list[RecordFailure]:
            if pending:
                records = context.take_failures(pending)
                context.attempt += 1
            else:
                records = list(config.records)
            pending[:] = self._run_pass(records, context)
            return list(pending)

        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                "Run %s: retrying %d record(s) inline in %.1fs (attempt %d)",
                context.run_id,
                len(pending),
                retry_state.next_action.sleep,
                context.attempt + 1,
            )

        retrying = Retrying(
            stop=stop_after_attempt(max(config.max_retry - context.attempt, 0) + 1),
            wait=wait_exponential(multiplier=config.base_delay_s * 2 ** context.attempt),
            retry=retry_if_result(bool),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            before_sleep=log_retry,
            sleep=self.sleep,
        )
        return retrying(one_pass)

    def _on_hook_error(self, error: HookError, chunk: Chunk, context: ExecutionContext) -> None:
        context.hook_errors.append(error)
        if self.pipeline.on_hook_error is not None:
            self.pipeline.on_hook_error(error, chunk, context)

    def _handle_terminal(self, failures: list[RecordFailure], context: ExecutionContext) -> None:
        logger.warning(
            "Run %s: %d record(s) failed permanently at attempt %d",
            context.run_id,
            len(failures),
            context.attempt,
        )
        if self.config.logging_enabled:
            context.buffer_failure_entries(failures)
        if self.pipeline.on_failure is not None:
            self.pipeline.on_failure(failures, context)

    def _finish(self, context: ExecutionContext) -> None:
        self.state = ProcessorState.COMPLETED
        self._finished_at = self.clock()
        logger.info(
            "Run %s %s: %d succeeded, %d failed",
            context.run_id,
            self._outcome(context),
            len(context.succeeded),
            len(context.failures),
        )
        if self.config.logging_enabled and self.sink is not None:
            self._write_audit(context)

    def _outcome(self, context: ExecutionContext) -> str:
        if self._aborted:
            return "aborted"
        if not context.failures:
            return "success"
        if context.retry_jobs:
            return "retry_scheduled"
        if context.succeeded:
            return "partial_success"
        return "failure"

    def _write_audit(self, context: ExecutionContext) -> None:
        header = LogHeader(
            run_id=context.run_id,
            operation=context.operation.value,
            total_records=len(self.config.records),
            succeeded=len(context.succeeded),
            failed=len(context.failures),
            attempt=context.attempt,
            started_at=self._started_at,
            finished_at=self._finished_at,
            outcome=self._outcome(context),
        )
        try:
            self.sink.write_header(header)
            if context.log_entries:
                self.sink.write_entries(context.log_entries)
        except Exception:
            logger.exception("Audit sink failed for run %s", context.run_id)

    # -- queries ----------------------------------------------------------

    def _require_results(self) -> ExecutionContext:
        if self.state == ProcessorState.QUEUED:
            return self.context
        if self.state != ProcessorState.COMPLETED:
            raise NotYetExecutedError(f"run {self.run_id} has not completed (state: {self.state.value})")
        return self.context

    def is_success(self) -> bool:
        context = self._require_results()
        return not self._aborted and not context.failures

    def has_failures(self) -> bool:
        return bool(self._require_results().failures)

    def get_failed_records(self) -> list[RecordFailure]:
        return list(self._require_results().failures)

    def get_succeeded_records(self) -> list[Record]:
        return list(self._require_results().succeeded)

    def get_retry_jobs(self) -> list[RetryJob]:
        return list(self._require_results().retry_jobs)

    # -- checkpoint -------------------------------------------------------

    def rollback(self) -> None:
        """
        Undo every mutation of this run.

        Raises:
            RollbackUnavailableError: If rollback mode was not enabled
            NoCheckpointError: If no checkpoint was taken (e.g. validation failed)
        """
        if self.context is None:
            if not self.config.rollback:
                raise RollbackUnavailableError("rollback was not enabled for this run")
            raise NoCheckpointError("no checkpoint is held for this run")
        self._rollback.rollback(self.context, self.config.rollback)

    def commit(self) -> bool:
        """Keep this run's mutations and release the checkpoint. False if none was held."""
        if self.context is None:
            return False
        return self._rollback.release(self.context)

    def __enter__(self) -> "Processor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.context is not None and self.context.checkpoint is not None:
            if exc_type:
                self._rollback.rollback(self.context, True)
            else:
                self._rollback.release(self.context)
        return False
