from .audit import LogEntry, LogHeader, LoggerSink, SqlLogSink
from .chunking import chunk_records
from .config import DbConfig, ProcessorConfig, QueueConfig
from .context import ExecutionContext
from .hooks import HookPipeline, Phase
from .pipeline import Pipeline, PipelineRegistry
from .processor import Processor, ProcessorState
from .records import Chunk, FailureKind, MutationResult, OperationKind, Record, RecordFailure
from .retry import RetryJob, RetryScheduler, backoff_delay
from .validation import ValidatorSet, validate_config
from .worker import ScheduledRetryExecutor

__all__ = [
    "Chunk",
    "DbConfig",
    "ExecutionContext",
    "FailureKind",
    "HookPipeline",
    "LogEntry",
    "LogHeader",
    "LoggerSink",
    "MutationResult",
    "OperationKind",
    "Phase",
    "Pipeline",
    "PipelineRegistry",
    "Processor",
    "ProcessorConfig",
    "ProcessorState",
    "QueueConfig",
    "Record",
    "RecordFailure",
    "RetryJob",
    "RetryScheduler",
    "ScheduledRetryExecutor",
    "SqlLogSink",
    "ValidatorSet",
    "backoff_delay",
    "chunk_records",
    "validate_config",
]
