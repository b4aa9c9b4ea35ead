from __future__ import annotations

from typing import Any, Sequence


class BulkflowError(Exception):
    """Base exception for bulkflow errors."""


class ConfigurationError(BulkflowError):
    """The processor configuration was rejected before any mutation ran."""


class MissingInputError(ConfigurationError):
    """A required configuration value is absent."""


class IncompatibleConfigurationError(ConfigurationError):
    """Two enabled features cannot be combined."""

    def __init__(self, first: str, second: str) -> None:
        self.features = (first, second)
        super().__init__(f"{first} cannot be combined with {second}")


class TypeMismatchError(ConfigurationError):
    """Records of more than one type were given without heterogeneous mode."""

    def __init__(self, record_type: str, expected: str) -> None:
        self.record_type = record_type
        self.expected = expected
        super().__init__(
            f"record type {record_type!r} does not match {expected!r}; "
            "enable heterogeneous mode to mix record types"
        )


class ValidationError(BulkflowError):
    """A business-rule validator rejected the batch."""

    def __init__(self, message: str, rejections: Sequence[tuple[Any, str]] = ()) -> None:
        self.rejections = list(rejections)
        super().__init__(message)


class HookError(BulkflowError):
    """A before/after hook raised."""

    def __init__(self, hook_name: str, operation: str, phase: str, chunk_index: int) -> None:
        self.hook_name = hook_name
        self.operation = operation
        self.phase = phase
        self.chunk_index = chunk_index
        super().__init__(
            f"{phase} hook {hook_name!r} failed for {operation} on chunk {chunk_index}"
        )


class ResourceLimitExceededError(BulkflowError):
    """The store refused a transaction checkpoint because its budget is spent."""


class RollbackUnavailableError(BulkflowError):
    """rollback() was called on a run that did not enable rollback."""


class NoCheckpointError(BulkflowError):
    """rollback() was called but no checkpoint is held."""


class AlreadyExecutedError(BulkflowError):
    """A processor instance was executed twice."""


class NotYetExecutedError(BulkflowError):
    """A result query was made before the run completed."""


class StoreError(BulkflowError):
    """Any failure of the persistent store outside a single record."""


class QueueError(BulkflowError):
    """General job-queue issues."""
