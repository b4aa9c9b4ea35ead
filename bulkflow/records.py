from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    UPSERT = "upsert"


class FailureKind(str, Enum):
    DML_FAILURE = "dml_failure"
    SYSTEMIC_FAILURE = "systemic_failure"


@dataclass
class Record:
    """
    A single record to mutate.

    ``record_type`` is the tag used for chunking and hook dispatch; it also
    selects the table binding in the store. ``fields`` is mutable so that
    before-hooks can enrich records in place.
    """
    record_type: str
    fields: dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> dict[str, Any]:
        return {"record_type": self.record_type, "fields": dict(self.fields)}

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "Record":
        return cls(record_type=data["record_type"], fields=dict(data["fields"]))


@dataclass
class Chunk:
    """An ordered, type-homogeneous slice of the record batch."""
    index: int
    record_type: str
    records: list[Record]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)


@dataclass
class MutationResult:
    """Per-record outcome reported by the store, in chunk order."""
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "MutationResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "MutationResult":
        return cls(success=False, error=error)


@dataclass
class RecordFailure:
    record: Record
    error: str
    kind: FailureKind = FailureKind.DML_FAILURE
    attempt: int = 0
    # set once the failure can no longer be retried
    terminal: bool = False


@dataclass
class ChunkOutcome:
    succeeded: list[Record] = field(default_factory=list)
    failed: list[RecordFailure] = field(default_factory=list)
