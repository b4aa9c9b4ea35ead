from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional, Sequence

from .records import OperationKind, Record

DEFAULT_CHUNK_SIZE = 100
DEFAULT_MAX_RETRY = 3
DEFAULT_BASE_DELAY_S = 60.0


@dataclass
class DbConfig:
    """Table binding for one record type."""
    table_name: str
    id_column: str = "id"


@dataclass
class QueueConfig:
    queue_key: str
    consumer_name: str
    claim_idle_ms: int = 60_000
    block_ms: int = 5_000
    max_read_count: int = 100

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.block_ms <= 0:
            raise ValueError("block_ms must be > 0; the consumer would spin without waiting")
        if self.max_read_count <= 0:
            raise ValueError("max_read_count must be > 0")


@dataclass(frozen=True)
class ProcessorConfig:
    """
    Immutable description of one orchestration run.

    Only range checks happen here; the feature-combination rules live in
    ``validation.validate_config`` so that a rejected run reports the exact
    reason before anything is mutated.
    """
    operation: Optional[OperationKind] = None
    records: Optional[Sequence[Record]] = None
    external_id_field: Optional[str] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    asynchronous: bool = False
    lightweight: bool = False
    heterogeneous: bool = False
    rollback: bool = False
    retries_enabled: bool = False
    max_retry: int = DEFAULT_MAX_RETRY
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    logging_enabled: bool = False
    suppress_hook_errors: bool = False
    pipeline: str = "default"

    def __post_init__(self) -> None:
        if self.records is not None and not isinstance(self.records, tuple):
            object.__setattr__(self, "records", tuple(self.records))
        if self.operation is not None and not isinstance(self.operation, OperationKind):
            object.__setattr__(self, "operation", OperationKind(self.operation))
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.max_retry < 0:
            raise ValueError("max_retry must be >= 0")
        if self.base_delay_s <= 0:
            raise ValueError("base_delay_s must be > 0")

    def to_payload(self) -> dict[str, Any]:
        """
        JSON-safe form used for async and retry hand-off.

        Records travel separately as snapshots. The rollback flag is always
        dropped: a checkpoint cannot outlive the run that took it.
        """
        payload: dict[str, Any] = {}
        for f in fields(self):
            if f.name in ("records", "rollback"):
                continue
            value = getattr(self, f.name)
            if isinstance(value, OperationKind):
                value = value.value
            payload[f.name] = value
        return payload

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        records: Sequence[Record] = (),
        **overrides: Any,
    ) -> "ProcessorConfig":
        known = {f.name for f in fields(cls)} - {"records", "rollback"}
        kwargs = {k: v for k, v in payload.items() if k in known}
        kwargs.update(overrides)
        return cls(records=tuple(records), rollback=False, **kwargs)
