from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Optional

from .config import ProcessorConfig
from .errors import (
    IncompatibleConfigurationError,
    MissingInputError,
    TypeMismatchError,
    ValidationError,
)
from .records import OperationKind, Record

if TYPE_CHECKING:
    from .context import ExecutionContext

Validator = Callable[
    [Sequence[Record], "ExecutionContext"],
    Optional[Iterable[tuple[Record, str]]],
]


def _incompatible_pairs(config: ProcessorConfig) -> list[tuple[str, bool, str, bool]]:
    is_upsert = config.operation == OperationKind.UPSERT
    return [
        ("rollback", config.rollback, "asynchronous", config.asynchronous),
        ("rollback", config.rollback, "retries", config.retries_enabled),
        ("lightweight", config.lightweight, "rollback", config.rollback),
        ("lightweight", config.lightweight, "heterogeneous", config.heterogeneous),
        ("lightweight", config.lightweight, "upsert", is_upsert),
    ]


def validate_config(config: ProcessorConfig) -> None:
    """
    Check a configuration before anything is mutated.

    Checks run in a fixed order and the first failing one raises:
    records present, operation present, external id for upserts, a single
    record type unless heterogeneous mode is on, then the incompatible
    feature pairs. Pure: nothing is mutated.

    Raises:
        MissingInputError: records, operation or upsert external id absent
        TypeMismatchError: mixed record types without heterogeneous mode
        IncompatibleConfigurationError: two conflicting features enabled
    """
    if not config.records:
        raise MissingInputError("no records to process")
    if config.operation is None:
        raise MissingInputError("no operation set")
    if config.operation == OperationKind.UPSERT and not config.external_id_field:
        raise MissingInputError("upsert requires an external id field")

    if not config.heterogeneous:
        expected = config.records[0].record_type
        for record in config.records:
            if record.record_type != expected:
                raise TypeMismatchError(record.record_type, expected)

    for first, first_on, second, second_on in _incompatible_pairs(config):
        if first_on and second_on:
            raise IncompatibleConfigurationError(first, second)


class ValidatorSet:
    """
    Business-rule validators run once per run over the full record set.

    A validator either returns ``(record, reason)`` rejections or raises
    ValidationError itself. Any rejection aborts the run before chunking.
    """

    def __init__(self, validators: Iterable[Validator] = ()) -> None:
        self._validators: list[Validator] = list(validators)

    def add(self, validator: Validator) -> "ValidatorSet":
        self._validators.append(validator)
        return self

    def run(self, records: Sequence[Record], context: "ExecutionContext") -> None:
        for validator in self._validators:
            rejections = list(validator(records, context) or ())
            if rejections:
                name = getattr(validator, "__qualname__", repr(validator))
                raise ValidationError(
                    f"validator {name!r} rejected {len(rejections)} record(s)",
                    rejections,
                )

    def __len__(self) -> int:
        return len(self._validators)
