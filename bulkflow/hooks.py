from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .errors import HookError
from .records import Chunk, OperationKind

if TYPE_CHECKING:
    from .context import ExecutionContext

logger = logging.getLogger(__name__)

Hook = Callable[[Chunk, "ExecutionContext"], None]
HookErrorCallback = Callable[[HookError, Chunk, "ExecutionContext"], None]


class Phase(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class _Registration:
    hook: Hook
    record_type: Optional[str]

    @property
    def name(self) -> str:
        return getattr(self.hook, "__qualname__", None) or repr(self.hook)


class HookPipeline:
    """
    Ordered before/after hooks keyed by (operation, phase).

    Before-hooks receive the whole chunk and may mutate its records in place.
    After-hooks run once the chunk's mutation was attempted and are meant for
    side effects; they do not see per-record outcomes.

    A hook registered with a ``record_type`` only runs for chunks of that type.
    Chunks are type-homogeneous, so dispatch is a plain tag comparison.

    Usage:
        hooks = HookPipeline()
        hooks.register(OperationKind.CREATE, Phase.BEFORE, set_defaults)
        hooks.register(OperationKind.CREATE, Phase.AFTER, notify, record_type="order")
    """

    def __init__(self) -> None:
        self._hooks: dict[tuple[OperationKind, Phase], list[_Registration]] = {}

    def register(
        self,
        operation: OperationKind | str,
        phase: Phase | str,
        hook: Hook,
        record_type: Optional[str] = None,
    ) -> "HookPipeline":
        key = (OperationKind(operation), Phase(phase))
        self._hooks.setdefault(key, []).append(_Registration(hook, record_type))
        return self

    def before(self, operation: OperationKind | str, hook: Hook, record_type: Optional[str] = None) -> "HookPipeline":
        return self.register(operation, Phase.BEFORE, hook, record_type)

    def after(self, operation: OperationKind | str, hook: Hook, record_type: Optional[str] = None) -> "HookPipeline":
        return self.register(operation, Phase.AFTER, hook, record_type)

    def hooks_for(self, operation: OperationKind, phase: Phase, record_type: str) -> list[Hook]:
        return [
            reg.hook
            for reg in self._hooks.get((operation, phase), [])
            if reg.record_type is None or reg.record_type == record_type
        ]

    def run(
        self,
        operation: OperationKind,
        phase: Phase,
        chunk: Chunk,
        context: "ExecutionContext",
        on_error: Optional[HookErrorCallback] = None,
    ) -> None:
        """
        Run the matching hooks in registration order.

        Without ``on_error`` the first failing hook aborts the run with a
        HookError chained to the original exception. With ``on_error`` the
        error is handed to the callback and the remaining hooks still run.
        """
        for reg in self._hooks.get((operation, phase), []):
            if reg.record_type is not None and reg.record_type != chunk.record_type:
                continue
            try:
                reg.hook(chunk, context)
            except Exception as exc:
                error = HookError(reg.name, operation.value, phase.value, chunk.index)
                error.__cause__ = exc
                if on_error is None:
                    raise error from exc
                logger.warning("Suppressed %s: %s", error, exc)
                on_error(error, chunk, context)

    def __len__(self) -> int:
        return sum(len(regs) for regs in self._hooks.values())
