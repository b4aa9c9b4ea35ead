from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .hooks import HookErrorCallback, HookPipeline
from .records import RecordFailure
from .validation import ValidatorSet

if TYPE_CHECKING:
    from .context import ExecutionContext

FailureCallback = Callable[[Sequence[RecordFailure], "ExecutionContext"], None]
CompleteCallback = Callable[["ExecutionContext"], None]


@dataclass
class Pipeline:
    """
    The extension points of a run: hooks, validators and callbacks.

    Functions cannot travel in a job payload, so async and retry jobs carry
    only the pipeline name and workers look it up in a PipelineRegistry.
    """
    name: str = "default"
    hooks: HookPipeline = field(default_factory=HookPipeline)
    validators: ValidatorSet = field(default_factory=ValidatorSet)
    on_failure: Optional[FailureCallback] = None
    on_hook_error: Optional[HookErrorCallback] = None
    on_complete: Optional[CompleteCallback] = None


class PipelineRegistry:
    def __init__(self, pipelines: Sequence[Pipeline] = ()) -> None:
        self._pipelines: dict[str, Pipeline] = {}
        for pipeline in pipelines:
            self.register(pipeline)

    def register(self, pipeline: Pipeline) -> Pipeline:
        self._pipelines[pipeline.name] = pipeline
        return pipeline

    def get(self, name: str) -> Pipeline:
        try:
            return self._pipelines[name]
        except KeyError:
            raise KeyError(f"no pipeline registered as {name!r}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._pipelines
