from __future__ import annotations

import pytest

from bulkflow.context import ExecutionContext
from bulkflow.errors import HookError
from bulkflow.hooks import HookPipeline, Phase
from bulkflow.records import Chunk, OperationKind, Record


def _chunk(record_type: str = "account", n: int = 2) -> Chunk:
    return Chunk(0, record_type, [Record(record_type, {"name": f"r{i}"}) for i in range(n)])


@pytest.fixture
def context() -> ExecutionContext:
    return ExecutionContext(OperationKind.CREATE)


class TestHookPipeline:
    """Tests for hook registration and dispatch."""

    def test_hooks_run_in_registration_order(self, context) -> None:
        order = []
        hooks = HookPipeline()
        hooks.before(OperationKind.CREATE, lambda chunk, ctx: order.append(1))
        hooks.before(OperationKind.CREATE, lambda chunk, ctx: order.append(2))
        hooks.before(OperationKind.CREATE, lambda chunk, ctx: order.append(3))

        hooks.run(OperationKind.CREATE, Phase.BEFORE, _chunk(), context)

        assert order == [1, 2, 3]

    def test_before_hooks_mutate_records_in_place(self, context) -> None:
        def default_amount(chunk, ctx):
            for record in chunk.records:
                record.fields.setdefault("amount", 0)

        chunk = _chunk()
        HookPipeline().before(OperationKind.CREATE, default_amount).run(
            OperationKind.CREATE, Phase.BEFORE, chunk, context
        )
        assert all(r.fields["amount"] == 0 for r in chunk.records)

    def test_hooks_are_keyed_by_operation_and_phase(self, context) -> None:
        seen = []
        hooks = HookPipeline()
        hooks.before(OperationKind.UPDATE, lambda c, ctx: seen.append("update-before"))
        hooks.after(OperationKind.CREATE, lambda c, ctx: seen.append("create-after"))

        hooks.run(OperationKind.CREATE, Phase.BEFORE, _chunk(), context)
        assert seen == []
        hooks.run(OperationKind.CREATE, Phase.AFTER, _chunk(), context)
        assert seen == ["create-after"]

    def test_record_type_dispatch(self, context) -> None:
        seen = []
        hooks = HookPipeline()
        hooks.before(OperationKind.CREATE, lambda c, ctx: seen.append(("any", c.record_type)))
        hooks.before(OperationKind.CREATE, lambda c, ctx: seen.append(("contact", c.record_type)), record_type="contact")

        hooks.run(OperationKind.CREATE, Phase.BEFORE, _chunk("account"), context)
        hooks.run(OperationKind.CREATE, Phase.BEFORE, _chunk("contact"), context)

        assert seen == [("any", "account"), ("any", "contact"), ("contact", "contact")]
        assert len(hooks.hooks_for(OperationKind.CREATE, Phase.BEFORE, "contact")) == 2

    def test_failure_propagates_as_hook_error(self, context) -> None:
        def broken(chunk, ctx):
            raise KeyError("missing")

        hooks = HookPipeline().before(OperationKind.CREATE, broken)
        with pytest.raises(HookError) as excinfo:
            hooks.run(OperationKind.CREATE, Phase.BEFORE, _chunk(), context)

        assert excinfo.value.phase == "before"
        assert excinfo.value.operation == "create"
        assert isinstance(excinfo.value.__cause__, KeyError)

    def test_failure_suppressed_when_callback_given(self, context) -> None:
        errors = []
        ran = []

        def broken(chunk, ctx):
            raise RuntimeError("boom")

        hooks = HookPipeline()
        hooks.after(OperationKind.CREATE, broken)
        hooks.after(OperationKind.CREATE, lambda c, ctx: ran.append(True))

        hooks.run(
            OperationKind.CREATE,
            Phase.AFTER,
            _chunk(),
            context,
            on_error=lambda error, chunk, ctx: errors.append(error),
        )

        assert len(errors) == 1
        assert isinstance(errors[0], HookError)
        assert ran == [True]

    def test_accepts_string_keys(self, context) -> None:
        seen = []
        hooks = HookPipeline().register("delete", "after", lambda c, ctx: seen.append(True))
        hooks.run(OperationKind.DELETE, Phase.AFTER, _chunk(), context)
        assert seen == [True]
        assert len(hooks) == 1
