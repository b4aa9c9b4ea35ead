from __future__ import annotations

import pytest
from fakes import FakeStore

from bulkflow.context import ExecutionContext
from bulkflow.errors import NoCheckpointError, ResourceLimitExceededError, RollbackUnavailableError
from bulkflow.records import OperationKind
from bulkflow.rollback import RollbackController


class TestRollbackController:
    """Tests for checkpoint ownership."""

    def test_acquire_stores_handle_in_context(self) -> None:
        store = FakeStore()
        context = ExecutionContext(OperationKind.CREATE)

        RollbackController(store).acquire(context)

        assert context.checkpoint is not None
        assert store.active_checkpoints == 1

    def test_rollback_restores_and_clears_handle(self) -> None:
        store = FakeStore()
        controller = RollbackController(store)
        context = ExecutionContext(OperationKind.CREATE)
        controller.acquire(context)
        store.rows[("account", 1)] = {"id": 1}

        controller.rollback(context, enabled=True)

        assert store.rows == {}
        assert context.checkpoint is None
        assert store.active_checkpoints == 0

    def test_rollback_when_disabled(self) -> None:
        with pytest.raises(RollbackUnavailableError):
            RollbackController(FakeStore()).rollback(ExecutionContext(OperationKind.CREATE), enabled=False)

    def test_rollback_without_checkpoint(self) -> None:
        with pytest.raises(NoCheckpointError):
            RollbackController(FakeStore()).rollback(ExecutionContext(OperationKind.CREATE), enabled=True)

    def test_second_rollback_has_no_checkpoint(self) -> None:
        store = FakeStore()
        controller = RollbackController(store)
        context = ExecutionContext(OperationKind.CREATE)
        controller.acquire(context)
        controller.rollback(context, enabled=True)

        with pytest.raises(NoCheckpointError):
            controller.rollback(context, enabled=True)

    def test_release_keeps_changes(self) -> None:
        store = FakeStore()
        controller = RollbackController(store)
        context = ExecutionContext(OperationKind.CREATE)
        controller.acquire(context)
        store.rows[("account", 1)] = {"id": 1}

        assert controller.release(context) is True
        assert controller.release(context) is False
        assert ("account", 1) in store.rows
        assert store.active_checkpoints == 0

    def test_budget_exhaustion_propagates(self) -> None:
        store = FakeStore(max_checkpoints=1)
        controller = RollbackController(store)
        controller.acquire(ExecutionContext(OperationKind.CREATE))

        with pytest.raises(ResourceLimitExceededError):
            controller.acquire(ExecutionContext(OperationKind.CREATE))

    def test_discard_rolls_back_held_checkpoint(self) -> None:
        store = FakeStore()
        controller = RollbackController(store)
        context = ExecutionContext(OperationKind.CREATE)
        controller.acquire(context)
        store.rows[("account", 1)] = {"id": 1}

        controller.discard(context)
        controller.discard(context)

        assert store.rows == {}
        assert context.checkpoint is None
        assert store.active_checkpoints == 0

    def test_discard_after_release_is_a_noop(self) -> None:
        store = FakeStore()
        controller = RollbackController(store)
        context = ExecutionContext(OperationKind.CREATE)
        controller.acquire(context)
        store.rows[("account", 1)] = {"id": 1}
        controller.release(context)

        controller.discard(context)

        assert ("account", 1) in store.rows
