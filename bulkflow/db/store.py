from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.engine.base import NestedTransaction
from sqlalchemy.exc import DBAPIError, MultipleResultsFound

from ..config import DbConfig
from ..errors import ResourceLimitExceededError, StoreError
from ..records import MutationResult, OperationKind, Record
from .helpers import delete_sql, insert_sql, select_id_sql, update_sql
from .metrics import observe_checkpoint
from .session import DbSession
from .tx import DbFactory, DbTransaction, DbTx

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHECKPOINTS = 5


@dataclass
class SqlCheckpoint:
    """A transaction held open across a run, with a savepoint marking its start."""
    checkpoint_id: str
    tx: DbTransaction
    savepoint: NestedTransaction


class SqlRecordStore:
    """
    Record store backed by a SQLAlchemy engine.

    Every record type is bound to a table through a DbConfig. A chunk runs in
    one transaction under a chunk-wide savepoint, and every record under its
    own nested savepoint, so a record the database rejects is reported as a
    per-record failure without undoing its neighbours.

    Errors that invalidate the connection (or happen outside a record, e.g.
    the engine cannot connect) propagate; the executor then fails the whole
    chunk as a systemic failure.

    Checkpoints keep a DbTransaction open until rollback_to() or release().
    At most ``max_checkpoints`` may be held at once.

    Usage:
        store = SqlRecordStore(engine, {"account": DbConfig("accounts")})
        results = store.mutate(OperationKind.CREATE, records)
    """

    def __init__(
        self,
        engine: Engine,
        tables: Mapping[str, DbConfig],
        max_checkpoints: int = DEFAULT_MAX_CHECKPOINTS,
    ) -> None:
        self.engine = engine
        self.tables = dict(tables)
        self.max_checkpoints = max_checkpoints
        self._factory = DbFactory(engine)
        self._active: dict[str, SqlCheckpoint] = {}
        self._lock = threading.Lock()

    # -- mutation ---------------------------------------------------------

    def mutate(
        self,
        operation: OperationKind,
        records: Sequence[Record],
        external_id_field: Optional[str] = None,
        checkpoint: Optional[SqlCheckpoint] = None,
    ) -> list[MutationResult]:
        if checkpoint is not None:
            if checkpoint.checkpoint_id not in self._active:
                raise StoreError(f"checkpoint {checkpoint.checkpoint_id} is no longer held")
            return self._mutate_in(checkpoint.tx, operation, records, external_id_field)

        with DbSession(self.engine) as session:
            return self._mutate_in(session, operation, records, external_id_field)

    def _mutate_in(
        self,
        tx: DbTx,
        operation: OperationKind,
        records: Sequence[Record],
        external_id_field: Optional[str],
    ) -> list[MutationResult]:
        results = []
        with tx.savepoint():
            for record in records:
                results.append(self._apply(tx, operation, record, external_id_field))
        return results

    def _apply(
        self,
        tx: DbTx,
        operation: OperationKind,
        record: Record,
        external_id_field: Optional[str],
    ) -> MutationResult:
        binding = self.tables.get(record.record_type)
        if binding is None:
            return MutationResult.failed(f"no table bound for record type {record.record_type!r}")

        try:
            with tx.savepoint():
                if operation == OperationKind.CREATE:
                    error = self._create(tx, binding, record)
                elif operation == OperationKind.UPDATE:
                    error = self._update(tx, binding, record)
                elif operation == OperationKind.DELETE:
                    error = self._delete(tx, binding, record)
                elif operation == OperationKind.UPSERT:
                    error = self._upsert(tx, binding, record, external_id_field)
                else:
                    raise StoreError(f"Unsupported operation: {operation}")
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise
            error = str(exc.orig) if exc.orig is not None else str(exc)
        except (MultipleResultsFound, ValueError) as exc:
            error = str(exc)

        if error:
            return MutationResult.failed(error)
        return MutationResult.ok()

    def _create(self, tx: DbTx, binding: DbConfig, record: Record) -> Optional[str]:
        sql = insert_sql(binding.table_name, record.fields.keys())
        row_id = tx.execute_insert(sql, record.fields)
        if record.fields.get(binding.id_column) is None and row_id:
            record.fields[binding.id_column] = row_id
        return None

    def _update(self, tx: DbTx, binding: DbConfig, record: Record) -> Optional[str]:
        id_value = record.fields.get(binding.id_column)
        if id_value is None:
            return f"update requires {binding.id_column!r}"
        sql = update_sql(binding.table_name, binding.id_column, record.fields.keys())
        params = dict(record.fields)
        params["id_value"] = id_value
        if tx.execute(sql, params) == 0:
            return f"record not found: {binding.id_column}={id_value!r}"
        return None

    def _delete(self, tx: DbTx, binding: DbConfig, record: Record) -> Optional[str]:
        id_value = record.fields.get(binding.id_column)
        if id_value is None:
            return f"delete requires {binding.id_column!r}"
        if tx.execute(delete_sql(binding.table_name, binding.id_column), {"id_value": id_value}) == 0:
            return f"record not found: {binding.id_column}={id_value!r}"
        return None

    def _upsert(
        self,
        tx: DbTx,
        binding: DbConfig,
        record: Record,
        external_id_field: Optional[str],
    ) -> Optional[str]:
        if not external_id_field:
            return "upsert requires an external id field"
        key_value = record.fields.get(external_id_field)
        if key_value is None:
            return f"upsert requires a value for {external_id_field!r}"

        row = tx.fetch_one(
            select_id_sql(binding.table_name, binding.id_column, external_id_field),
            {"key_value": key_value},
        )
        if row is None:
            return self._create(tx, binding, record)

        record.fields[binding.id_column] = row[binding.id_column]
        return self._update(tx, binding, record)

    # -- checkpoints ------------------------------------------------------

    def acquire_checkpoint(self) -> SqlCheckpoint:
        """
        Open a transaction and mark its start with a savepoint.

        Raises:
            ResourceLimitExceededError: If max_checkpoints are already held
        """
        with self._lock:
            if len(self._active) >= self.max_checkpoints:
                observe_checkpoint("rejected")
                raise ResourceLimitExceededError(
                    f"checkpoint budget exhausted ({self.max_checkpoints} held)"
                )
            tx = self._factory.begin()
            try:
                savepoint = tx.savepoint()
            except Exception:
                tx.rollback()
                raise
            checkpoint = SqlCheckpoint(uuid.uuid4().hex, tx, savepoint)
            self._active[checkpoint.checkpoint_id] = checkpoint

        observe_checkpoint("acquired")
        logger.info("Checkpoint %s acquired", checkpoint.checkpoint_id)
        return checkpoint

    def rollback_to(self, checkpoint: SqlCheckpoint) -> None:
        """Undo everything written since the checkpoint and release it."""
        self._require_active(checkpoint)
        try:
            checkpoint.savepoint.rollback()
            checkpoint.tx.commit()
        except Exception:
            if not checkpoint.tx.closed:
                checkpoint.tx.rollback()
            raise
        finally:
            self._forget(checkpoint)
        observe_checkpoint("rolled_back")
        logger.info("Rolled back to checkpoint %s", checkpoint.checkpoint_id)

    def release(self, checkpoint: SqlCheckpoint) -> None:
        """Commit everything written since the checkpoint and release it."""
        self._require_active(checkpoint)
        try:
            checkpoint.savepoint.commit()
            checkpoint.tx.commit()
        except Exception:
            if not checkpoint.tx.closed:
                checkpoint.tx.rollback()
            raise
        finally:
            self._forget(checkpoint)
        observe_checkpoint("released")

    @property
    def active_checkpoints(self) -> int:
        return len(self._active)

    def _require_active(self, checkpoint: Any) -> None:
        if getattr(checkpoint, "checkpoint_id", None) not in self._active:
            raise StoreError("checkpoint is not held by this store")

    def _forget(self, checkpoint: SqlCheckpoint) -> None:
        with self._lock:
            self._active.pop(checkpoint.checkpoint_id, None)
