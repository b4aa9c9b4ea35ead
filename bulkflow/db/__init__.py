from .session import DbSession
from .store import SqlCheckpoint, SqlRecordStore
from .tx import DbFactory, DbTransaction, DbTx

__all__ = [
    "DbSession",
    "DbTx",
    "DbTransaction",
    "DbFactory",
    "SqlCheckpoint",
    "SqlRecordStore",
]
