from .base import StorageBackend
from .gist_store import GistLedgerStore
from .memory import MemoryLedgerStore
from .sql_store import SqlLedgerStore

__all__ = [
    "StorageBackend",
    "GistLedgerStore",
    "MemoryLedgerStore",
    "SqlLedgerStore",
]
