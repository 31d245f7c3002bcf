from .base import (
    BookCatalog,
    DuplicateRecordError,
    OwnershipConflict,
    Store,
    TradeLedger,
    TransactionConflict,
    UnitOfWork,
    UserDirectory,
)
from .memory_store import MemoryStore
from .mongo_store import MongoStore

__all__ = [
    'BookCatalog',
    'DuplicateRecordError',
    'OwnershipConflict',
    'Store',
    'TradeLedger',
    'TransactionConflict',
    'UnitOfWork',
    'UserDirectory',
    'MemoryStore',
    'MongoStore',
]
