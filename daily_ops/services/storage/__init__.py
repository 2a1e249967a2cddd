"""
Storage Services Package

Provides the abstract collection interfaces, the storage exceptions and
the encrypted single-file storage engine.
"""

from daily_ops.services.storage.interface import (
    AppendOnlyCollectionInterface,
    CollectionInterface,
    CorruptStoreError,
    DecryptionError,
    DuplicateError,
    NotFoundError,
    PersistenceError,
    ReviewCollectionInterface,
    StorageError,
)
from daily_ops.services.storage.crypto import EnvelopeCipher, derive_key
from daily_ops.services.storage.engine import (
    AppendOnlyCollection,
    PersistQueue,
    RecordCollection,
    ReviewCollection,
    StorageEngine,
    UserCollection,
)

__all__ = [
    # Interfaces
    "AppendOnlyCollectionInterface",
    "CollectionInterface",
    "ReviewCollectionInterface",
    # Exceptions
    "CorruptStoreError",
    "DecryptionError",
    "DuplicateError",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
    # Encryption
    "EnvelopeCipher",
    "derive_key",
    # Engine
    "AppendOnlyCollection",
    "PersistQueue",
    "RecordCollection",
    "ReviewCollection",
    "StorageEngine",
    "UserCollection",
]
