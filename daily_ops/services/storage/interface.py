"""
Abstract Storage Interface

DESIGN DECISION: Callers work with typed collections (tasks, ideas,
profits, inbox, reviews, users), never with the raw store. Each
collection implements one of the interfaces below.

Reads are synchronous: they copy from memory and never wait on disk.
Mutations are coroutines: they apply the change in memory, queue a write
of the whole store, and wait for that write to finish.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Generic, Optional, TypeVar

from daily_ops.models.records import PatchModel, RecordModel, Review


R = TypeVar("R", bound=RecordModel)
P = TypeVar("P", bound=PatchModel)


class AppendOnlyCollectionInterface(ABC, Generic[R]):
    """
    A collection whose records are added and removed, never edited.
    """

    @abstractmethod
    def list(self) -> list[R]:
        """
        Copies of every record in insertion order.

        Mutating the returned records never affects the store.
        """
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[R]:
        """
        Copy of one record.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def add(self, record: R) -> R:
        """
        Append a record and persist.

        Returns:
            A copy of the stored record

        Raises:
            PersistenceError: If the write failed. The record is still
                visible to later reads in this process.
        """
        pass

    @abstractmethod
    async def remove(self, record_id: str) -> bool:
        """
        Remove a record and persist.

        Returns:
            True once removed

        Raises:
            NotFoundError: If no record has this id
            PersistenceError: If the write failed
        """
        pass


class CollectionInterface(AppendOnlyCollectionInterface[R], Generic[R, P]):
    """A collection whose records can also be patched."""

    @abstractmethod
    async def update(self, record_id: str, patch: P) -> R:
        """
        Apply the fields set on ``patch`` to a record and persist.

        updatedAt always moves forward, even for an empty patch.

        Returns:
            A copy of the merged record

        Raises:
            NotFoundError: If no record has this id
            ValueError: If the merged record is not valid
            PersistenceError: If the write failed
        """
        pass


class ReviewCollectionInterface(ABC):
    """Daily reviews, unique per (owner_id, date)."""

    @abstractmethod
    def list(self) -> list[Review]:
        pass

    @abstractmethod
    def get(self, owner_id: Optional[str], review_date: date) -> Optional[Review]:
        pass

    @abstractmethod
    async def upsert(self, review: Review) -> Review:
        """
        Merge into the existing review for (owner_id, date), or insert.

        Only fields explicitly set on ``review`` are merged; createdAt of
        an existing review is kept and updatedAt is refreshed.
        """
        pass

    @abstractmethod
    async def remove(self, owner_id: Optional[str], review_date: date) -> bool:
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class DecryptionError(StorageError):
    """
    The data file could not be decrypted (wrong or missing secret,
    damaged envelope). Fatal at startup.
    """
    pass


class CorruptStoreError(StorageError):
    """The data file decrypted but is not a valid store."""
    pass


class PersistenceError(StorageError):
    """
    Writing the data file failed.

    The in-memory change that triggered the write is kept.
    """
    pass
