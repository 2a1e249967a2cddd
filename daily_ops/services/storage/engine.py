"""
Encrypted File Storage Engine

The engine owns the only authoritative copy of every record, in memory,
and persists the complete store to a single file after each mutation.

WRITE ORDERING:
Every mutation does two things in one synchronous step (no await in
between): it changes the in-memory store and it enqueues a serialized
copy of the whole store on the persist queue. A single writer task drains
the queue in order, so the file always holds a complete store that
matches some prefix of the applied mutations, and the last write to land
is always the latest state.

A mutation coroutine then waits for its own write. If the write fails it
raises PersistenceError, but the in-memory change stays: later reads in
this process see it and the next successful write carries it to disk.

TRADEOFFS:
- The whole store is rewritten on every change (fine for personal use)
- No rollback: a failed write never undoes the in-memory change
- A file that decrypts but does not parse is replaced by an empty store
"""

import asyncio
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Optional, TypeVar, Union

import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from daily_ops.audit import AuditLogger
from daily_ops.config import Settings
from daily_ops.models.records import (
    Idea,
    IdeaPatch,
    InboxEntry,
    PatchModel,
    ProfitEntry,
    ProfitPatch,
    RecordModel,
    Review,
    Task,
    TaskPatch,
    User,
    UserPatch,
    next_timestamp,
)
from daily_ops.models.store import StoreData, StoreSnapshot
from daily_ops.services.storage.crypto import EnvelopeCipher
from daily_ops.services.storage.interface import (
    AppendOnlyCollectionInterface,
    CollectionInterface,
    CorruptStoreError,
    DecryptionError,
    DuplicateError,
    NotFoundError,
    PersistenceError,
    ReviewCollectionInterface,
)


logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=RecordModel)
P = TypeVar("P", bound=PatchModel)

# Fields of a review that identify it or are managed by the engine
_REVIEW_KEY_FIELDS = {"owner_id", "date", "created_at", "updated_at"}


# =============================================================================
# FILE I/O
# =============================================================================

@retry(
    retry=retry_if_exception_type(OSError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
    reraise=True,
)
def write_file_atomic(path: Path, contents: str) -> None:
    """
    Replace ``path`` with ``contents`` (mode 0600).

    Writes a temporary file in the same directory and renames it over the
    target, so a crash mid-write never leaves a truncated data file.
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(contents)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class PersistQueue:
    """
    Single-writer queue of "persist this store" requests.

    submit() never awaits, so callers can enqueue in the same synchronous
    step as their in-memory change. Requests are written strictly in
    submission order by one worker task.
    """

    def __init__(self, path: Path, cipher: EnvelopeCipher):
        self._path = path
        self._cipher = cipher
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    def submit(self, store_json: str) -> asyncio.Future:
        """
        Enqueue a write of ``store_json``.

        Must be called from a coroutine running on the event loop.

        Returns:
            A future resolved when this write has landed, or failed with
            PersistenceError
        """
        loop = asyncio.get_running_loop()
        if self._worker is None or self._worker.done():
            # A finished worker may belong to a loop that is gone; its queue with it.
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._run(self._queue), name="daily-ops-persist")

        future = loop.create_future()
        self._queue.put_nowait((store_json, future))
        return future

    def _encode_and_write(self, store_json: str) -> None:
        write_file_atomic(self._path, self._cipher.encode(store_json))

    async def _run(self, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            try:
                if item is None:
                    return
                store_json, future = item
                try:
                    await asyncio.to_thread(self._encode_and_write, store_json)
                except Exception as e:
                    logger.error(
                        "persist_failed",
                        path=str(self._path),
                        error=str(e),
                        exc_info=True,
                    )
                    if not future.done():
                        error = PersistenceError(f"Failed to persist data file: {e}")
                        error.__cause__ = e
                        future.set_exception(error)
                else:
                    if not future.done():
                        future.set_result(None)
            finally:
                queue.task_done()

    async def join(self) -> None:
        """Wait until every submitted write has been attempted."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue and stop the worker."""
        if self._queue is None or self._worker is None or self._worker.done():
            return
        self._queue.put_nowait(None)
        await self._worker
        self._worker = None


# =============================================================================
# COLLECTIONS
# =============================================================================

class AppendOnlyCollection(AppendOnlyCollectionInterface[R]):
    """
    One collection of the store: records keyed by their ``id``.

    Holds no records itself; it always works on the engine's current store.
    """

    def __init__(self, engine: "StorageEngine", name: str, model: type[R]):
        self._engine = engine
        self._name = name
        self._model = model

    @property
    def name(self) -> str:
        return self._name

    def _items(self) -> list[R]:
        return getattr(self._engine._store, self._name)

    def _index_of(self, record_id: str) -> int:
        for index, record in enumerate(self._items()):
            if record.id == record_id:
                return index
        raise NotFoundError(f"{self._name}: no record with id {record_id}")

    def list(self) -> list[R]:
        return [record.model_copy(deep=True) for record in self._items()]

    def get(self, record_id: str) -> Optional[R]:
        for record in self._items():
            if record.id == record_id:
                return record.model_copy(deep=True)
        return None

    def _check_add(self, record: R) -> None:
        if not isinstance(record, self._model):
            raise TypeError(
                f"{self._name} stores {self._model.__name__}, got {type(record).__name__}"
            )
        if any(existing.id == record.id for existing in self._items()):
            raise DuplicateError(f"{self._name}: id {record.id} already exists")

    async def add(self, record: R) -> R:
        self._check_add(record)
        stored = record.model_copy(deep=True)

        self._items().append(stored)
        pending = self._engine._commit()

        self._engine.audit.record_added(self._name, stored.id, getattr(stored, "owner_id", None))
        await self._engine._wait(pending)
        return stored.model_copy(deep=True)

    async def remove(self, record_id: str) -> bool:
        items = self._items()
        index = self._index_of(record_id)

        removed = items.pop(index)
        pending = self._engine._commit()

        self._engine.audit.record_removed(self._name, record_id, getattr(removed, "owner_id", None))
        await self._engine._wait(pending)
        return True


class RecordCollection(AppendOnlyCollection[R], CollectionInterface[R, P]):
    """A collection whose records can be patched with ``update``."""

    def __init__(
        self,
        engine: "StorageEngine",
        name: str,
        model: type[R],
        patch_model: type[P],
    ):
        super().__init__(engine, name, model)
        self._patch_model = patch_model

    def _coerce_patch(self, patch: Union[P, Mapping[str, Any]]) -> P:
        if isinstance(patch, self._patch_model):
            return patch
        if isinstance(patch, Mapping):
            return self._patch_model.model_validate(dict(patch))
        raise TypeError(
            f"{self._name} expects {self._patch_model.__name__}, got {type(patch).__name__}"
        )

    def _merge(self, existing: R, changes: dict[str, Any]) -> R:
        data = existing.model_dump()
        data.update(changes)
        data["updated_at"] = next_timestamp(existing.updated_at)
        return self._model.model_validate(data)

    def _check_update(self, existing: R, changes: dict[str, Any]) -> None:
        """Hook for collection specific constraints."""
        return

    async def update(self, record_id: str, patch: Union[P, Mapping[str, Any]]) -> R:
        patch = self._coerce_patch(patch)
        changes = patch.changes()

        items = self._items()
        index = self._index_of(record_id)
        existing = items[index]
        self._check_update(existing, changes)
        # Validation errors surface here, before anything changes.
        merged = self._merge(existing, changes)

        items[index] = merged
        pending = self._engine._commit()

        self._engine.audit.record_updated(
            self._name,
            record_id,
            getattr(merged, "owner_id", None),
            sorted(changes),
        )
        await self._engine._wait(pending)
        return merged.model_copy(deep=True)


class UserCollection(RecordCollection[User, UserPatch]):
    """User accounts. Usernames are unique."""

    def get_by_username(self, username: str) -> Optional[User]:
        for user in self._items():
            if user.username == username:
                return user.model_copy(deep=True)
        return None

    def _check_add(self, record: User) -> None:
        super()._check_add(record)
        if self.get_by_username(record.username) is not None:
            raise DuplicateError(f"Username already taken: {record.username}")

    def _check_update(self, existing: User, changes: dict[str, Any]) -> None:
        username = changes.get("username")
        if username is None or username == existing.username:
            return
        if self.get_by_username(username) is not None:
            raise DuplicateError(f"Username already taken: {username}")


class ReviewCollection(ReviewCollectionInterface):
    """Daily reviews keyed by (owner_id, date)."""

    def __init__(self, engine: "StorageEngine"):
        self._engine = engine

    @property
    def name(self) -> str:
        return "reviews"

    def _items(self) -> list[Review]:
        return self._engine._store.reviews

    def _index_of(self, owner_id: Optional[str], review_date: date) -> Optional[int]:
        for index, review in enumerate(self._items()):
            if review.owner_id == owner_id and review.date == review_date:
                return index
        return None

    def list(self) -> list[Review]:
        return [review.model_copy(deep=True) for review in self._items()]

    def get(self, owner_id: Optional[str], review_date: date) -> Optional[Review]:
        index = self._index_of(owner_id, review_date)
        if index is None:
            return None
        return self._items()[index].model_copy(deep=True)

    async def upsert(self, review: Review) -> Review:
        if not isinstance(review, Review):
            raise TypeError(f"reviews stores Review, got {type(review).__name__}")

        items = self._items()
        index = self._index_of(review.owner_id, review.date)
        if index is None:
            stored = review.model_copy(deep=True)
            items.append(stored)
            created = True
        else:
            existing = items[index]
            changes = review.model_dump(exclude_unset=True, exclude=_REVIEW_KEY_FIELDS)
            data = existing.model_dump()
            data.update(changes)
            data["updated_at"] = next_timestamp(existing.updated_at)
            stored = Review.model_validate(data)
            items[index] = stored
            created = False
        pending = self._engine._commit()

        self._engine.audit.review_upserted(review.owner_id, review.date.isoformat(), created)
        await self._engine._wait(pending)
        return stored.model_copy(deep=True)

    async def remove(self, owner_id: Optional[str], review_date: date) -> bool:
        items = self._items()
        index = self._index_of(owner_id, review_date)
        if index is None:
            raise NotFoundError(f"reviews: no review for {review_date} (owner {owner_id})")

        items.pop(index)
        pending = self._engine._commit()

        self._engine.audit.record_removed("reviews", review_date.isoformat(), owner_id)
        await self._engine._wait(pending)
        return True


# =============================================================================
# ENGINE
# =============================================================================

class StorageEngine:
    """
    Single source of truth for all records.

    Usage:
        engine = StorageEngine.from_settings(settings)
        await engine.init()
        task = await engine.tasks.add(Task(owner_id=user.id, title="Ship it"))
        await engine.tasks.update(task.id, TaskPatch(status="done"))
        snapshot = engine.snapshot()
        await engine.close()
    """

    def __init__(
        self,
        data_path: Union[str, Path],
        secret: Optional[str] = None,
        audit: Optional[AuditLogger] = None,
    ):
        """
        Args:
            data_path: Data file location. Its directory is created by init().
            secret: Encryption secret. The file is plain JSON when None.
            audit: Audit logger for mutation events.
        """
        self._path = Path(data_path)
        self._cipher = EnvelopeCipher(secret)
        self._store = StoreData()
        self._writer = PersistQueue(self._path, self._cipher)
        self.audit = audit or AuditLogger()

        self.users = UserCollection(self, "users", User, UserPatch)
        self.tasks: RecordCollection[Task, TaskPatch] = RecordCollection(self, "tasks", Task, TaskPatch)
        self.ideas: RecordCollection[Idea, IdeaPatch] = RecordCollection(self, "ideas", Idea, IdeaPatch)
        self.profits: RecordCollection[ProfitEntry, ProfitPatch] = RecordCollection(
            self, "profits", ProfitEntry, ProfitPatch
        )
        self.inbox: AppendOnlyCollection[InboxEntry] = AppendOnlyCollection(self, "inbox", InboxEntry)
        self.reviews = ReviewCollection(self)

    @classmethod
    def from_settings(cls, settings: Settings, audit: Optional[AuditLogger] = None) -> "StorageEngine":
        return cls(settings.data_path, secret=settings.app_secret, audit=audit)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def encrypted(self) -> bool:
        return self._cipher.enabled

    # ---- startup ----

    def _ensure_data_directory(self) -> None:
        if not self._path.parent.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

    def _read_file(self) -> Optional[bytes]:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None

    @staticmethod
    def _parse(plaintext: str) -> StoreData:
        try:
            return StoreData.from_json(plaintext)
        except ValidationError as e:
            raise CorruptStoreError(f"Data file is not a valid store: {e.error_count()} error(s)") from e

    def _reset_corrupt(self, error: CorruptStoreError) -> None:
        # The unreadable file stays on disk until the next mutation overwrites it.
        logger.error(
            "store_corrupt_reset",
            path=str(self._path),
            error=str(error),
            action="reset_to_empty_store",
        )
        self._store = StoreData()

    async def init(self) -> None:
        """
        Load the data file, creating it when missing or empty.

        Raises:
            DecryptionError: The file cannot be decrypted with the
                configured secret. Startup must not continue.
            PersistenceError: A new file could not be written.
        """
        await asyncio.to_thread(self._ensure_data_directory)
        raw = await asyncio.to_thread(self._read_file)

        if raw is None or not raw.strip():
            self._store = StoreData()
            logger.info("store_created", path=str(self._path), encrypted=self.encrypted)
            await self._wait(self._commit())
            return

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            if self.encrypted:
                raise DecryptionError("Data file is not valid UTF-8.")
            self._reset_corrupt(CorruptStoreError("Data file is not valid UTF-8."))
            return

        plaintext = self._cipher.decode(text)
        try:
            self._store = self._parse(plaintext)
        except CorruptStoreError as e:
            self._reset_corrupt(e)
            return

        logger.info(
            "store_loaded",
            path=str(self._path),
            encrypted=self.encrypted,
            **self._store.counts(),
        )

    # ---- reads ----

    def snapshot(self) -> StoreSnapshot:
        """Deep, point-in-time copy of every collection."""
        return self._store.model_copy(deep=True)

    get_snapshot = snapshot

    async def upsert_review(self, review: Review) -> Review:
        return await self.reviews.upsert(review)

    # ---- persistence ----

    def _commit(self) -> asyncio.Future:
        """Enqueue a write of the current store. Never awaits."""
        return self._writer.submit(self._store.to_json())

    @staticmethod
    async def _wait(pending: asyncio.Future) -> None:
        # Shielded: a cancelled caller must not cancel a write already queued.
        await asyncio.shield(pending)

    async def flush(self) -> None:
        """Wait until every queued write has been attempted."""
        await self._writer.join()

    async def close(self) -> None:
        """Flush pending writes and stop the writer task."""
        await self._writer.close()
