"""
Tests for the storage engine.

Each test drives the engine inside a single asyncio.run() call against a
fresh data file under tmp_path.
"""

import asyncio
import json
import os
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from daily_ops.models import (
    Idea,
    IdeaPatch,
    InboxEntry,
    ProfitEntry,
    Review,
    StoreData,
    Task,
    TaskPatch,
    User,
)
from daily_ops.models.records import PasswordCredential
from daily_ops.services.storage import (
    DecryptionError,
    DuplicateError,
    EnvelopeCipher,
    NotFoundError,
    PersistenceError,
)
from daily_ops.services.storage import engine as engine_module

from conftest import TEST_SECRET


def _read_store(path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


def _user(username="ada"):
    return User(username=username, password=PasswordCredential(salt="00", hash="ff"))


class TestInit:
    """Tests for loading and creating the data file."""

    def test_creates_missing_file(self, make_engine, data_path):
        """Test that a missing file is created with an empty store."""
        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.close()

        asyncio.run(scenario())
        assert data_path.exists()
        assert _read_store(data_path) == {
            "users": [], "tasks": [], "ideas": [], "profits": [], "inbox": [], "reviews": [],
        }

    def test_data_directory_is_private(self, make_engine, data_path):
        asyncio.run(make_engine().init())
        assert (data_path.parent.stat().st_mode & 0o777) == 0o700 & ~_umask()

    def test_empty_file_starts_empty(self, make_engine, data_path):
        data_path.parent.mkdir(parents=True)
        data_path.write_text("  \n")

        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.close()
            return engine.snapshot()

        assert asyncio.run(scenario()).counts()["tasks"] == 0
        assert _read_store(data_path)["tasks"] == []

    def test_corrupt_file_resets_without_rewrite(self, make_engine, data_path):
        """Test that an unparseable file loads as an empty store."""
        data_path.parent.mkdir(parents=True)
        data_path.write_text("{not json")

        async def scenario():
            engine = make_engine()
            await engine.init()
            return engine.snapshot()

        assert asyncio.run(scenario()) == StoreData()
        assert data_path.read_text() == "{not json"

    def test_invalid_schema_resets(self, make_engine, data_path):
        data_path.parent.mkdir(parents=True)
        data_path.write_text('{"tasks": "not a list"}')

        async def scenario():
            engine = make_engine()
            await engine.init()
            return engine.tasks.list()

        assert asyncio.run(scenario()) == []

    def test_corrupt_encrypted_payload_resets(self, make_engine, data_path):
        """Test that a file that decrypts but does not parse is reset."""
        data_path.parent.mkdir(parents=True)
        data_path.write_text(EnvelopeCipher(TEST_SECRET).encode('{"tasks": 3}'))

        async def scenario():
            engine = make_engine(secret=TEST_SECRET)
            await engine.init()
            return engine.tasks.list()

        assert asyncio.run(scenario()) == []

    def test_older_file_format_loads_and_survives_next_write(self, make_engine, data_path):
        """Test that a file written by an older version keeps its tasks."""
        data_path.parent.mkdir(parents=True)
        data_path.write_text(json.dumps({
            "tasks": [
                {
                    "id": "t1",
                    "title": "Legacy task",
                    "dueDate": "2024-03-15",
                    "status": "pending",
                    "priority": "high",
                    "estimatedMinutes": 0,
                    "checklist": ["step one"],
                    "createdAt": "2024-03-01T09:00:00.000Z",
                    "updatedAt": "2024-03-01T09:00:00.000Z",
                },
                {"id": "t2", "title": "L" * 600, "createdAt": "2024-03-02T09:00:00"},
            ],
            "profits": [{"id": "p1", "date": "2024-03-15", "amount": 12.5}],
        }))

        async def scenario():
            engine = make_engine()
            await engine.init()
            loaded = engine.tasks.list()
            await engine.inbox.add(InboxEntry(content="after upgrade"))
            await engine.close()
            return loaded

        loaded = asyncio.run(scenario())
        assert [t.id for t in loaded] == ["t1", "t2"]
        assert loaded[0].estimated_minutes is None
        assert loaded[0].owner_id is None

        on_disk = _read_store(data_path)
        assert [t["id"] for t in on_disk["tasks"]] == ["t1", "t2"]
        assert on_disk["profits"][0]["amount"] == "12.5"
        assert on_disk["inbox"][0]["content"] == "after upgrade"

    def test_invalid_record_is_skipped(self, make_engine, data_path):
        """Test that one bad record does not discard the rest of the store."""
        data_path.parent.mkdir(parents=True)
        data_path.write_text(json.dumps({
            "tasks": [{"id": "ok", "title": "fine"}, {"id": "bad", "title": ""}, "not a record"],
            "reviews": [{"highlight": "no date"}],
            "ideas": [{"id": "i1", "title": "keep me"}],
        }))

        async def scenario():
            engine = make_engine()
            await engine.init()
            return engine.snapshot()

        snapshot = asyncio.run(scenario())
        assert [t.id for t in snapshot.tasks] == ["ok"]
        assert snapshot.reviews == []
        assert [i.id for i in snapshot.ideas] == ["i1"]

    def test_null_collection_loads_empty(self, make_engine, data_path):
        data_path.parent.mkdir(parents=True)
        data_path.write_text('{"tasks": null, "ideas": [{"title": "kept"}]}')

        async def scenario():
            engine = make_engine()
            await engine.init()
            return engine.snapshot()

        snapshot = asyncio.run(scenario())
        assert snapshot.tasks == []
        assert [i.title for i in snapshot.ideas] == ["kept"]

    def test_wrong_secret_is_fatal(self, make_engine):
        async def scenario():
            engine = make_engine(secret=TEST_SECRET)
            await engine.init()
            await engine.tasks.add(Task(title="private"))
            await engine.close()

            await make_engine(secret="not the secret").init()

        with pytest.raises(DecryptionError):
            asyncio.run(scenario())

    def test_encrypted_file_without_secret_is_fatal(self, make_engine):
        async def scenario():
            engine = make_engine(secret=TEST_SECRET)
            await engine.init()
            await engine.close()

            await make_engine().init()

        with pytest.raises(DecryptionError):
            asyncio.run(scenario())

    def test_plaintext_file_is_encrypted_on_next_write(self, make_engine, data_path):
        """Test that enabling a secret keeps existing plaintext data."""
        data_path.parent.mkdir(parents=True)
        data_path.write_text(StoreData(tasks=[Task(title="old")]).to_json())

        async def scenario():
            engine = make_engine(secret=TEST_SECRET)
            await engine.init()
            titles = [t.title for t in engine.tasks.list()]
            await engine.tasks.add(Task(title="new"))
            await engine.close()
            return titles

        assert asyncio.run(scenario()) == ["old"]
        assert set(_read_store(data_path)) == {"version", "iv", "tag", "data"}


class TestRoundTrip:
    """Tests that what is persisted is what is loaded."""

    def _populate(self, make_engine, secret):
        async def scenario():
            engine = make_engine(secret=secret)
            await engine.init()
            user = await engine.users.add(_user())
            await engine.tasks.add(
                Task(owner_id=user.id, title="Ship", due_date=date(2024, 3, 15), tags="a, b")
            )
            await engine.ideas.add(Idea(owner_id=user.id, title="Podcast"))
            await engine.profits.add(
                ProfitEntry(owner_id=user.id, date=date(2024, 3, 15), amount="10.10")
            )
            await engine.inbox.add(InboxEntry(owner_id=user.id, content="call mom"))
            await engine.upsert_review(
                Review(owner_id=user.id, date=date(2024, 3, 15), highlight="shipped")
            )
            await engine.close()
            return engine.snapshot()

        return asyncio.run(scenario())

    def _reload(self, make_engine, secret):
        async def scenario():
            engine = make_engine(secret=secret)
            await engine.init()
            return engine.snapshot()

        return asyncio.run(scenario())

    def test_plain_round_trip(self, make_engine):
        before = self._populate(make_engine, None)
        after = self._reload(make_engine, None)
        assert after.to_json() == before.to_json()

    def test_encrypted_round_trip(self, make_engine, data_path):
        before = self._populate(make_engine, TEST_SECRET)
        assert "Ship" not in data_path.read_text()

        after = self._reload(make_engine, TEST_SECRET)
        assert after.to_json() == before.to_json()

    def test_amount_stays_exact(self, make_engine):
        self._populate(make_engine, None)
        after = self._reload(make_engine, None)
        assert after.profits[0].amount == Decimal("10.10")

    def test_file_is_pretty_printed_without_secret(self, make_engine, data_path):
        self._populate(make_engine, None)
        assert data_path.read_text().startswith('{\n  "users"')


class TestCollections:
    """Tests for list / get / add / update / remove."""

    def test_add_and_list(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            stored = await engine.tasks.add(Task(title="one"))
            return stored, engine.tasks.list(), engine.tasks.get(stored.id)

        stored, listed, fetched = asyncio.run(scenario())
        assert [t.id for t in listed] == [stored.id]
        assert fetched == stored

    def test_get_unknown_is_none(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            return engine.ideas.get("nope")

        assert asyncio.run(scenario()) is None

    def test_list_returns_copies(self, make_engine):
        """Test that mutating a read result never touches the store."""
        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.tasks.add(Task(title="original", tags=["x"]))
            listed = engine.tasks.list()
            listed[0].title = "changed"
            listed[0].tags.append("y")
            engine.snapshot().tasks[0].title = "changed too"
            return engine.tasks.list()[0]

        task = asyncio.run(scenario())
        assert task.title == "original"
        assert task.tags == ["x"]

    def test_add_rejects_duplicate_id(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            task = await engine.tasks.add(Task(title="one"))
            await engine.tasks.add(Task(id=task.id, title="two"))

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())

    def test_add_rejects_wrong_type(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.tasks.add(Idea(title="not a task"))

        with pytest.raises(TypeError):
            asyncio.run(scenario())

    def test_update_applies_only_set_fields(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            task = await engine.tasks.add(
                Task(title="one", description="keep me", due_date=date(2024, 3, 15))
            )
            return await engine.tasks.update(task.id, TaskPatch(status="done"))

        updated = asyncio.run(scenario())
        assert updated.is_done
        assert updated.description == "keep me"
        assert updated.due_date == date(2024, 3, 15)

    def test_update_explicit_null_clears(self, make_engine):
        """Test that an explicit null clears a field while omission keeps it."""
        async def scenario():
            engine = make_engine()
            await engine.init()
            task = await engine.tasks.add(Task(title="one", due_date=date(2024, 3, 15)))
            return await engine.tasks.update(task.id, {"dueDate": None})

        assert asyncio.run(scenario()).due_date is None

    def test_empty_update_only_advances_updated_at(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            task = await engine.tasks.add(Task(title="one", tags=["a"]))
            return task, await engine.tasks.update(task.id, {})

        before, after = asyncio.run(scenario())
        assert after.updated_at > before.updated_at
        assert after.model_dump(exclude={"updated_at"}) == before.model_dump(exclude={"updated_at"})

    def test_update_is_persisted(self, make_engine, data_path):
        async def scenario():
            engine = make_engine()
            await engine.init()
            idea = await engine.ideas.add(Idea(title="draft"))
            await engine.ideas.update(idea.id, IdeaPatch(title="final"))

        asyncio.run(scenario())
        assert _read_store(data_path)["ideas"][0]["title"] == "final"

    def test_invalid_update_changes_nothing(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            task = await engine.tasks.add(Task(title="one"))
            with pytest.raises(ValidationError):
                await engine.tasks.update(task.id, {"estimatedMinutes": -5})
            return engine.tasks.get(task.id)

        assert asyncio.run(scenario()).estimated_minutes is None

    def test_update_unknown_id(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.tasks.update("missing", {"title": "x"})

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())

    def test_remove(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            entry = await engine.inbox.add(InboxEntry(content="note"))
            removed = await engine.inbox.remove(entry.id)
            with pytest.raises(NotFoundError):
                await engine.inbox.remove(entry.id)
            return removed, engine.inbox.list()

        removed, remaining = asyncio.run(scenario())
        assert removed is True
        assert remaining == []

    def test_inbox_has_no_update(self, make_engine):
        assert not hasattr(make_engine().inbox, "update")


class TestUsers:
    def test_username_is_unique(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.users.add(_user("ada"))
            await engine.users.add(_user("ada"))

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())

    def test_rename_to_taken_username(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.users.add(_user("ada"))
            bob = await engine.users.add(_user("bob"))
            await engine.users.update(bob.id, {"username": "ada"})

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())

    def test_get_by_username(self, make_engine):
        async def scenario():
            engine = make_engine()
            await engine.init()
            user = await engine.users.add(_user("ada"))
            return user, engine.users.get_by_username("ada"), engine.users.get_by_username("eve")

        user, found, missing = asyncio.run(scenario())
        assert found.id == user.id
        assert missing is None


class TestReviews:
    """Tests for (owner, date) keyed reviews."""

    def test_upsert_same_day_keeps_one_review(self, make_engine):
        """Test that the latest highlight wins and only one review exists."""
        day = date(2024, 3, 15)

        async def scenario():
            engine = make_engine()
            await engine.init()
            first = await engine.upsert_review(
                Review(owner_id="u1", date=day, highlight="first", lessons="slow down")
            )
            second = await engine.upsert_review(Review(owner_id="u1", date=day, highlight="second"))
            return first, second, engine.reviews.list()

        first, second, reviews = asyncio.run(scenario())
        assert len(reviews) == 1
        assert reviews[0].highlight == "second"
        assert reviews[0].lessons == "slow down"
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at

    def test_different_owners_same_day(self, make_engine):
        day = date(2024, 3, 15)

        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.reviews.upsert(Review(owner_id="u1", date=day))
            await engine.reviews.upsert(Review(owner_id="u2", date=day))
            return engine.reviews.list()

        assert len(asyncio.run(scenario())) == 2

    def test_get_and_remove_by_key(self, make_engine):
        day = date(2024, 3, 15)

        async def scenario():
            engine = make_engine()
            await engine.init()
            await engine.reviews.upsert(Review(owner_id="u1", date=day, mood="good"))
            found = engine.reviews.get("u1", day)
            await engine.reviews.remove("u1", day)
            with pytest.raises(NotFoundError):
                await engine.reviews.remove("u1", day)
            return found, engine.reviews.get("u1", day)

        found, gone = asyncio.run(scenario())
        assert found.mood == "good"
        assert gone is None


class TestWriteOrdering:
    """Tests for the single-writer persist queue."""

    def test_concurrent_adds_all_land_in_order(self, make_engine, data_path, monkeypatch):
        written = []
        real_write = engine_module.write_file_atomic

        def recording_write(path, contents):
            written.append(len(json.loads(contents)["tasks"]))
            real_write(path, contents)

        monkeypatch.setattr(engine_module, "write_file_atomic", recording_write)

        async def scenario():
            engine = make_engine()
            await engine.init()
            await asyncio.gather(*(engine.tasks.add(Task(title=f"t{i}")) for i in range(20)))
            await engine.close()

        asyncio.run(scenario())
        assert written == list(range(21))
        assert [t["title"] for t in _read_store(data_path)["tasks"]] == [f"t{i}" for i in range(20)]

    def test_last_mutation_wins_on_disk(self, make_engine, data_path):
        async def scenario():
            engine = make_engine()
            await engine.init()
            task = await engine.tasks.add(Task(title="v0"))
            await asyncio.gather(
                engine.tasks.update(task.id, {"title": "v1"}),
                engine.tasks.update(task.id, {"title": "v2"}),
            )
            await engine.flush()

        asyncio.run(scenario())
        assert _read_store(data_path)["tasks"][0]["title"] == "v2"


class TestPersistenceFaults:
    """Tests for disk failures."""

    def test_failed_write_keeps_memory_state(self, make_engine, data_path, monkeypatch):
        """Test that a failed write raises but does not roll back."""
        real_write = engine_module.write_file_atomic

        def failing_write(path, contents):
            raise OSError("disk full")

        async def scenario():
            engine = make_engine()
            await engine.init()

            monkeypatch.setattr(engine_module, "write_file_atomic", failing_write)
            with pytest.raises(PersistenceError):
                await engine.tasks.add(Task(title="unsaved"))
            in_memory = [t.title for t in engine.tasks.list()]

            monkeypatch.setattr(engine_module, "write_file_atomic", real_write)
            await engine.tasks.add(Task(title="saved"))
            await engine.close()
            return in_memory

        assert asyncio.run(scenario()) == ["unsaved"]
        assert [t["title"] for t in _read_store(data_path)["tasks"]] == ["unsaved", "saved"]

    def test_transient_error_is_retried(self, tmp_path, monkeypatch):
        attempts = []
        real_replace = os.replace

        def flaky_replace(src, dst):
            attempts.append(dst)
            if len(attempts) == 1:
                raise OSError("resource busy")
            real_replace(src, dst)

        monkeypatch.setattr(engine_module.os, "replace", flaky_replace)
        target = tmp_path / "store.json"
        engine_module.write_file_atomic(target, "{}")

        assert len(attempts) == 2
        assert target.read_text() == "{}"
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    def test_file_mode_is_private(self, make_engine, data_path):
        asyncio.run(make_engine().init())
        assert (data_path.stat().st_mode & 0o777) == 0o600


def _umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask
