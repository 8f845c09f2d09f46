"""Tests for the local store."""

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from studio_sync.core.exceptions import (
    RecordExistsError,
    RecordNotFoundError,
    StorageUnavailableError,
)
from studio_sync.core.models import (
    ArtifactRecord,
    ArtifactStatus,
    GenerationResult,
    QueuedRequestRecord,
    RequestPayload,
    RequestType,
)
from studio_sync.store.database import LocalStore


def make_artifact(record_id: str, created_at: datetime | None = None, **kwargs) -> ArtifactRecord:
    values = {
        "id": record_id,
        "prompt_text": f"prompt {record_id}",
        "request_type": RequestType.GENERATE_IMAGE,
        "status": ArtifactStatus.QUEUED,
    }
    if created_at is not None:
        values["created_at"] = created_at
    values.update(kwargs)
    return ArtifactRecord(**values)


def make_request(record_id: str, created_at: datetime | None = None) -> QueuedRequestRecord:
    values = {
        "id": record_id,
        "request_type": RequestType.GENERATE_IMAGE,
        "payload": RequestPayload(prompt=f"prompt {record_id}", aspect_ratio="1:1"),
    }
    if created_at is not None:
        values["created_at"] = created_at
    return QueuedRequestRecord(**values)


class TestCollection:
    """Tests for per-collection operations."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, store: LocalStore) -> None:
        artifact = make_artifact("a1")
        await store.artifacts.put(artifact)
        assert await store.artifacts.get("a1") == artifact
        assert await store.artifacts.get("missing") is None

    @pytest.mark.asyncio
    async def test_put_replaces(self, store: LocalStore) -> None:
        await store.artifacts.put(make_artifact("a1"))
        await store.artifacts.put(make_artifact("a1", prompt_text="changed"))
        assert (await store.artifacts.get("a1")).prompt_text == "changed"
        assert await store.artifacts.count() == 1

    @pytest.mark.asyncio
    async def test_add_refuses_existing_id(self, store: LocalStore) -> None:
        await store.artifacts.add(make_artifact("a1"))
        with pytest.raises(RecordExistsError):
            await store.artifacts.add(make_artifact("a1"))

    @pytest.mark.asyncio
    async def test_get_all_by_time_orders_by_creation(self, store: LocalStore) -> None:
        """Records come back oldest first regardless of insertion order."""
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        await store.queue.put(make_request("late", base + timedelta(seconds=2)))
        await store.queue.put(make_request("early", base))
        await store.queue.put(make_request("middle", base + timedelta(milliseconds=500)))

        ids = [r.id for r in await store.queue.get_all_by_time()]
        assert ids == ["early", "middle", "late"]

    @pytest.mark.asyncio
    async def test_order_is_stable_across_timezones(self, store: LocalStore) -> None:
        utc = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        plus_two = timezone(timedelta(hours=2))
        await store.queue.put(make_request("local", datetime(2024, 5, 1, 13, 30, tzinfo=plus_two)))
        await store.queue.put(make_request("utc", utc))

        ids = [r.id for r in await store.queue.get_all_by_time()]
        assert ids == ["local", "utc"]

    @pytest.mark.asyncio
    async def test_delete(self, store: LocalStore) -> None:
        await store.artifacts.put(make_artifact("a1"))
        assert await store.artifacts.delete("a1") is True
        assert await store.artifacts.delete("a1") is False
        assert await store.artifacts.count() == 0

    @pytest.mark.asyncio
    async def test_update_with_values(self, store: LocalStore) -> None:
        original = make_artifact("a1")
        await store.artifacts.put(original)

        updated = await store.artifacts.update(
            "a1", {"status": ArtifactStatus.FAILED, "error_message": "quota"}
        )
        assert updated.status is ArtifactStatus.FAILED
        assert updated.updated_at >= original.updated_at
        assert await store.artifacts.get("a1") == updated

    @pytest.mark.asyncio
    async def test_update_with_callable(self, store: LocalStore) -> None:
        """Changes can be computed from the current record."""
        await store.queue.put(make_request("q1"))
        for _ in range(3):
            await store.queue.update("q1", lambda current: {"retry_count": current.retry_count + 1})
        assert (await store.queue.get("q1")).retry_count == 3

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, store: LocalStore) -> None:
        assert await store.queue.update("missing", {"retry_count": 1}) is None

    @pytest.mark.asyncio
    async def test_update_keeps_id(self, store: LocalStore) -> None:
        await store.queue.put(make_request("q1"))
        updated = await store.queue.update("q1", {"id": "other", "last_error": "x"})
        assert updated.id == "q1"
        assert await store.queue.get("other") is None

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_record(self, store: LocalStore) -> None:
        """A change that breaks the record's rules is rejected."""
        await store.artifacts.put(make_artifact("a1"))
        with pytest.raises(ValueError):
            await store.artifacts.update("a1", {"error_message": "not failed"})
        assert (await store.artifacts.get("a1")).error_message is None


class TestMigrations:
    """Tests for schema setup and upgrades."""

    @pytest.mark.asyncio
    async def test_fresh_store_applies_all_migrations(self, temp_dir: Path) -> None:
        store = LocalStore(temp_dir / "fresh.db")
        await store.initialize()
        await store.initialize()
        assert store.applied_migrations == [1, 2]
        assert await store.schema_version() == LocalStore.SCHEMA_VERSION
        await store.close()

    @pytest.mark.asyncio
    async def test_reopen_preserves_data(self, temp_dir: Path) -> None:
        db_path = temp_dir / "studio.db"
        async with LocalStore(db_path) as store:
            await store.artifacts.put(make_artifact("a1"))

        async with LocalStore(db_path) as reopened:
            assert reopened.applied_migrations == []
            assert (await reopened.artifacts.get("a1")).id == "a1"

    @pytest.mark.asyncio
    async def test_upgrade_from_version_one(self, temp_dir: Path) -> None:
        """A database created before dead letters gains only the new table."""
        db_path = temp_dir / "old.db"
        conn = sqlite3.connect(db_path)
        conn.execute("CREATE TABLE store_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO store_meta VALUES ('schema_version', '1')")
        for table in ("artifacts", "sync_queue"):
            conn.execute(
                f"CREATE TABLE {table} (id TEXT PRIMARY KEY, created_at TEXT NOT NULL, data TEXT NOT NULL)"
            )
        artifact = make_artifact("a1")
        conn.execute(
            "INSERT INTO artifacts VALUES (?, ?, ?)",
            ("a1", "2024-01-01T00:00:00.000000Z", artifact.model_dump_json()),
        )
        conn.commit()
        conn.close()

        async with LocalStore(db_path) as store:
            assert store.applied_migrations == [2]
            assert await store.schema_version() == 2
            assert await store.artifacts.get("a1") == artifact
            assert await store.dead_letters.count() == 0

    @pytest.mark.asyncio
    async def test_unopenable_path(self, temp_dir: Path) -> None:
        store = LocalStore(temp_dir)
        with pytest.raises(StorageUnavailableError):
            await store.initialize()

    @pytest.mark.asyncio
    async def test_failed_migration_closes_connection(self, temp_dir: Path, monkeypatch) -> None:
        """A schema that cannot be migrated leaves no open handle behind."""
        db_path = temp_dir / "broken.db"
        conn = sqlite3.connect(db_path)
        conn.execute("CREATE VIEW artifacts AS SELECT 1 AS id")
        conn.commit()
        conn.close()

        opened: list[sqlite3.Connection] = []
        connect = sqlite3.connect

        def recording_connect(*args, **kwargs) -> sqlite3.Connection:
            opened.append(connect(*args, **kwargs))
            return opened[-1]

        monkeypatch.setattr(sqlite3, "connect", recording_connect)

        store = LocalStore(db_path)
        with pytest.raises(StorageUnavailableError) as exc_info:
            await store.initialize()
        assert exc_info.value.operation == "open"

        assert len(opened) == 1
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0].execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_corrupt_record(self, temp_dir: Path) -> None:
        db_path = temp_dir / "studio.db"
        async with LocalStore(db_path):
            pass
        conn = sqlite3.connect(db_path)
        conn.execute(
            "INSERT INTO sync_queue VALUES ('bad', '2024-01-01T00:00:00.000000Z', '{not json')"
        )
        conn.commit()
        conn.close()

        async with LocalStore(db_path) as store:
            with pytest.raises(StorageUnavailableError) as exc_info:
                await store.queue.get("bad")
            assert exc_info.value.record_id == "bad"


class TestQueueTransactions:
    """Tests for cross-collection operations."""

    @pytest.mark.asyncio
    async def test_enqueue_writes_pair(self, store: LocalStore) -> None:
        artifact = make_artifact("x")
        request = make_request("x", artifact.created_at)
        await store.enqueue(artifact, request)

        assert (await store.artifacts.get("x")).status is ArtifactStatus.QUEUED
        assert (await store.queue.get("x")).retry_count == 0

    @pytest.mark.asyncio
    async def test_enqueue_rejects_mismatched_ids(self, store: LocalStore) -> None:
        with pytest.raises(ValueError):
            await store.enqueue(make_artifact("x"), make_request("y"))

    @pytest.mark.asyncio
    async def test_enqueue_is_all_or_nothing(self, store: LocalStore) -> None:
        """An existing queue row blocks the pair without leaving an artifact."""
        await store.queue.put(make_request("x"))
        with pytest.raises(RecordExistsError):
            await store.enqueue(make_artifact("x"), make_request("x"))
        assert await store.artifacts.get("x") is None

    @pytest.mark.asyncio
    async def test_complete(self, store: LocalStore) -> None:
        await store.enqueue(make_artifact("x"), make_request("x"))
        result = GenerationResult.from_bytes(b"img", "image/jpeg")

        artifact = await store.complete("x", result)
        assert artifact.status is ArtifactStatus.COMPLETED
        assert artifact.payload == result
        assert await store.queue.get("x") is None

    @pytest.mark.asyncio
    async def test_give_up_and_resurrect(self, store: LocalStore) -> None:
        await store.enqueue(make_artifact("x"), make_request("x"))
        await store.queue.update("x", {"retry_count": 4, "last_error": "quota"})

        failed = await store.give_up("x", "quota")
        assert failed.status is ArtifactStatus.FAILED
        assert failed.error_message == "quota"
        assert await store.queue.get("x") is None
        letter = await store.dead_letters.get("x")
        assert letter.retry_count == 4

        restored = await store.resurrect("x")
        assert restored.status is ArtifactStatus.QUEUED
        assert restored.error_message is None
        assert (await store.queue.get("x")).retry_count == 0
        assert await store.dead_letters.get("x") is None

    @pytest.mark.asyncio
    async def test_resurrect_unknown(self, store: LocalStore) -> None:
        with pytest.raises(RecordNotFoundError):
            await store.resurrect("missing")
