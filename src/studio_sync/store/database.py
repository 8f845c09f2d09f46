"""
Local store for artifacts and the offline sync queue.

Backed by a single SQLite database. Each collection is a table keyed by
record id, holding the record as JSON plus a creation-time column with a
secondary index for time-ordered reads.

Blocking SQLite calls run in worker threads via asyncio.to_thread; a
per-store lock serializes access to the one shared connection, and every
mutation is a read-modify-write inside a single IMMEDIATE transaction.
"""

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generic, Iterator, TypeVar

from pydantic import BaseModel, ValidationError

from studio_sync.core.exceptions import (
    RecordExistsError,
    RecordNotFoundError,
    StorageUnavailableError,
)
from studio_sync.core.models import (
    ArtifactRecord,
    ArtifactStatus,
    DeadLetterRecord,
    GenerationResult,
    QueuedRequestRecord,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)

Changes = dict[str, Any] | Callable[[Any], dict[str, Any]]

ARTIFACTS = "artifacts"
SYNC_QUEUE = "sync_queue"
DEAD_LETTERS = "dead_letters"

# Tables introduced by each schema version. Migrations are additive.
MIGRATIONS: dict[int, tuple[str, ...]] = {
    1: (ARTIFACTS, SYNC_QUEUE),
    2: (DEAD_LETTERS,),
}


def _time_key(value: datetime) -> str:
    """Fixed-width UTC timestamp so lexical order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Collection(Generic[R]):
    """
    One keyed collection inside a LocalStore.

    Provides put/add/get/get_all_by_time/delete/update/count for a single
    record type. All methods are coroutines.
    """

    def __init__(self, store: "LocalStore", name: str, model: type[R]):
        self._store = store
        self.name = name
        self.model = model

    async def put(self, record: R) -> None:
        """Insert or replace a record."""
        await self._store._run(lambda cur: self._write(cur, record), self.name, "put", record.id)

    async def add(self, record: R) -> None:
        """Insert a record, refusing to overwrite an existing id."""

        def op(cur: sqlite3.Cursor) -> None:
            if self._read(cur, record.id) is not None:
                raise RecordExistsError(collection=self.name, record_id=record.id)
            self._write(cur, record)

        await self._store._run(op, self.name, "add", record.id)

    async def get(self, record_id: str) -> R | None:
        """Get a record by id."""
        return await self._store._run(lambda cur: self._read(cur, record_id), self.name, "get", record_id)

    async def get_all_by_time(self) -> list[R]:
        """Get all records in ascending creation order."""

        def op(cur: sqlite3.Cursor) -> list[R]:
            cur.execute(f"SELECT id, data FROM {self.name} ORDER BY created_at ASC, id ASC")
            return [self._decode(row["id"], row["data"]) for row in cur.fetchall()]

        return await self._store._run(op, self.name, "get_all_by_time")

    async def delete(self, record_id: str) -> bool:
        """Delete a record. Returns True if a row was removed."""
        return await self._store._run(lambda cur: self._remove(cur, record_id), self.name, "delete", record_id)

    async def update(self, record_id: str, changes: Changes) -> R | None:
        """
        Apply partial changes to a record in one transaction.

        Args:
            record_id: Id of the record to modify
            changes: Field values to set, or a callable computing them
                from the current record

        Returns:
            The updated record, or None if it does not exist
        """
        return await self._store._run(
            lambda cur: self._modify(cur, record_id, changes), self.name, "update", record_id
        )

    async def count(self) -> int:
        def op(cur: sqlite3.Cursor) -> int:
            cur.execute(f"SELECT COUNT(*) AS n FROM {self.name}")
            return int(cur.fetchone()["n"])

        return await self._store._run(op, self.name, "count")

    # Cursor-level helpers, usable inside a shared transaction

    def _decode(self, record_id: str, data: str) -> R:
        try:
            return self.model.model_validate_json(data)
        except ValidationError as e:
            raise StorageUnavailableError(
                "Stored record is corrupt",
                collection=self.name,
                record_id=record_id,
                operation="decode",
            ) from e

    def _read(self, cur: sqlite3.Cursor, record_id: str) -> R | None:
        cur.execute(f"SELECT data FROM {self.name} WHERE id = ?", (record_id,))
        row = cur.fetchone()
        if row is None:
            return None
        return self._decode(record_id, row["data"])

    def _write(self, cur: sqlite3.Cursor, record: R) -> None:
        cur.execute(
            f"INSERT OR REPLACE INTO {self.name} (id, created_at, data) VALUES (?, ?, ?)",
            (record.id, _time_key(record.created_at), record.model_dump_json()),
        )

    def _remove(self, cur: sqlite3.Cursor, record_id: str) -> bool:
        cur.execute(f"DELETE FROM {self.name} WHERE id = ?", (record_id,))
        return cur.rowcount > 0

    def _modify(self, cur: sqlite3.Cursor, record_id: str, changes: Changes) -> R | None:
        current = self._read(cur, record_id)
        if current is None:
            return None

        values = changes(current) if callable(changes) else dict(changes)
        values.pop("id", None)
        if "updated_at" in self.model.model_fields and "updated_at" not in values:
            values["updated_at"] = datetime.now(timezone.utc)

        updated = self.model.model_validate({**current.model_dump(), **values})
        self._write(cur, updated)
        return updated


class LocalStore:
    """
    Durable store for artifacts, queued requests and dead letters.

    Construct one handle at startup and pass it to every component that
    needs storage. The connection is opened lazily on first use and the
    schema is migrated exactly once per handle; initialize() may be called
    any number of times.

    Layout:
    - store_meta: key/value metadata, including schema_version
    - artifacts: ArtifactRecord by id
    - sync_queue: QueuedRequestRecord by id
    - dead_letters: DeadLetterRecord by id
    """

    SCHEMA_VERSION = max(MIGRATIONS)

    def __init__(self, db_path: Path | str):
        """
        Initialize the store handle without touching disk.

        Args:
            db_path: Path to the SQLite database file, or ":memory:"
        """
        self._db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self.applied_migrations: list[int] = []

        self.artifacts: Collection[ArtifactRecord] = Collection(self, ARTIFACTS, ArtifactRecord)
        self.queue: Collection[QueuedRequestRecord] = Collection(self, SYNC_QUEUE, QueuedRequestRecord)
        self.dead_letters: Collection[DeadLetterRecord] = Collection(self, DEAD_LETTERS, DeadLetterRecord)

    @property
    def db_path(self) -> Path | str:
        return self._db_path

    async def initialize(self) -> "LocalStore":
        """Open the connection and apply pending migrations (idempotent)."""
        await asyncio.to_thread(self._connection)
        return self

    async def close(self) -> None:
        """Close the underlying connection."""
        await asyncio.to_thread(self._close)

    async def __aenter__(self) -> "LocalStore":
        return await self.initialize()

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def schema_version(self) -> int:
        return await self._run(self._read_version, "store_meta", "schema_version")

    # Connection management

    def _connection(self) -> sqlite3.Connection:
        """Get the shared connection, creating and migrating it once."""
        with self._lock:
            if self._conn is not None:
                return self._conn
            try:
                if isinstance(self._db_path, Path):
                    self._db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    self._db_path,
                    check_same_thread=False,
                    isolation_level=None,  # Autocommit; transactions are explicit
                )
                try:
                    conn.row_factory = sqlite3.Row
                    conn.execute("PRAGMA journal_mode=WAL")
                    conn.execute("PRAGMA synchronous=NORMAL")
                    self._migrate(conn)
                except BaseException:
                    conn.close()
                    raise
            except (sqlite3.Error, OSError) as e:
                raise StorageUnavailableError(
                    f"Cannot open store at {self._db_path}: {e}",
                    operation="open",
                ) from e
            self._conn = conn
            return conn

    def _close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
        """Context manager for an IMMEDIATE (write-locking) transaction."""
        cursor = conn.cursor()
        cursor.execute("BEGIN IMMEDIATE")
        try:
            yield cursor
            cursor.execute("COMMIT")
        except BaseException:
            cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    def _read_version(self, cur: sqlite3.Cursor) -> int:
        cur.execute("SELECT value FROM store_meta WHERE key = 'schema_version'")
        row = cur.fetchone()
        return int(row["value"]) if row else 0

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Create whatever tables and indexes the stored version lacks."""
        with self._transaction(conn) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS store_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """
            )
            current = self._read_version(cur)
            if current >= self.SCHEMA_VERSION:
                return

            for version in sorted(v for v in MIGRATIONS if v > current):
                for table in MIGRATIONS[version]:
                    cur.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {table} (
                            id TEXT PRIMARY KEY,
                            created_at TEXT NOT NULL,
                            data TEXT NOT NULL
                        )
                    """
                    )
                    cur.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table}(created_at)"
                    )
                self.applied_migrations.append(version)
                logger.info("Applied store migration v%d", version)

            cur.execute(
                "INSERT OR REPLACE INTO store_meta (key, value) VALUES ('schema_version', ?)",
                (str(self.SCHEMA_VERSION),),
            )

    def _execute(
        self,
        op: Callable[[sqlite3.Cursor], Any],
        collection: str | None,
        operation: str,
        record_id: str | None,
    ) -> Any:
        with self._lock:
            conn = self._connection()
            try:
                with self._transaction(conn) as cur:
                    return op(cur)
            except sqlite3.Error as e:
                raise StorageUnavailableError(
                    f"Storage {operation} failed: {e}",
                    collection=collection,
                    record_id=record_id,
                    operation=operation,
                ) from e

    async def _run(
        self,
        op: Callable[[sqlite3.Cursor], Any],
        collection: str | None,
        operation: str,
        record_id: str | None = None,
    ) -> Any:
        return await asyncio.to_thread(self._execute, op, collection, operation, record_id)

    # Cross-collection operations, each a single transaction

    async def enqueue(self, artifact: ArtifactRecord, request: QueuedRequestRecord) -> None:
        """Record a placeholder artifact together with its queued request."""
        if artifact.id != request.id:
            raise ValueError("artifact and queued request must share an id")
        if artifact.status is not ArtifactStatus.QUEUED:
            raise ValueError("placeholder artifact must be queued")

        def op(cur: sqlite3.Cursor) -> None:
            for collection in (self.artifacts, self.queue):
                if collection._read(cur, artifact.id) is not None:
                    raise RecordExistsError(collection=collection.name, record_id=artifact.id)
            self.artifacts._write(cur, artifact)
            self.queue._write(cur, request)

        await self._run(op, SYNC_QUEUE, "enqueue", artifact.id)

    async def complete(self, record_id: str, result: GenerationResult) -> ArtifactRecord | None:
        """Mark an artifact completed and drop its queued request."""

        def op(cur: sqlite3.Cursor) -> ArtifactRecord | None:
            artifact = self.artifacts._modify(
                cur,
                record_id,
                {"status": ArtifactStatus.COMPLETED, "payload": result, "error_message": None},
            )
            self.queue._remove(cur, record_id)
            return artifact

        return await self._run(op, ARTIFACTS, "complete", record_id)

    async def give_up(self, record_id: str, error_message: str) -> ArtifactRecord | None:
        """Mark an artifact failed and move its queued request to dead letters."""

        def op(cur: sqlite3.Cursor) -> ArtifactRecord | None:
            request = self.queue._read(cur, record_id)
            if request is not None:
                self.dead_letters._write(cur, DeadLetterRecord.from_request(request, error_message))
                self.queue._remove(cur, record_id)
            return self.artifacts._modify(
                cur,
                record_id,
                {"status": ArtifactStatus.FAILED, "payload": None, "error_message": error_message},
            )

        return await self._run(op, ARTIFACTS, "give_up", record_id)

    async def resurrect(self, record_id: str) -> ArtifactRecord:
        """
        Return a dead letter to the queue.

        The queued request starts over with a zero retry count and the
        artifact goes back to queued with its error cleared.

        Raises:
            RecordNotFoundError: If there is no dead letter or artifact for the id
        """

        def op(cur: sqlite3.Cursor) -> ArtifactRecord:
            letter = self.dead_letters._read(cur, record_id)
            if letter is None:
                raise RecordNotFoundError(collection=DEAD_LETTERS, record_id=record_id)
            artifact = self.artifacts._modify(
                cur,
                record_id,
                {"status": ArtifactStatus.QUEUED, "payload": None, "error_message": None},
            )
            if artifact is None:
                raise RecordNotFoundError(collection=ARTIFACTS, record_id=record_id)
            self.queue._write(cur, letter.to_request())
            self.dead_letters._remove(cur, record_id)
            return artifact

        return await self._run(op, DEAD_LETTERS, "resurrect", record_id)
