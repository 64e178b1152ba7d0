"""
Document Store Module

Async document store with optimistic transactions. Collections are plain
string paths (``users``, ``users/<id>/goals``) holding JSON documents, and
every document carries a version that is bumped on each committed write.

``run_atomic(fn)`` hands ``fn`` a ``StoreTransaction``; ``fn`` reads current
state, validates it and buffers writes. On commit the store checks that every
document read inside the transaction still has the version it was read at,
then applies all buffered writes at once. A conflicting writer makes the
store re-run ``fn`` with jittered exponential backoff, so checks are always
made against fresh state. All monetary values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar, Union
from decimal import Decimal
from datetime import datetime, timedelta, timezone
from pathlib import Path
import asyncio
import json
import random
import sqlite3
import threading
import uuid

from .config import get_config
from .errors import TransientStoreError
from .logging_config import get_logger, log_action


T = TypeVar("T")


class _ServerTimestamp:
    """Sentinel replaced by the store's commit time"""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class WriteConflict(Exception):
    """A document read inside a transaction changed before commit"""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Write conflict on {collection}/{doc_id}")


class DocumentMissing(LookupError):
    """Update of a document that does not exist"""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} does not exist")


def new_document_id() -> str:
    return uuid.uuid4().hex


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _resolve_timestamps(value: Any, commit_time: str) -> Any:
    """Replace SERVER_TIMESTAMP sentinels (at any depth) with the commit time"""
    if value is SERVER_TIMESTAMP:
        return commit_time
    if isinstance(value, dict):
        return {k: _resolve_timestamps(v, commit_time) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_timestamps(v, commit_time) for v in value]
    return value


def _normalize(data: Dict[str, Any], commit_time: str) -> Dict[str, Any]:
    """Deep copy through JSON so stored documents never alias caller objects"""
    return json.loads(json.dumps(_resolve_timestamps(data, commit_time), default=_json_default))


def _matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in document or document[key] != value:
            return False
    return True


class BufferedWrite:
    """One pending write inside a transaction"""

    __slots__ = ("kind", "collection", "doc_id", "data")

    def __init__(self, kind: str, collection: str, doc_id: str,
                 data: Optional[Dict[str, Any]] = None):
        self.kind = kind  # set, update or delete
        self.collection = collection
        self.doc_id = doc_id
        self.data = data


class StoreTransaction:
    """
    Read-then-write transaction handle passed to ``run_atomic`` callbacks.

    All reads must happen before the first buffered write. Writes are not
    visible to anyone (including later reads in the same transaction) until
    the store commits them.
    """

    def __init__(self, store: 'DocumentStore', attempt: int = 1):
        self._store = store
        self.attempt = attempt
        self.reads: Dict[Tuple[str, str], int] = {}
        self.writes: List[BufferedWrite] = []

    async def load(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Read a document and record its version for the commit check"""
        if self.writes:
            raise RuntimeError("Transaction reads must precede writes")
        document, version = await self._store._read_versioned(collection, doc_id)
        self.reads.setdefault((collection, doc_id), version)
        return document

    def save(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.writes.append(BufferedWrite("set", collection, doc_id, dict(data)))

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = new_document_id()
        self.save(collection, doc_id, data)
        return doc_id

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Merge top-level fields into an existing document"""
        self.writes.append(BufferedWrite("update", collection, doc_id, dict(fields)))

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(BufferedWrite("delete", collection, doc_id))


class DocumentStore(ABC):
    """Abstract async document store with optimistic transactions"""

    def __init__(self, max_attempts: Optional[int] = None,
                 retry_base_delay: Optional[float] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        settings = get_config()
        self.max_attempts = max_attempts or settings.atomic_max_attempts
        self.retry_base_delay = (retry_base_delay if retry_base_delay is not None
                                 else settings.atomic_retry_base_delay)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_commit_time: Optional[datetime] = None
        self._time_lock = threading.Lock()
        self.logger = get_logger("bank_ledger.store")

    def commit_time(self) -> str:
        """Strictly increasing commit timestamp, so created_at orders writes"""
        with self._time_lock:
            now = self._clock()
            if self._last_commit_time is not None and now <= self._last_commit_time:
                now = self._last_commit_time + timedelta(microseconds=1)
            self._last_commit_time = now
            return now.isoformat(timespec="microseconds")

    # Backend primitives

    @abstractmethod
    async def _read_versioned(self, collection: str, doc_id: str) -> Tuple[Optional[Dict[str, Any]], int]:
        """Return (document or None, current version)"""
        pass

    @abstractmethod
    async def _commit(self, transaction: StoreTransaction) -> None:
        """Validate read versions and apply writes atomically, or raise WriteConflict"""
        pass

    @abstractmethod
    async def find(self, collection: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find documents whose top-level fields equal every filter value"""
        pass

    @abstractmethod
    async def load_all(self, collection: str) -> List[Dict[str, Any]]:
        """Load every live document in a collection, in insertion order"""
        pass

    async def close(self) -> None:
        """Close storage connection (default no-op)"""
        pass

    # Single-document convenience writes, each its own committed transaction

    async def load(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document, _ = await self._read_versioned(collection, doc_id)
        return document

    async def exists(self, collection: str, doc_id: str) -> bool:
        return await self.load(collection, doc_id) is not None

    async def save(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        txn = StoreTransaction(self)
        txn.save(collection, doc_id, data)
        await self._commit(txn)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        txn = StoreTransaction(self)
        doc_id = txn.add(collection, data)
        await self._commit(txn)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        txn = StoreTransaction(self)
        txn.update(collection, doc_id, fields)
        await self._commit(txn)

    async def delete(self, collection: str, doc_id: str) -> bool:
        if not await self.exists(collection, doc_id):
            return False
        txn = StoreTransaction(self)
        txn.delete(collection, doc_id)
        await self._commit(txn)
        return True

    async def count(self, collection: str) -> int:
        return len(await self.load_all(collection))

    def _retry_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter to avoid a thundering herd"""
        delay = self.retry_base_delay * (2 ** (attempt - 1))
        return delay * (0.5 + random.random() * 0.5)

    async def run_atomic(self, fn: Callable[[StoreTransaction], Awaitable[T]],
                         max_attempts: Optional[int] = None) -> T:
        """
        Run ``fn`` inside an optimistic transaction.

        ``fn`` may raise to abort; nothing it buffered is committed and the
        exception propagates unchanged. On a write conflict ``fn`` is re-run
        from scratch against fresh reads.

        Raises:
            TransientStoreError: If every attempt hit a write conflict
        """
        attempts = max_attempts or self.max_attempts

        for attempt in range(1, attempts + 1):
            txn = StoreTransaction(self, attempt)
            result = await fn(txn)
            try:
                await self._commit(txn)
                return result
            except WriteConflict as e:
                if attempt == attempts:
                    break
                delay = self._retry_delay(attempt)
                log_action(
                    self.logger, "warning",
                    f"Attempt {attempt}/{attempts} conflicted on {e.collection}/{e.doc_id}. "
                    f"Retrying in {delay:.3f}s",
                    action="atomic_retry", resource=e.collection,
                    extra={"attempt": attempt, "doc_id": e.doc_id}
                )
                await asyncio.sleep(delay)

        log_action(
            self.logger, "error",
            f"Atomic operation failed after {attempts} attempts",
            action="atomic_exhausted", extra={"attempts": attempts}
        )
        raise TransientStoreError(attempts)


class InMemoryDocumentStore(DocumentStore):
    """In-memory store for tests; direct writes bump versions like a concurrent writer"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._versions: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()

    def _ensure_collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        if collection not in self._data:
            self._data[collection] = {}
        return self._data[collection]

    async def _read_versioned(self, collection, doc_id):
        with self._lock:
            record = self._ensure_collection(collection).get(doc_id)
            version = self._versions.get((collection, doc_id), 0)
            if record is None:
                return None, version
            # Deep copy to prevent external mutation
            return json.loads(json.dumps(record)), version

    async def _commit(self, transaction: StoreTransaction) -> None:
        with self._lock:
            for (collection, doc_id), version in transaction.reads.items():
                if self._versions.get((collection, doc_id), 0) != version:
                    raise WriteConflict(collection, doc_id)

            commit_time = self.commit_time()
            staged: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}

            for write in transaction.writes:
                key = (write.collection, write.doc_id)
                if key in staged:
                    current = staged[key]
                else:
                    current = self._ensure_collection(write.collection).get(write.doc_id)

                if write.kind == "set":
                    document = _normalize(write.data, commit_time)
                    document["id"] = write.doc_id
                    staged[key] = document
                elif write.kind == "update":
                    if current is None:
                        raise DocumentMissing(write.collection, write.doc_id)
                    merged = dict(current)
                    merged.update(_normalize(write.data, commit_time))
                    staged[key] = merged
                else:
                    staged[key] = None

            for (collection, doc_id), document in staged.items():
                table = self._ensure_collection(collection)
                if document is None:
                    table.pop(doc_id, None)
                else:
                    table[doc_id] = document
                self._versions[(collection, doc_id)] = self._versions.get((collection, doc_id), 0) + 1

    async def find(self, collection, filters):
        with self._lock:
            return [json.loads(json.dumps(record))
                    for record in self._ensure_collection(collection).values()
                    if _matches(record, filters)]

    async def load_all(self, collection):
        with self._lock:
            return [json.loads(json.dumps(record))
                    for record in self._ensure_collection(collection).values()]


class SQLiteDocumentStore(DocumentStore):
    """SQLite store for persistence; deletes leave versioned tombstones"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", **kwargs):
        super().__init__(**kwargs)
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT,
                    version INTEGER NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (collection, id)
                )
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_collection
                ON documents(collection, deleted)
            """)

    def _read_sync(self, collection: str, doc_id: str):
        with self._lock:
            row = self._connection.execute(
                "SELECT data, version, deleted FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            ).fetchone()
            if row is None:
                return None, 0
            if row["deleted"]:
                return None, row["version"]
            return json.loads(row["data"]), row["version"]

    async def _read_versioned(self, collection, doc_id):
        return await asyncio.to_thread(self._read_sync, collection, doc_id)

    def _commit_sync(self, transaction: StoreTransaction) -> None:
        with self._lock:
            conn = self._connection
            conn.execute("BEGIN IMMEDIATE")
            try:
                for (collection, doc_id), version in transaction.reads.items():
                    row = conn.execute(
                        "SELECT version FROM documents WHERE collection = ? AND id = ?",
                        (collection, doc_id)
                    ).fetchone()
                    current = row["version"] if row else 0
                    if current != version:
                        raise WriteConflict(collection, doc_id)

                commit_time = self.commit_time()
                for write in transaction.writes:
                    row = conn.execute(
                        "SELECT data, version, deleted FROM documents WHERE collection = ? AND id = ?",
                        (write.collection, write.doc_id)
                    ).fetchone()
                    existing = None
                    if row is not None and not row["deleted"]:
                        existing = json.loads(row["data"])
                    next_version = (row["version"] if row else 0) + 1

                    if write.kind == "delete":
                        if row is not None:
                            conn.execute(
                                "UPDATE documents SET data = NULL, deleted = 1, version = ?, "
                                "updated_at = ? WHERE collection = ? AND id = ?",
                                (next_version, commit_time, write.collection, write.doc_id)
                            )
                        continue

                    if write.kind == "update":
                        if existing is None:
                            raise DocumentMissing(write.collection, write.doc_id)
                        document = dict(existing)
                        document.update(_normalize(write.data, commit_time))
                    else:
                        document = _normalize(write.data, commit_time)
                        document["id"] = write.doc_id

                    payload = json.dumps(document, default=_json_default)
                    if row is None:
                        conn.execute(
                            "INSERT INTO documents (collection, id, data, version, deleted, created_at, updated_at) "
                            "VALUES (?, ?, ?, ?, 0, ?, ?)",
                            (write.collection, write.doc_id, payload, next_version, commit_time, commit_time)
                        )
                    else:
                        conn.execute(
                            "UPDATE documents SET data = ?, deleted = 0, version = ?, updated_at = ? "
                            "WHERE collection = ? AND id = ?",
                            (payload, next_version, commit_time, write.collection, write.doc_id)
                        )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def _commit(self, transaction: StoreTransaction) -> None:
        await asyncio.to_thread(self._commit_sync, transaction)

    def _load_all_sync(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT data FROM documents WHERE collection = ? AND deleted = 0 ORDER BY seq",
                (collection,)
            )
            return [json.loads(row["data"]) for row in cursor.fetchall()]

    async def load_all(self, collection):
        return await asyncio.to_thread(self._load_all_sync, collection)

    async def find(self, collection, filters):
        return [record for record in await self.load_all(collection) if _matches(record, filters)]

    async def count(self, collection: str) -> int:
        def _count():
            with self._lock:
                row = self._connection.execute(
                    "SELECT COUNT(*) AS count FROM documents WHERE collection = ? AND deleted = 0",
                    (collection,)
                ).fetchone()
                return row["count"]
        return await asyncio.to_thread(_count)

    async def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
