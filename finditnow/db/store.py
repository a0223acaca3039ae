"""
Document Store Abstraction

This module defines the DocumentStore interface and provides two implementations:
- InMemoryDocumentStore: For development and testing
- PostgresDocumentStore: For production with durability and row locking

Documents are plain JSON dicts grouped by collection. Every document carries
an "id" and a "version"; the store owns the version and bumps it on each write.

TRANSACTION CONTRACT:
Every write goes through the begin_batch() context manager:

    with store.begin_batch() as ctx:
        item = ctx.get("items", item_id)          # locked for this batch
        ctx.update("items", {...}, expected_version=item["version"])
        ctx.insert("claims", {...})
        ctx.commit()

Reads made through ctx lock what they return until the batch ends, so a
check-then-write inside one batch cannot interleave with another batch
touching the same documents. A batch that exits without commit() is rolled
back and none of its writes are visible.
"""

import copy
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from threading import RLock
from typing import Any, Callable, Generator, Optional

from psycopg2.extras import Json

from ..observability import get_logger


logger = get_logger("finditnow.store")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT        NOT NULL,
    id          TEXT        NOT NULL,
    version     INTEGER     NOT NULL,
    body        JSONB       NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (collection, id)
);
CREATE INDEX IF NOT EXISTS documents_body_idx
    ON documents USING GIN (body jsonb_path_ops);
"""


# ============================================================
# EXCEPTIONS
# ============================================================

class StoreError(Exception):
    """Base exception for document store errors."""
    pass


class ConcurrencyError(StoreError):
    """Raised when a document changed since it was read."""
    pass


class DocumentExistsError(ConcurrencyError):
    """Raised when inserting an id that is already taken."""
    pass


class LockTimeoutError(StoreError):
    """Raised when lock acquisition times out (store busy)."""
    pass


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _matches(doc: dict, match: dict) -> bool:
    return all(doc.get(key) == value for key, value in match.items())


# ============================================================
# BATCH CONTEXT
# ============================================================

class BatchContext:
    """
    Transaction context for one atomic batch of reads and writes.

    All transaction state lives here, not on the store, so one store
    instance can be shared by many threads.
    """

    def __init__(self, store: "DocumentStore", conn: Any = None, cursor: Any = None):
        self._store = store
        self._conn = conn
        self._cursor = cursor
        self._staged: dict[tuple[str, str], Optional[dict]] = {}
        self.committed = False

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Read and lock one document, or None."""
        key = (collection, doc_id)
        if key in self._staged:
            return copy.deepcopy(self._staged[key])
        return self._store._batch_get(self, collection, doc_id)

    def find(self, collection: str, **match: Any) -> list[dict]:
        """Read and lock every document whose top-level fields equal match."""
        match = {k: _plain(v) for k, v in match.items()}
        found = {
            doc["id"]: doc
            for doc in self._store._batch_find(self, collection, match)
        }
        for (coll, doc_id), doc in self._staged.items():
            if coll != collection:
                continue
            if doc is None or not _matches(doc, match):
                found.pop(doc_id, None)
            else:
                found[doc_id] = copy.deepcopy(doc)
        return list(found.values())

    def insert(self, collection: str, doc: dict) -> dict:
        """Stage a new document. Returns it with version 1."""
        self._check_open()
        stored = dict(doc, version=1)
        self._store._batch_insert(self, collection, stored)
        self._staged[(collection, stored["id"])] = copy.deepcopy(stored)
        return stored

    def update(self, collection: str, doc: dict, expected_version: int) -> dict:
        """
        Stage a replacement for an existing document.

        Raises:
            ConcurrencyError: the stored version is not expected_version
        """
        self._check_open()
        stored = dict(doc, version=expected_version + 1)
        self._store._batch_update(self, collection, stored, expected_version)
        self._staged[(collection, stored["id"])] = copy.deepcopy(stored)
        return stored

    def delete(self, collection: str, doc_id: str, expected_version: Optional[int] = None) -> None:
        self._check_open()
        self._store._batch_delete(self, collection, doc_id, expected_version)
        self._staged[(collection, doc_id)] = None

    def commit(self) -> None:
        self._check_open()
        self._store._do_commit(self)
        self.committed = True

    def _check_open(self) -> None:
        if self.committed:
            raise StoreError("Batch already committed")


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class DocumentStore(ABC):
    """
    Abstract base class for document storage.

    Implementations must ensure:
    1. Atomic batches: all staged writes land together or not at all
    2. Version checks: an update against a stale version raises ConcurrencyError
    3. Isolation: documents read inside a batch stay locked until it ends
    """

    @contextmanager
    @abstractmethod
    def begin_batch(self) -> Generator[BatchContext, None, None]:
        """Begin an atomic batch. Rolls back unless ctx.commit() is called."""
        pass

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Read one document without locking."""
        pass

    @abstractmethod
    def find(self, collection: str, **match: Any) -> list[dict]:
        """Read matching documents without locking, in insertion order."""
        pass

    def count(self, collection: str, **match: Any) -> int:
        return len(self.find(collection, **match))

    @abstractmethod
    def ping(self) -> bool:
        """Cheap connectivity check for health endpoints."""
        pass

    # Internal hooks called by BatchContext

    @abstractmethod
    def _batch_get(self, ctx: BatchContext, collection: str, doc_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    def _batch_find(self, ctx: BatchContext, collection: str, match: dict) -> list[dict]:
        pass

    @abstractmethod
    def _batch_insert(self, ctx: BatchContext, collection: str, doc: dict) -> None:
        pass

    @abstractmethod
    def _batch_update(
        self, ctx: BatchContext, collection: str, doc: dict, expected_version: int
    ) -> None:
        pass

    @abstractmethod
    def _batch_delete(
        self, ctx: BatchContext, collection: str, doc_id: str, expected_version: Optional[int]
    ) -> None:
        pass

    @abstractmethod
    def _do_commit(self, ctx: BatchContext) -> None:
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryDocumentStore(DocumentStore):
    """
    In-memory implementation of DocumentStore.

    One process-wide lock serializes batches, which is all the isolation a
    single-process deployment needs. Writes are staged on the context and
    applied on commit.

    NOT suitable for multi-instance deployments (no shared state).
    """

    def __init__(self, lock_timeout: float = 5.0):
        self._collections: dict[str, dict[str, dict]] = {}
        self._lock = RLock()
        self._lock_timeout = lock_timeout

    @contextmanager
    def begin_batch(self) -> Generator[BatchContext, None, None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise LockTimeoutError("Store busy - could not acquire lock. Try again.")
        ctx = BatchContext(self)
        try:
            yield ctx
        finally:
            if not ctx.committed and ctx._staged:
                logger.debug("Batch rolled back", staged=len(ctx._staged))
            self._lock.release()

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, collection: str, **match: Any) -> list[dict]:
        match = {k: _plain(v) for k, v in match.items()}
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._collections.get(collection, {}).values()
                if _matches(doc, match)
            ]

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Drop every document. Testing only."""
        with self._lock:
            self._collections.clear()

    def _current(self, ctx: BatchContext, collection: str, doc_id: str) -> Optional[dict]:
        key = (collection, doc_id)
        if key in ctx._staged:
            return ctx._staged[key]
        return self._collections.get(collection, {}).get(doc_id)

    def _batch_get(self, ctx: BatchContext, collection: str, doc_id: str) -> Optional[dict]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def _batch_find(self, ctx: BatchContext, collection: str, match: dict) -> list[dict]:
        return [
            copy.deepcopy(doc)
            for doc in self._collections.get(collection, {}).values()
            if _matches(doc, match)
        ]

    def _batch_insert(self, ctx: BatchContext, collection: str, doc: dict) -> None:
        if self._current(ctx, collection, doc["id"]) is not None:
            raise DocumentExistsError(f"{collection}/{doc['id']} already exists")

    def _batch_update(
        self, ctx: BatchContext, collection: str, doc: dict, expected_version: int
    ) -> None:
        current = self._current(ctx, collection, doc["id"])
        if current is None or current["version"] != expected_version:
            found = None if current is None else current["version"]
            raise ConcurrencyError(
                f"{collection}/{doc['id']} changed: expected version "
                f"{expected_version}, found {found}"
            )

    def _batch_delete(
        self, ctx: BatchContext, collection: str, doc_id: str, expected_version: Optional[int]
    ) -> None:
        current = self._current(ctx, collection, doc_id)
        if current is None:
            return
        if expected_version is not None and current["version"] != expected_version:
            raise ConcurrencyError(f"{collection}/{doc_id} changed before delete")

    def _do_commit(self, ctx: BatchContext) -> None:
        for (collection, doc_id), doc in ctx._staged.items():
            docs = self._collections.setdefault(collection, {})
            if doc is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = copy.deepcopy(doc)


# ============================================================
# POSTGRESQL IMPLEMENTATION
# ============================================================

class PostgresDocumentStore(DocumentStore):
    """
    PostgreSQL implementation of DocumentStore.

    Provides:
    - Full ACID guarantees, one transaction per batch
    - Isolation via SELECT ... FOR UPDATE on every document read in a batch
    - Conditional updates (WHERE version = expected) as a second line of defense
    - Lock/statement timeouts to prevent hanging

    All transaction state (conn, cursor) is stored on the BatchContext.

    Usage:
        store = PostgresDocumentStore(connection_factory)
        store.create_schema()
    """

    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    # psycopg2 error codes for lock/statement timeout
    PGCODE_LOCK_NOT_AVAILABLE = "55P03"
    PGCODE_QUERY_CANCELED = "57014"

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Args:
            connection_factory: Callable that returns a psycopg2 connection.
            lock_timeout_ms: How long to wait for a row lock (ms).
            statement_timeout_ms: Max statement execution time (ms).
        """
        self._connection_factory = connection_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    def create_schema(self) -> None:
        conn = self._connection_factory()
        try:
            with conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def begin_batch(self) -> Generator[BatchContext, None, None]:
        conn = self._connection_factory()
        conn.autocommit = False
        cursor = conn.cursor()
        ctx = None

        try:
            # SET LOCAL keeps the timeouts scoped to this transaction
            cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
            cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")
            cursor.execute("SET LOCAL idle_in_transaction_session_timeout = '30s'")

            ctx = BatchContext(self, conn=conn, cursor=cursor)
            yield ctx

        finally:
            if ctx is None or not ctx.committed:
                try:
                    conn.rollback()
                except Exception as e:
                    logger.warning("Rollback failed", error=str(e))
            try:
                cursor.close()
            finally:
                conn.close()

    def _execute(self, cursor: Any, sql: str, params: tuple) -> None:
        try:
            cursor.execute(sql, params)
        except Exception as e:
            kind = self._timeout_kind(e)
            if kind == "lock":
                raise LockTimeoutError(
                    "Store busy - could not acquire lock. Try again."
                ) from e
            if kind is not None:
                raise StoreError("Query timed out - statement took too long.") from e
            raise

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Classify a PostgreSQL exception as "lock", "statement", "timeout" or None.

        PostgreSQL reports both lock_timeout and statement_timeout as 57014
        (query_canceled); the message tells them apart.
        """
        pgcode = getattr(e, "pgcode", None)
        err_msg = (getattr(e, "pgerror", None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"

        if pgcode == self.PGCODE_QUERY_CANCELED:
            if "lock timeout" in err_msg or "lock_timeout" in err_msg:
                return "lock"
            if "statement timeout" in err_msg or "statement_timeout" in err_msg:
                return "statement"
            return "timeout"

        return None

    @staticmethod
    def _row_to_doc(row: tuple) -> dict:
        version, body = row
        doc = dict(body)
        doc["version"] = version
        return doc

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        conn = self._connection_factory()
        cursor = conn.cursor()
        try:
            cursor.execute(
                "SELECT version, body FROM documents WHERE collection = %s AND id = %s",
                (collection, doc_id),
            )
            row = cursor.fetchone()
            return self._row_to_doc(row) if row else None
        finally:
            cursor.close()
            conn.close()

    def find(self, collection: str, **match: Any) -> list[dict]:
        match = {k: _plain(v) for k, v in match.items()}
        conn = self._connection_factory()
        cursor = conn.cursor()
        try:
            cursor.execute(
                """
                SELECT version, body FROM documents
                WHERE collection = %s AND body @> %s
                ORDER BY created_at, id
                """,
                (collection, Json(match)),
            )
            return [self._row_to_doc(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def count(self, collection: str, **match: Any) -> int:
        match = {k: _plain(v) for k, v in match.items()}
        conn = self._connection_factory()
        cursor = conn.cursor()
        try:
            cursor.execute(
                "SELECT COUNT(*) FROM documents WHERE collection = %s AND body @> %s",
                (collection, Json(match)),
            )
            return cursor.fetchone()[0]
        finally:
            cursor.close()
            conn.close()

    def ping(self) -> bool:
        conn = self._connection_factory()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                return cursor.fetchone()[0] == 1
        finally:
            conn.close()

    def _batch_get(self, ctx: BatchContext, collection: str, doc_id: str) -> Optional[dict]:
        self._execute(
            ctx._cursor,
            """
            SELECT version, body FROM documents
            WHERE collection = %s AND id = %s
            FOR UPDATE
            """,
            (collection, doc_id),
        )
        row = ctx._cursor.fetchone()
        return self._row_to_doc(row) if row else None

    def _batch_find(self, ctx: BatchContext, collection: str, match: dict) -> list[dict]:
        self._execute(
            ctx._cursor,
            """
            SELECT version, body FROM documents
            WHERE collection = %s AND body @> %s
            ORDER BY created_at, id
            FOR UPDATE
            """,
            (collection, Json(match)),
        )
        return [self._row_to_doc(row) for row in ctx._cursor.fetchall()]

    def _batch_insert(self, ctx: BatchContext, collection: str, doc: dict) -> None:
        body = {k: v for k, v in doc.items() if k != "version"}
        self._execute(
            ctx._cursor,
            """
            INSERT INTO documents (collection, id, version, body)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (collection, id) DO NOTHING
            """,
            (collection, doc["id"], doc["version"], Json(body)),
        )
        if ctx._cursor.rowcount == 0:
            raise DocumentExistsError(f"{collection}/{doc['id']} already exists")

    def _batch_update(
        self, ctx: BatchContext, collection: str, doc: dict, expected_version: int
    ) -> None:
        body = {k: v for k, v in doc.items() if k != "version"}
        self._execute(
            ctx._cursor,
            """
            UPDATE documents
            SET body = %s, version = %s, updated_at = now()
            WHERE collection = %s AND id = %s AND version = %s
            """,
            (Json(body), doc["version"], collection, doc["id"], expected_version),
        )
        if ctx._cursor.rowcount == 0:
            raise ConcurrencyError(
                f"{collection}/{doc['id']} changed: expected version {expected_version}"
            )

    def _batch_delete(
        self, ctx: BatchContext, collection: str, doc_id: str, expected_version: Optional[int]
    ) -> None:
        if expected_version is None:
            self._execute(
                ctx._cursor,
                "DELETE FROM documents WHERE collection = %s AND id = %s",
                (collection, doc_id),
            )
            return
        self._execute(
            ctx._cursor,
            "DELETE FROM documents WHERE collection = %s AND id = %s AND version = %s",
            (collection, doc_id, expected_version),
        )
        if ctx._cursor.rowcount == 0:
            raise ConcurrencyError(f"{collection}/{doc_id} changed before delete")

    def _do_commit(self, ctx: BatchContext) -> None:
        ctx._conn.commit()
