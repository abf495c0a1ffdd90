"""SQLite metadata database — schema and transaction discipline.

All writers go through :meth:`Database.transaction`, which takes a
process-local lock and opens a ``BEGIN IMMEDIATE`` transaction, so the
blob reference counts and each artifact's version pointer are only ever
mutated under SQLite's write lock. Other processes opening the same file
serialize on that write lock (with a busy timeout).

A file database is opened in WAL mode with a second connection for
reads, so a reader sees the last committed state and never waits for a
writer that is still inside its transaction.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from artifactos.core.errors import StorageError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS blobs (
    id TEXT PRIMARY KEY,
    sha256 TEXT NOT NULL UNIQUE,
    storage_key TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    media_type TEXT NOT NULL,
    ref_count INTEGER NOT NULL CHECK (ref_count >= 0),
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_blobs_ref_count ON blobs (ref_count);

CREATE TABLE IF NOT EXISTS artifacts (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    owner_id TEXT,
    external_id TEXT,
    artifact_type TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    summary TEXT NOT NULL DEFAULT '',
    current_version_id TEXT,
    current_version INTEGER NOT NULL DEFAULT 0,
    version_count INTEGER NOT NULL DEFAULT 0,
    provenance_json TEXT NOT NULL DEFAULT '{}',
    producer_id TEXT,
    session_id TEXT,
    task_id TEXT,
    retention_class TEXT NOT NULL,
    visibility TEXT NOT NULL,
    status TEXT NOT NULL,
    expires_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (tenant_id, external_id)
);
CREATE INDEX IF NOT EXISTS idx_artifacts_expires ON artifacts (expires_at);
CREATE INDEX IF NOT EXISTS idx_artifacts_tenant ON artifacts (tenant_id, created_at);

CREATE TABLE IF NOT EXISTS versions (
    id TEXT PRIMARY KEY,
    artifact_id TEXT NOT NULL REFERENCES artifacts (id),
    number INTEGER NOT NULL CHECK (number >= 1),
    blob_id TEXT NOT NULL REFERENCES blobs (id),
    media_type TEXT NOT NULL,
    encoding TEXT,
    size_bytes INTEGER NOT NULL,
    token_count INTEGER,
    change_summary TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (artifact_id, number)
);
CREATE INDEX IF NOT EXISTS idx_versions_blob ON versions (blob_id);

CREATE TABLE IF NOT EXISTS tags (
    artifact_id TEXT NOT NULL REFERENCES artifacts (id) ON DELETE CASCADE,
    tag TEXT NOT NULL,
    PRIMARY KEY (artifact_id, tag)
);

CREATE TABLE IF NOT EXISTS relationships (
    id TEXT PRIMARY KEY,
    parent_id TEXT NOT NULL REFERENCES artifacts (id) ON DELETE CASCADE,
    child_id TEXT NOT NULL REFERENCES artifacts (id) ON DELETE CASCADE,
    type TEXT NOT NULL,
    parent_version INTEGER,
    child_version INTEGER,
    context_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    UNIQUE (parent_id, child_id, type)
);
CREATE INDEX IF NOT EXISTS idx_relationships_child ON relationships (child_id);

CREATE TABLE IF NOT EXISTS handoffs (
    id TEXT PRIMARY KEY,
    artifact_id TEXT NOT NULL REFERENCES artifacts (id) ON DELETE CASCADE,
    version INTEGER,
    target TEXT NOT NULL,
    expects_response INTEGER NOT NULL,
    deadline TEXT,
    priority TEXT NOT NULL,
    context_json TEXT NOT NULL DEFAULT '{}',
    state TEXT NOT NULL,
    response_artifact_id TEXT REFERENCES artifacts (id) ON DELETE SET NULL,
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_handoffs_state ON handoffs (state, deadline);
CREATE INDEX IF NOT EXISTS idx_handoffs_target ON handoffs (target);
"""


class Database:
    """SQLite metadata store shared by every engine component.

    Versions reference both their artifact and their blob without
    cascading, so neither can be removed while a version still points at
    it; deleting an artifact must release and delete its versions first.

    An in-memory database exists only on its one connection, so there
    reads and writes share it.
    """

    def __init__(self, db_path: str | Path = ":memory:", *, busy_timeout: float = 5.0) -> None:
        self._db_path = str(db_path)
        self._conn = self._connect(busy_timeout)
        self._lock = threading.RLock()
        self._depth = 0
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

        if self._db_path == ":memory:":
            self._reader = self._conn
            self._read_lock = self._lock
        else:
            self._reader = self._connect(busy_timeout)
            self._reader.execute("PRAGMA query_only=ON")
            self._read_lock = threading.RLock()

    def _connect(self, busy_timeout: float) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
                isolation_level=None,
                timeout=busy_timeout,
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database '{self._db_path}': {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    @property
    def path(self) -> str:
        return self._db_path

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic unit under the database write lock.

        Nested calls on the same thread join the outermost transaction.
        ``sqlite3.IntegrityError`` propagates unchanged so callers can
        resolve unique-constraint races; other database failures are
        raised as :class:`StorageError`.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                raise StorageError(f"Could not begin transaction: {exc}") from exc

            self._depth = 1
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except BaseException as exc:
                self._conn.execute("ROLLBACK")
                if isinstance(exc, sqlite3.OperationalError):
                    raise StorageError(f"Transaction failed: {exc}") from exc
                raise
            finally:
                self._depth = 0

    def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        """Run a read outside any transaction against the last committed state."""
        with self._read_lock:
            try:
                return self._reader.execute(sql, params).fetchone()
            except sqlite3.OperationalError as exc:
                raise StorageError(str(exc)) from exc

    def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._read_lock:
            try:
                return self._reader.execute(sql, params).fetchall()
            except sqlite3.OperationalError as exc:
                raise StorageError(str(exc)) from exc

    def close(self) -> None:
        """Close the database connections."""
        with self._lock:
            if self._reader is not self._conn:
                with self._read_lock:
                    self._reader.close()
            self._conn.close()
