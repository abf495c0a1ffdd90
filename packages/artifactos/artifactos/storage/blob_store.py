"""Blob store — content-addressed payloads with reference counting.

A blob is created the first time a hash is seen and shared by every
version whose content has that hash. The find-or-create-or-increment step
runs inside a database transaction, and the payload is written to the
object store before the metadata row commits, so a blob row never exists
without its payload.

Reclamation is deferred: releasing the last reference only makes a blob
collectible. The retention sweeper deletes the payload and then the row,
and both steps are safe to repeat.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from typing import Any, TypeVar

from artifactos.core.clock import Clock, from_iso, to_iso, utc_now
from artifactos.core.errors import (
    ConflictError,
    NotFoundError,
    ReclamationError,
    StorageError,
)
from artifactos.core.identifiers import BlobId, generate_blob_id
from artifactos.integrity.hashing import is_sha256_hex, sha256_hash
from artifactos.schemas.blob import BlobRecord, BlobRef
from artifactos.storage.database import Database
from artifactos.storage.object_store import ObjectStore
from artifactos.storage.retry import run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "application/octet-stream"

T = TypeVar("T")


def _row_to_blob(row: sqlite3.Row) -> BlobRecord:
    return BlobRecord(
        id=BlobId(row["id"]),
        sha256=row["sha256"],
        storage_key=row["storage_key"],
        size_bytes=row["size_bytes"],
        media_type=row["media_type"],
        ref_count=row["ref_count"],
        created_at=from_iso(row["created_at"]),
    )


class BlobStore:
    """Deduplicating payload storage on top of an :class:`ObjectStore`.

    Args:
        db: Shared metadata database.
        objects: Where payload bytes are stored.
        max_attempts: Attempts for :meth:`put_content` before giving up.
        backoff_seconds: Base delay between attempts; doubles each retry.
        clock: Source of "now" for ``created_at``.
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        db: Database,
        objects: ObjectStore,
        *,
        max_attempts: int = 5,
        backoff_seconds: float = 0.05,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._db = db
        self._objects = objects
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._clock = clock
        self._sleep = sleep

    @property
    def objects(self) -> ObjectStore:
        return self._objects

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    # ── Write path ────────────────────────────────────────────────────

    def put_content(self, data: bytes, media_type: str = DEFAULT_MEDIA_TYPE) -> BlobRef:
        """Store ``data`` and take one reference on its blob.

        Retries storage failures with exponential backoff. A lost race on
        the hash's unique constraint is retried immediately, since the
        winner's row is then visible and gets incremented instead.

        Raises:
            StorageError: If every attempt failed on the storage layer.
            ConflictError: If every attempt lost the hash race.
        """
        digest = sha256_hash(data)
        return self.run_with_retry(
            lambda conn: self.acquire(conn, data, media_type, sha256=digest),
            description=f"put blob {digest[:12]}",
        )

    def run_with_retry(
        self,
        work: Callable[[sqlite3.Connection], T],
        *,
        description: str,
    ) -> T:
        """Run ``work`` as one transaction with this store's retry budget.

        Callers that put content as part of a larger write (a new artifact,
        an appended version) use this so the blob put and their own rows
        commit or roll back together.
        """
        return run_with_retry(
            self._db,
            work,
            description=description,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
            sleep=self._sleep,
        )

    def acquire(
        self,
        conn: sqlite3.Connection,
        data: bytes,
        media_type: str = DEFAULT_MEDIA_TYPE,
        *,
        sha256: str | None = None,
    ) -> BlobRef:
        """Find-or-create-or-increment inside the caller's transaction."""
        digest = sha256 or sha256_hash(data)
        row = conn.execute("SELECT * FROM blobs WHERE sha256 = ?", (digest,)).fetchone()
        if row is not None:
            # A reclamation interrupted after the payload delete leaves the row behind.
            if not self._objects.exists(row["storage_key"]):
                logger.warning("Blob %s payload missing; re-uploading", row["id"])
                self._objects.put(row["storage_key"], data)
            conn.execute("UPDATE blobs SET ref_count = ref_count + 1 WHERE id = ?", (row["id"],))
            return _row_to_blob(row).to_ref()

        blob_id = generate_blob_id()
        self._objects.put(digest, data)
        conn.execute(
            "INSERT INTO blobs (id, sha256, storage_key, size_bytes, media_type, ref_count, created_at) "
            "VALUES (?, ?, ?, ?, ?, 1, ?)",
            (blob_id, digest, digest, len(data), media_type, to_iso(self._clock())),
        )
        logger.debug("Created blob %s (%s, %d bytes)", blob_id, digest[:12], len(data))
        return BlobRef(
            id=blob_id,
            sha256=digest,
            storage_key=digest,
            size_bytes=len(data),
            media_type=media_type,
        )

    def release(self, conn: sqlite3.Connection, blob_id: str) -> int:
        """Drop one reference inside the caller's transaction; return the new count."""
        cursor = conn.execute(
            "UPDATE blobs SET ref_count = ref_count - 1 WHERE id = ? AND ref_count > 0",
            (blob_id,),
        )
        if cursor.rowcount == 0:
            row = conn.execute("SELECT ref_count FROM blobs WHERE id = ?", (blob_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Blob '{blob_id}' not found")
            raise ConflictError(f"Blob '{blob_id}' has no references to release")
        row = conn.execute("SELECT ref_count FROM blobs WHERE id = ?", (blob_id,)).fetchone()
        return int(row["ref_count"])

    def release_reference(self, blob_id: str) -> int:
        """Drop one reference. A blob reaching zero becomes collectible."""
        with self._db.transaction() as conn:
            remaining = self.release(conn, blob_id)
        if remaining == 0:
            logger.info("Blob %s is now collectible", blob_id)
        return remaining

    # ── Read path ─────────────────────────────────────────────────────

    def get(self, blob_id: str) -> BlobRecord:
        row = self._db.fetchone("SELECT * FROM blobs WHERE id = ?", (blob_id,))
        if row is None:
            raise NotFoundError(f"Blob '{blob_id}' not found")
        return _row_to_blob(row)

    def find_by_hash(self, sha256: str) -> BlobRecord | None:
        row = self._db.fetchone("SELECT * FROM blobs WHERE sha256 = ?", (sha256,))
        return _row_to_blob(row) if row is not None else None

    def read(self, blob_id: str) -> bytes:
        """Return the payload bytes of a blob."""
        return self._objects.get(self.get(blob_id).storage_key)

    def location(self, blob: BlobRef) -> str:
        return self._objects.location(blob.storage_key)

    def verify(self, blob_id: str) -> bool:
        """Re-hash the stored payload and compare it with the recorded digest."""
        record = self.get(blob_id)
        try:
            return self._objects.digest(record.storage_key) == record.sha256
        except NotFoundError:
            return False

    def count(self) -> int:
        row = self._db.fetchone("SELECT COUNT(*) FROM blobs")
        return int(row[0])

    # ── Reclamation ───────────────────────────────────────────────────

    def collectible(
        self, limit: int | None = None, *, after: BlobRecord | None = None
    ) -> list[BlobRecord]:
        """Return blobs with no remaining references, oldest first.

        ``after`` resumes the listing past a blob already seen, so a caller
        can page beyond blobs it could not reclaim.
        """
        sql = "SELECT * FROM blobs WHERE ref_count = 0"
        params: list[Any] = []
        if after is not None:
            created_at = to_iso(after.created_at)
            sql += " AND (created_at > ? OR (created_at = ? AND id > ?))"
            params.extend([created_at, created_at, after.id])
        sql += " ORDER BY created_at, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_blob(row) for row in self._db.fetchall(sql, tuple(params))]

    def reclaim(self, blob_id: str) -> bool:
        """Physically delete one zero-reference blob.

        The payload is deleted first and the row only afterwards, within
        one transaction, so a put for the same hash cannot slip in between.
        Returns False if the blob is gone or has been referenced again.

        Raises:
            ReclamationError: If the payload could not be deleted. The row
                is kept so the next sweep retries.
        """
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT storage_key, ref_count FROM blobs WHERE id = ?", (blob_id,)
            ).fetchone()
            if row is None or row["ref_count"] > 0:
                return False
            try:
                self._objects.delete(row["storage_key"])
            except StorageError as exc:
                raise ReclamationError(
                    f"Could not delete payload for blob '{blob_id}': {exc}"
                ) from exc
            conn.execute("DELETE FROM blobs WHERE id = ? AND ref_count = 0", (blob_id,))
        logger.info("Reclaimed blob %s", blob_id)
        return True

    def remove_orphan_payloads(self) -> tuple[list[str], list[str]]:
        """Delete stored payloads that no blob row refers to.

        Such payloads are left behind when an upload succeeded but the
        metadata commit did not. Keys are listed without holding the write
        lock; each candidate is re-checked and deleted in its own short
        transaction, so an in-flight put (which uploads inside its
        transaction) is never mistaken for an orphan. Keys that are not
        blob digests were not written by this store and are left alone.

        Returns:
            The keys removed and the keys whose delete failed. Failed keys
            are retried by the next call.
        """
        known = {row[0] for row in self._db.fetchall("SELECT storage_key FROM blobs")}
        candidates = [
            key for key in self._objects.keys() if key not in known and is_sha256_hex(key)
        ]
        removed: list[str] = []
        failed: list[str] = []
        for key in candidates:
            try:
                with self._db.transaction() as conn:
                    referenced = conn.execute(
                        "SELECT 1 FROM blobs WHERE storage_key = ?", (key,)
                    ).fetchone() is not None
                    if not referenced:
                        self._objects.delete(key)
            except StorageError as exc:
                logger.warning("Could not remove orphan payload %s: %s", key, exc)
                failed.append(key)
                continue
            if not referenced:
                removed.append(key)
        if removed:
            logger.info("Removed %d orphan payload(s)", len(removed))
        return removed, failed
