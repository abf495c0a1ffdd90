"""Version chain manager — artifacts and their numbered, immutable versions.

Every write that touches an artifact's version pointer runs as one
transaction together with the blob put it depends on, so the pointer, the
version row, and the blob reference count can never disagree.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from artifactos.core.clock import Clock, from_iso, to_iso, utc_now
from artifactos.core.config import EngineConfig
from artifactos.core.errors import ConflictError, NotFoundError, RequestValidationError
from artifactos.core.identifiers import (
    ArtifactId,
    BlobId,
    VersionId,
    generate_artifact_id,
    generate_version_id,
)
from artifactos.runtime.event_log import EventLog, record_event
from artifactos.schemas.artifact import (
    ArtifactCreate,
    ArtifactFilter,
    ArtifactRecord,
    ArtifactStatus,
    Content,
    Provenance,
    UsageCounters,
    VersionRecord,
)
from artifactos.schemas.events import (
    ArtifactCreated,
    ArtifactDeleted,
    ArtifactUpdated,
    BaseEvent,
    VersionAppended,
)
from artifactos.storage.blob_store import BlobStore
from artifactos.storage.database import Database
from artifactos.storage.retry import run_with_retry

logger = logging.getLogger(__name__)

_VERSION_COLUMNS = (
    "v.id, v.artifact_id, v.number, v.blob_id, b.sha256, v.media_type, v.encoding, "
    "v.size_bytes, v.token_count, v.change_summary, v.created_by, v.created_at"
)


def _row_to_version(row: sqlite3.Row) -> VersionRecord:
    return VersionRecord(
        id=VersionId(row["id"]),
        artifact_id=ArtifactId(row["artifact_id"]),
        number=row["number"],
        blob_id=BlobId(row["blob_id"]),
        sha256=row["sha256"],
        media_type=row["media_type"],
        encoding=row["encoding"],
        size_bytes=row["size_bytes"],
        token_count=row["token_count"],
        change_summary=row["change_summary"],
        created_by=row["created_by"],
        created_at=from_iso(row["created_at"]),
    )


def _row_to_artifact(row: sqlite3.Row, tags: list[str]) -> ArtifactRecord:
    return ArtifactRecord(
        id=ArtifactId(row["id"]),
        tenant_id=row["tenant_id"],
        owner_id=row["owner_id"],
        external_id=row["external_id"],
        artifact_type=row["artifact_type"],
        title=row["title"],
        summary=row["summary"],
        current_version_id=row["current_version_id"],
        current_version=row["current_version"],
        version_count=row["version_count"],
        provenance=Provenance.model_validate_json(row["provenance_json"]),
        retention_class=row["retention_class"],
        visibility=row["visibility"],
        status=row["status"],
        expires_at=from_iso(row["expires_at"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
        tags=tags,
    )


class VersionChainManager:
    """Creates artifacts, appends versions, and deletes artifacts atomically.

    Args:
        db: Shared metadata database.
        blobs: Blob store used for every content put.
        config: Engine configuration (retention lifetimes, retry budget).
        event_log: Optional sink for write events.
        clock: Source of "now".
    """

    def __init__(
        self,
        db: Database,
        blobs: BlobStore,
        *,
        config: EngineConfig | None = None,
        event_log: EventLog | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._blobs = blobs
        self._config = config or EngineConfig()
        self._event_log = event_log
        self._clock = clock

    # ── Writes ────────────────────────────────────────────────────────

    def create_artifact(
        self, meta: ArtifactCreate, content: Content
    ) -> tuple[ArtifactId, VersionId]:
        """Create an artifact together with its first version.

        Raises:
            ConflictError: If ``meta.external_id`` is already used in the tenant.
            StorageError: If the content could not be stored.
        """
        artifact_id = generate_artifact_id()
        version_id = generate_version_id()

        def work(conn: sqlite3.Connection) -> None:
            if meta.external_id is not None:
                taken = conn.execute(
                    "SELECT id FROM artifacts WHERE tenant_id = ? AND external_id = ?",
                    (meta.tenant_id, meta.external_id),
                ).fetchone()
                if taken is not None:
                    raise ConflictError(
                        f"External id '{meta.external_id}' already exists in tenant "
                        f"'{meta.tenant_id}' (artifact {taken['id']})"
                    )

            now = self._clock()
            expires_at = meta.expires_at or self._config.expiry_for(meta.retention_class, now)
            provenance = meta.provenance
            conn.execute(
                "INSERT INTO artifacts (id, tenant_id, owner_id, external_id, artifact_type, "
                "title, summary, provenance_json, producer_id, session_id, task_id, "
                "retention_class, visibility, status, expires_at, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    artifact_id,
                    meta.tenant_id,
                    meta.owner_id,
                    meta.external_id,
                    meta.artifact_type,
                    meta.title,
                    meta.summary,
                    provenance.model_dump_json(),
                    provenance.producer_id,
                    provenance.session_id,
                    provenance.task_id,
                    meta.retention_class.value,
                    meta.visibility.value,
                    meta.status.value,
                    to_iso(expires_at),
                    to_iso(now),
                    to_iso(now),
                ),
            )
            self._insert_version(
                conn, artifact_id, version_id, 1, content, None, meta.created_by, now
            )
            self._replace_tags(conn, artifact_id, meta.tags)

        self._blobs.run_with_retry(work, description=f"create artifact {artifact_id}")
        logger.info("Created artifact %s (tenant=%s, type=%s)",
                    artifact_id, meta.tenant_id, meta.artifact_type)
        self._emit(ArtifactCreated(
            artifact_id=artifact_id,
            payload={
                "tenant_id": meta.tenant_id,
                "artifact_type": meta.artifact_type,
                "version_id": version_id,
                "version": 1,
            },
        ))
        return artifact_id, version_id

    def append_version(
        self,
        artifact_id: str,
        content: Content,
        change_summary: str | None = None,
        *,
        created_by: str | None = None,
    ) -> VersionId:
        """Append a new version and move the artifact's pointer to it.

        The next number is read, the version written and the pointer moved
        in a single transaction, so concurrent appends serialize into
        consecutive numbers.

        Raises:
            NotFoundError: If the artifact does not exist.
            ConflictError: If the version number race could not be resolved.
        """
        version_id = generate_version_id()
        number_box: list[int] = []

        def work(conn: sqlite3.Connection) -> None:
            row = conn.execute(
                "SELECT version_count FROM artifacts WHERE id = ?", (artifact_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Artifact '{artifact_id}' not found")
            number = int(row["version_count"]) + 1
            self._insert_version(
                conn, artifact_id, version_id, number, content,
                change_summary, created_by, self._clock(),
            )
            number_box[:] = [number]

        run_with_retry(
            self._db,
            work,
            description=f"append version to {artifact_id}",
            max_attempts=self._config.append_max_attempts,
            backoff_seconds=self._config.put_backoff_seconds,
        )
        number = number_box[0]
        logger.info("Appended version %d to artifact %s", number, artifact_id)
        self._emit(VersionAppended(
            artifact_id=artifact_id,
            payload={"version_id": version_id, "version": number},
        ))
        return version_id

    def _insert_version(
        self,
        conn: sqlite3.Connection,
        artifact_id: str,
        version_id: str,
        number: int,
        content: Content,
        change_summary: str | None,
        created_by: str | None,
        now: datetime,
    ) -> None:
        blob = self._blobs.acquire(conn, content.data, content.media_type)
        conn.execute(
            "INSERT INTO versions (id, artifact_id, number, blob_id, media_type, encoding, "
            "size_bytes, token_count, change_summary, created_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                version_id,
                artifact_id,
                number,
                blob.id,
                content.media_type,
                content.encoding,
                blob.size_bytes,
                content.token_count,
                change_summary,
                created_by,
                to_iso(now),
            ),
        )
        cursor = conn.execute(
            "UPDATE artifacts SET current_version_id = ?, current_version = ?, "
            "version_count = ?, updated_at = ? WHERE id = ? AND version_count = ?",
            (version_id, number, number, to_iso(now), artifact_id, number - 1),
        )
        if cursor.rowcount != 1:
            raise ConflictError(f"Version {number} of artifact '{artifact_id}' lost a race")

    def update_metadata(
        self,
        artifact_id: str,
        *,
        title: str | None = None,
        summary: str | None = None,
        status: ArtifactStatus | str | None = None,
        tags: list[str] | None = None,
    ) -> ArtifactRecord:
        """Change descriptive metadata. Never creates a version.

        ``tags`` replaces the whole tag set when given.
        """
        if status is not None:
            try:
                status = ArtifactStatus(status)
            except ValueError:
                raise RequestValidationError(f"Unknown artifact status '{status}'") from None

        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = title
        if summary is not None:
            changes["summary"] = summary
        if status is not None:
            changes["status"] = status.value

        with self._db.transaction() as conn:
            if conn.execute("SELECT 1 FROM artifacts WHERE id = ?", (artifact_id,)).fetchone() is None:
                raise NotFoundError(f"Artifact '{artifact_id}' not found")
            changes["updated_at"] = to_iso(self._clock())
            assignments = ", ".join(f"{column} = ?" for column in changes)
            conn.execute(
                f"UPDATE artifacts SET {assignments} WHERE id = ?",
                (*changes.values(), artifact_id),
            )
            if tags is not None:
                self._replace_tags(conn, artifact_id, tags)

        fields = [k for k in changes if k != "updated_at"] + (["tags"] if tags is not None else [])
        self._emit(ArtifactUpdated(artifact_id=artifact_id, payload={"fields": fields}))
        return self.get_artifact(artifact_id)

    @staticmethod
    def _replace_tags(conn: sqlite3.Connection, artifact_id: str, tags: list[str]) -> None:
        conn.execute("DELETE FROM tags WHERE artifact_id = ?", (artifact_id,))
        conn.executemany(
            "INSERT OR IGNORE INTO tags (artifact_id, tag) VALUES (?, ?)",
            [(artifact_id, tag) for tag in tags if tag],
        )

    def delete_artifact(self, artifact_id: str, *, missing_ok: bool = False) -> list[BlobId]:
        """Delete an artifact and everything that depends on it, atomically.

        Releases one blob reference per version, then removes the versions,
        tags, relationships, handoffs and the artifact row. Blobs are never
        deleted here; the ones that drop to zero references become
        collectible for the sweeper.

        Returns:
            The blobs whose reference count reached zero.

        Raises:
            NotFoundError: If the artifact does not exist and ``missing_ok`` is False.
        """
        collectible = self._delete(artifact_id)
        if collectible is None:
            if missing_ok:
                return []
            raise NotFoundError(f"Artifact '{artifact_id}' not found")
        return collectible

    def delete_if_expired(
        self, artifact_id: str, now: datetime | None = None
    ) -> list[BlobId] | None:
        """Delete an artifact only if it is still expired and not archived.

        The expiry and status are re-read inside the deleting transaction,
        so an artifact archived or given a later expiry after it was listed
        by :meth:`expired` is kept.

        Returns:
            The blobs whose reference count reached zero, or None if the
            artifact was gone or no longer eligible.
        """
        return self._delete(artifact_id, expired_at=to_iso(now or self._clock()))

    def _delete(self, artifact_id: str, *, expired_at: str | None = None) -> list[BlobId] | None:
        sql = "SELECT tenant_id, version_count FROM artifacts WHERE id = ?"
        params: tuple[Any, ...] = (artifact_id,)
        if expired_at is not None:
            sql += " AND expires_at IS NOT NULL AND expires_at <= ? AND status != ?"
            params = (*params, expired_at, ArtifactStatus.ARCHIVED.value)

        collectible: list[BlobId] = []
        with self._db.transaction() as conn:
            row = conn.execute(sql, params).fetchone()
            if row is None:
                return None

            versions = conn.execute(
                "SELECT blob_id FROM versions WHERE artifact_id = ?", (artifact_id,)
            ).fetchall()
            for version in versions:
                if self._blobs.release(conn, version["blob_id"]) == 0:
                    collectible.append(BlobId(version["blob_id"]))
            conn.execute("DELETE FROM versions WHERE artifact_id = ?", (artifact_id,))
            conn.execute("DELETE FROM handoffs WHERE artifact_id = ?", (artifact_id,))
            conn.execute(
                "DELETE FROM relationships WHERE parent_id = ? OR child_id = ?",
                (artifact_id, artifact_id),
            )
            conn.execute("DELETE FROM tags WHERE artifact_id = ?", (artifact_id,))
            conn.execute("DELETE FROM artifacts WHERE id = ?", (artifact_id,))

        logger.info(
            "Deleted artifact %s (%d version(s), %d blob(s) now collectible)",
            artifact_id, len(versions), len(collectible),
        )
        self._emit(ArtifactDeleted(
            artifact_id=artifact_id,
            payload={
                "tenant_id": row["tenant_id"],
                "versions_released": len(versions),
                "collectible_blobs": list(collectible),
            },
        ))
        return collectible

    # ── Reads ─────────────────────────────────────────────────────────

    def get_artifact(self, artifact_id: str) -> ArtifactRecord:
        row = self._db.fetchone("SELECT * FROM artifacts WHERE id = ?", (artifact_id,))
        if row is None:
            raise NotFoundError(f"Artifact '{artifact_id}' not found")
        return _row_to_artifact(row, self._tags_of(artifact_id))

    def exists(self, artifact_id: str) -> bool:
        return self._db.fetchone("SELECT 1 FROM artifacts WHERE id = ?", (artifact_id,)) is not None

    def get_current(self, artifact_id: str) -> VersionRecord:
        """Resolve the artifact's current-version pointer."""
        row = self._db.fetchone(
            f"SELECT {_VERSION_COLUMNS} FROM artifacts a "
            "JOIN versions v ON v.id = a.current_version_id "
            "JOIN blobs b ON b.id = v.blob_id WHERE a.id = ?",
            (artifact_id,),
        )
        if row is None:
            if not self.exists(artifact_id):
                raise NotFoundError(f"Artifact '{artifact_id}' not found")
            raise NotFoundError(f"Artifact '{artifact_id}' has no current version")
        return _row_to_version(row)

    def get_version(self, artifact_id: str, number: int) -> VersionRecord:
        row = self._db.fetchone(
            f"SELECT {_VERSION_COLUMNS} FROM versions v JOIN blobs b ON b.id = v.blob_id "
            "WHERE v.artifact_id = ? AND v.number = ?",
            (artifact_id, number),
        )
        if row is None:
            raise NotFoundError(f"Version {number} of artifact '{artifact_id}' not found")
        return _row_to_version(row)

    def get_version_by_id(self, version_id: str) -> VersionRecord:
        row = self._db.fetchone(
            f"SELECT {_VERSION_COLUMNS} FROM versions v JOIN blobs b ON b.id = v.blob_id "
            "WHERE v.id = ?",
            (version_id,),
        )
        if row is None:
            raise NotFoundError(f"Version '{version_id}' not found")
        return _row_to_version(row)

    def list_versions(self, artifact_id: str) -> list[VersionRecord]:
        """Return every version of an artifact in ascending number order."""
        if not self.exists(artifact_id):
            raise NotFoundError(f"Artifact '{artifact_id}' not found")
        rows = self._db.fetchall(
            f"SELECT {_VERSION_COLUMNS} FROM versions v JOIN blobs b ON b.id = v.blob_id "
            "WHERE v.artifact_id = ? ORDER BY v.number",
            (artifact_id,),
        )
        return [_row_to_version(row) for row in rows]

    def read_content(self, version: VersionRecord) -> bytes:
        return self._blobs.read(version.blob_id)

    def blob_location(self, version: VersionRecord) -> str:
        return self._blobs.location(self._blobs.get(version.blob_id))

    def list_artifacts(self, criteria: ArtifactFilter | None = None) -> list[ArtifactRecord]:
        """List artifacts matching ``criteria``, newest first."""
        criteria = criteria or ArtifactFilter()
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("a.tenant_id", criteria.tenant_id),
            ("a.session_id", criteria.session_id),
            ("a.task_id", criteria.task_id),
            ("a.producer_id", criteria.producer_id),
            ("a.artifact_type", criteria.artifact_type),
            ("a.status", criteria.status.value if criteria.status else None),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if criteria.tag is not None:
            clauses.append("EXISTS (SELECT 1 FROM tags t WHERE t.artifact_id = a.id AND t.tag = ?)")
            params.append(criteria.tag)

        sql = "SELECT a.* FROM artifacts a"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY a.created_at DESC, a.id LIMIT ? OFFSET ?"
        params.extend([criteria.limit, criteria.offset])

        rows = self._db.fetchall(sql, tuple(params))
        return [_row_to_artifact(row, self._tags_of(row["id"])) for row in rows]

    def expired(self, now: datetime | None = None, limit: int | None = None) -> list[ArtifactId]:
        """Return ids of non-archived artifacts whose expiry has passed."""
        sql = (
            "SELECT id FROM artifacts WHERE expires_at IS NOT NULL AND expires_at <= ? "
            "AND status != ? ORDER BY expires_at"
        )
        params: tuple[Any, ...] = (to_iso(now or self._clock()), ArtifactStatus.ARCHIVED.value)
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        return [ArtifactId(row["id"]) for row in self._db.fetchall(sql, params)]

    def usage(self, tenant_id: str) -> UsageCounters:
        """Storage usage counters for one tenant."""
        totals = self._db.fetchone(
            "SELECT COUNT(DISTINCT a.id) AS artifacts, COUNT(v.id) AS versions, "
            "COALESCE(SUM(v.size_bytes), 0) AS logical FROM artifacts a "
            "LEFT JOIN versions v ON v.artifact_id = a.id WHERE a.tenant_id = ?",
            (tenant_id,),
        )
        stored = self._db.fetchone(
            "SELECT COALESCE(SUM(b.size_bytes), 0) FROM blobs b WHERE b.id IN ("
            "SELECT v.blob_id FROM versions v JOIN artifacts a ON a.id = v.artifact_id "
            "WHERE a.tenant_id = ?)",
            (tenant_id,),
        )
        return UsageCounters(
            tenant_id=tenant_id,
            artifact_count=totals["artifacts"],
            version_count=totals["versions"],
            logical_bytes=totals["logical"],
            stored_bytes=stored[0],
        )

    def _tags_of(self, artifact_id: str) -> list[str]:
        rows = self._db.fetchall(
            "SELECT tag FROM tags WHERE artifact_id = ? ORDER BY tag", (artifact_id,)
        )
        return [row["tag"] for row in rows]

    def _emit(self, event: BaseEvent) -> None:
        record_event(self._event_log, event)
