"""Lineage graph — typed, directed edges between artifacts.

Edges may form cycles (nothing stops a child from later being linked as a
parent of one of its ancestors), so traversal keeps a visited set and
never assumes a DAG.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import deque
from collections.abc import Iterator
from typing import Any

from artifactos.core.clock import Clock, from_iso, to_iso, utc_now
from artifactos.core.errors import ConflictError, NotFoundError, RequestValidationError
from artifactos.core.identifiers import ArtifactId, RelationshipId, generate_relationship_id
from artifactos.integrity.hashing import canonical_json
from artifactos.runtime.event_log import EventLog, record_event
from artifactos.schemas.events import RelationshipCreated, RelationshipDeleted
from artifactos.schemas.lineage import Direction, LineageNode, Relationship, RelationshipType
from artifactos.storage.database import Database
from artifactos.storage.retry import run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32


def _row_to_relationship(row: sqlite3.Row) -> Relationship:
    return Relationship(
        id=RelationshipId(row["id"]),
        parent_id=ArtifactId(row["parent_id"]),
        child_id=ArtifactId(row["child_id"]),
        type=RelationshipType(row["type"]),
        parent_version=row["parent_version"],
        child_version=row["child_version"],
        context=json.loads(row["context_json"]),
        created_at=from_iso(row["created_at"]),
    )


class LineageGraph:
    """Records and walks relationships between artifacts."""

    def __init__(
        self,
        db: Database,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        event_log: EventLog | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._max_depth = max_depth
        self._event_log = event_log
        self._clock = clock

    def link(
        self,
        parent_id: str,
        child_id: str,
        type: RelationshipType | str,
        context: dict[str, Any] | None = None,
        *,
        parent_version: int | None = None,
        child_version: int | None = None,
    ) -> RelationshipId:
        """Create a ``parent -> child`` edge of the given type.

        Re-linking an identical edge returns the existing id. An edge of the
        same type between the same pair with a different context or
        different version pins is a conflict.

        Raises:
            RequestValidationError: On an unknown type or a self-edge.
            NotFoundError: If an endpoint or pinned version does not exist.
            ConflictError: If a different edge of this type already exists.
        """
        try:
            rel_type = RelationshipType(type)
        except ValueError:
            raise RequestValidationError(f"Unknown relationship type '{type}'") from None
        if parent_id == child_id:
            raise RequestValidationError("An artifact cannot be related to itself")
        context = context or {}
        created = False

        def work(conn: sqlite3.Connection) -> RelationshipId:
            nonlocal created
            for artifact_id, pinned in ((parent_id, parent_version), (child_id, child_version)):
                if conn.execute("SELECT 1 FROM artifacts WHERE id = ?", (artifact_id,)).fetchone() is None:
                    raise NotFoundError(f"Artifact '{artifact_id}' not found")
                if pinned is not None and conn.execute(
                    "SELECT 1 FROM versions WHERE artifact_id = ? AND number = ?",
                    (artifact_id, pinned),
                ).fetchone() is None:
                    raise NotFoundError(f"Version {pinned} of artifact '{artifact_id}' not found")

            existing = conn.execute(
                "SELECT * FROM relationships WHERE parent_id = ? AND child_id = ? AND type = ?",
                (parent_id, child_id, rel_type.value),
            ).fetchone()
            if existing is not None:
                same = (
                    existing["parent_version"] == parent_version
                    and existing["child_version"] == child_version
                    and existing["context_json"] == canonical_json(context)
                )
                if not same:
                    raise ConflictError(
                        f"A '{rel_type.value}' edge from '{parent_id}' to '{child_id}' "
                        "already exists with different context"
                    )
                return RelationshipId(existing["id"])

            relationship_id = generate_relationship_id()
            conn.execute(
                "INSERT INTO relationships (id, parent_id, child_id, type, parent_version, "
                "child_version, context_json, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    relationship_id,
                    parent_id,
                    child_id,
                    rel_type.value,
                    parent_version,
                    child_version,
                    canonical_json(context),
                    to_iso(self._clock()),
                ),
            )
            created = True
            return relationship_id

        relationship_id = run_with_retry(
            self._db, work, description=f"link {parent_id} -> {child_id}"
        )
        if created:
            logger.info("Linked %s -[%s]-> %s", parent_id, rel_type.value, child_id)
            record_event(self._event_log, RelationshipCreated(
                artifact_id=child_id,
                payload={
                    "relationship_id": relationship_id,
                    "parent_id": parent_id,
                    "child_id": child_id,
                    "type": rel_type.value,
                },
            ))
        return relationship_id

    def unlink(self, relationship_id: str) -> None:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM relationships WHERE id = ?", (relationship_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Relationship '{relationship_id}' not found")
            conn.execute("DELETE FROM relationships WHERE id = ?", (relationship_id,))
        record_event(self._event_log, RelationshipDeleted(
            artifact_id=row["child_id"],
            payload={"relationship_id": relationship_id, "parent_id": row["parent_id"]},
        ))

    def get(self, relationship_id: str) -> Relationship:
        row = self._db.fetchone("SELECT * FROM relationships WHERE id = ?", (relationship_id,))
        if row is None:
            raise NotFoundError(f"Relationship '{relationship_id}' not found")
        return _row_to_relationship(row)

    def relationships_of(self, artifact_id: str) -> list[Relationship]:
        """Every edge touching ``artifact_id``, in either direction."""
        rows = self._db.fetchall(
            "SELECT * FROM relationships WHERE parent_id = ? OR child_id = ? ORDER BY created_at",
            (artifact_id, artifact_id),
        )
        return [_row_to_relationship(row) for row in rows]

    # ── Traversal ─────────────────────────────────────────────────────

    def ancestors(self, artifact_id: str, max_depth: int | None = None) -> Iterator[LineageNode]:
        """Walk parent edges breadth-first from ``artifact_id``."""
        return self.traverse(artifact_id, Direction.ANCESTORS, max_depth)

    def descendants(self, artifact_id: str, max_depth: int | None = None) -> Iterator[LineageNode]:
        """Walk child edges breadth-first from ``artifact_id``."""
        return self.traverse(artifact_id, Direction.DESCENDANTS, max_depth)

    def traverse(
        self,
        artifact_id: str,
        direction: Direction | str,
        max_depth: int | None = None,
    ) -> Iterator[LineageNode]:
        """Return a lazy breadth-first walk of the lineage graph.

        Each reachable artifact is yielded at most once, at the depth it was
        first reached. The start node is never yielded. Edges are read one
        node at a time as the iterator is consumed.

        Raises:
            NotFoundError: If ``artifact_id`` does not exist (raised eagerly).
            RequestValidationError: If ``max_depth`` is below 1.
        """
        direction = Direction(direction)
        depth_limit = self._max_depth if max_depth is None else max_depth
        if depth_limit < 1:
            raise RequestValidationError("max_depth must be >= 1")
        if self._db.fetchone("SELECT 1 FROM artifacts WHERE id = ?", (artifact_id,)) is None:
            raise NotFoundError(f"Artifact '{artifact_id}' not found")
        return self._walk(artifact_id, direction, depth_limit)

    def _walk(self, start: str, direction: Direction, depth_limit: int) -> Iterator[LineageNode]:
        if direction is Direction.ANCESTORS:
            sql = "SELECT * FROM relationships WHERE child_id = ? ORDER BY created_at, id"
            next_of = "parent_id"
        else:
            sql = "SELECT * FROM relationships WHERE parent_id = ? ORDER BY created_at, id"
            next_of = "child_id"

        visited = {start}
        queue: deque[tuple[str, int]] = deque([(start, 0)])
        while queue:
            node, depth = queue.popleft()
            if depth >= depth_limit:
                continue
            for row in self._db.fetchall(sql, (node,)):
                neighbor = row[next_of]
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                yield LineageNode(
                    artifact_id=ArtifactId(neighbor),
                    depth=depth + 1,
                    via=_row_to_relationship(row),
                )
                queue.append((neighbor, depth + 1))
