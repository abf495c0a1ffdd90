"""Handoff coordinator — the handoff state machine.

::

    pending ──accept──▶ accepted ──complete──▶ completed
       │  └────────────complete──────────────▶ completed
       ├──(deadline passed, scan)───────────▶ expired
       └──cancel──▶ cancelled ◀──cancel── accepted

Every transition is a conditional update on the current state, so when a
caller's transition races the expiry scan exactly one of them commits and
the other sees :class:`InvalidTransitionError`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime

from artifactos.core.clock import Clock, from_iso, to_iso, utc_now
from artifactos.core.errors import InvalidTransitionError, NotFoundError
from artifactos.core.identifiers import ArtifactId, HandoffId, generate_handoff_id
from artifactos.runtime.event_log import EventLog, record_event
from artifactos.schemas.events import HandoffCreated, HandoffTransitioned
from artifactos.schemas.handoff import Handoff, HandoffCreate, HandoffState
from artifactos.storage.database import Database

logger = logging.getLogger(__name__)

VALID_SOURCES: dict[HandoffState, frozenset[HandoffState]] = {
    HandoffState.ACCEPTED: frozenset({HandoffState.PENDING}),
    HandoffState.COMPLETED: frozenset({HandoffState.PENDING, HandoffState.ACCEPTED}),
    HandoffState.CANCELLED: frozenset({HandoffState.PENDING, HandoffState.ACCEPTED}),
    HandoffState.EXPIRED: frozenset({HandoffState.PENDING}),
}


def _row_to_handoff(row: sqlite3.Row) -> Handoff:
    return Handoff(
        id=HandoffId(row["id"]),
        artifact_id=ArtifactId(row["artifact_id"]),
        version=row["version"],
        target=row["target"],
        expects_response=bool(row["expects_response"]),
        deadline=from_iso(row["deadline"]),
        priority=row["priority"],
        context=json.loads(row["context_json"]),
        state=HandoffState(row["state"]),
        response_artifact_id=row["response_artifact_id"],
        created_by=row["created_by"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


class HandoffCoordinator:
    """Creates handoffs and drives their state transitions."""

    def __init__(
        self,
        db: Database,
        *,
        event_log: EventLog | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._event_log = event_log
        self._clock = clock

    def create(self, request: HandoffCreate) -> HandoffId:
        """Create a ``pending`` handoff on an artifact (optionally a pinned version).

        Raises:
            NotFoundError: If the artifact or pinned version does not exist.
        """
        handoff_id = generate_handoff_id()
        with self._db.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM artifacts WHERE id = ?", (request.artifact_id,)
            ).fetchone() is None:
                raise NotFoundError(f"Artifact '{request.artifact_id}' not found")
            if request.version is not None and conn.execute(
                "SELECT 1 FROM versions WHERE artifact_id = ? AND number = ?",
                (request.artifact_id, request.version),
            ).fetchone() is None:
                raise NotFoundError(
                    f"Version {request.version} of artifact '{request.artifact_id}' not found"
                )
            now = to_iso(self._clock())
            conn.execute(
                "INSERT INTO handoffs (id, artifact_id, version, target, expects_response, "
                "deadline, priority, context_json, state, created_by, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    handoff_id,
                    request.artifact_id,
                    request.version,
                    request.target,
                    int(request.expects_response),
                    to_iso(request.deadline),
                    request.priority.value,
                    json.dumps(request.context),
                    HandoffState.PENDING.value,
                    request.created_by,
                    now,
                    now,
                ),
            )

        logger.info("Created handoff %s on %s for %s", handoff_id, request.artifact_id, request.target)
        record_event(self._event_log, HandoffCreated(
            artifact_id=request.artifact_id,
            payload={
                "handoff_id": handoff_id,
                "target": request.target,
                "priority": request.priority.value,
            },
        ))
        return handoff_id

    def accept(self, handoff_id: str) -> Handoff:
        return self._transition(handoff_id, HandoffState.ACCEPTED)

    def complete(self, handoff_id: str, response_artifact_id: str) -> Handoff:
        """Record the response artifact and move to ``completed``."""
        return self._transition(
            handoff_id, HandoffState.COMPLETED, response_artifact_id=response_artifact_id
        )

    def cancel(self, handoff_id: str) -> Handoff:
        return self._transition(handoff_id, HandoffState.CANCELLED)

    def _transition(
        self,
        handoff_id: str,
        target: HandoffState,
        *,
        response_artifact_id: str | None = None,
    ) -> Handoff:
        sources = VALID_SOURCES[target]
        placeholders = ", ".join("?" for _ in sources)
        with self._db.transaction() as conn:
            if response_artifact_id is not None and conn.execute(
                "SELECT 1 FROM artifacts WHERE id = ?", (response_artifact_id,)
            ).fetchone() is None:
                raise NotFoundError(f"Response artifact '{response_artifact_id}' not found")

            cursor = conn.execute(
                "UPDATE handoffs SET state = ?, updated_at = ?, "
                "response_artifact_id = COALESCE(?, response_artifact_id) "
                f"WHERE id = ? AND state IN ({placeholders})",
                (
                    target.value,
                    to_iso(self._clock()),
                    response_artifact_id,
                    handoff_id,
                    *(s.value for s in sources),
                ),
            )
            row = conn.execute("SELECT * FROM handoffs WHERE id = ?", (handoff_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Handoff '{handoff_id}' not found")
            if cursor.rowcount == 0:
                current = HandoffState(row["state"])
                if current.is_terminal:
                    raise InvalidTransitionError(
                        f"Handoff '{handoff_id}' is already {current.value}"
                    )
                raise InvalidTransitionError(
                    f"Handoff '{handoff_id}' cannot move from {current.value} to {target.value}"
                )

        handoff = _row_to_handoff(row)
        logger.info("Handoff %s -> %s", handoff_id, target.value)
        self._emit_transition(handoff)
        return handoff

    def expire_overdue(self, now: datetime | None = None) -> list[HandoffId]:
        """Move every overdue ``pending`` handoff to ``expired``.

        Only handoffs that expect a response and carry a deadline can
        expire. Each one is a separate compare-and-swap, so a handoff that
        was accepted or completed in the meantime is left alone.
        """
        cutoff = to_iso(now or self._clock())
        candidates = self._db.fetchall(
            "SELECT id FROM handoffs WHERE state = ? AND expects_response = 1 "
            "AND deadline IS NOT NULL AND deadline < ? ORDER BY deadline",
            (HandoffState.PENDING.value, cutoff),
        )
        expired: list[HandoffId] = []
        for candidate in candidates:
            with self._db.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE handoffs SET state = ?, updated_at = ? "
                    "WHERE id = ? AND state = ? AND deadline < ?",
                    (
                        HandoffState.EXPIRED.value,
                        to_iso(self._clock()),
                        candidate["id"],
                        HandoffState.PENDING.value,
                        cutoff,
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM handoffs WHERE id = ?", (candidate["id"],)
                ).fetchone()
            if cursor.rowcount == 1 and row is not None:
                expired.append(HandoffId(candidate["id"]))
                self._emit_transition(_row_to_handoff(row))
        if expired:
            logger.info("Expired %d overdue handoff(s)", len(expired))
        return expired

    def get(self, handoff_id: str) -> Handoff:
        row = self._db.fetchone("SELECT * FROM handoffs WHERE id = ?", (handoff_id,))
        if row is None:
            raise NotFoundError(f"Handoff '{handoff_id}' not found")
        return _row_to_handoff(row)

    def list(
        self,
        *,
        target: str | None = None,
        state: HandoffState | str | None = None,
        artifact_id: str | None = None,
    ) -> list[Handoff]:
        """List handoffs, highest priority first, then oldest first."""
        clauses: list[str] = []
        params: list[str] = []
        if target is not None:
            clauses.append("target = ?")
            params.append(target)
        if state is not None:
            clauses.append("state = ?")
            params.append(HandoffState(state).value)
        if artifact_id is not None:
            clauses.append("artifact_id = ?")
            params.append(artifact_id)
        sql = "SELECT * FROM handoffs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += (
            " ORDER BY CASE priority WHEN 'urgent' THEN 0 WHEN 'high' THEN 1 "
            "WHEN 'normal' THEN 2 ELSE 3 END, created_at"
        )
        return [_row_to_handoff(row) for row in self._db.fetchall(sql, tuple(params))]

    def _emit_transition(self, handoff: Handoff) -> None:
        record_event(self._event_log, HandoffTransitioned(
            artifact_id=handoff.artifact_id,
            payload={
                "handoff_id": handoff.id,
                "state": handoff.state.value,
                "response_artifact_id": handoff.response_artifact_id,
            },
        ))
