"""Event log — append-only write-event persistence with SQLite backend.

Downstream consumers (search indexers, notifiers) subscribe to engine
writes by polling ``query_after`` with the last sequence number they saw.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from artifactos.schemas.events import BaseEvent, EventType

logger = logging.getLogger(__name__)


class EventLog(ABC):
    """Abstract interface for the append-only event log."""

    @abstractmethod
    def append(self, event: BaseEvent) -> BaseEvent:
        """Append an event and return it with its assigned sequence number."""

    @abstractmethod
    def query_after(self, after_seq: int = 0, limit: int | None = None) -> list[BaseEvent]:
        """Return events with ``seq > after_seq``, ordered by sequence number."""

    @abstractmethod
    def query_by_artifact(self, artifact_id: str) -> list[BaseEvent]:
        """Return all events for one artifact, ordered by sequence number."""

    @abstractmethod
    def query_by_type(self, event_type: EventType) -> list[BaseEvent]:
        """Return events of a specific type."""


class SQLiteEventLog(EventLog):
    """SQLite-backed implementation of the event log."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_table()

    def _create_table(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                event_type TEXT NOT NULL,
                artifact_id TEXT,
                payload_json TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_artifact ON events (artifact_id)"
        )
        self._conn.commit()

    def append(self, event: BaseEvent) -> BaseEvent:
        """Append an event to the log. Thread-safe."""
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO events (timestamp, event_type, artifact_id, payload_json) "
                "VALUES (?, ?, ?, ?)",
                (
                    event.timestamp.isoformat(),
                    event.event_type.value,
                    event.artifact_id,
                    "{}",
                ),
            )
            seq = cursor.lastrowid
            stored = event.model_copy(update={"seq": seq})
            self._conn.execute(
                "UPDATE events SET payload_json = ? WHERE seq = ?",
                (stored.model_dump_json(), seq),
            )
            self._conn.commit()
        return stored

    def _rows_to_events(self, rows: list[tuple[str, ...]]) -> list[BaseEvent]:
        return [BaseEvent.model_validate_json(row[0]) for row in rows]

    def query_after(self, after_seq: int = 0, limit: int | None = None) -> list[BaseEvent]:
        sql = "SELECT payload_json FROM events WHERE seq > ? ORDER BY seq"
        params: tuple[int, ...] = (after_seq,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (after_seq, limit)
        with self._lock:
            cursor = self._conn.execute(sql, params)
            return self._rows_to_events(cursor.fetchall())

    def query_by_artifact(self, artifact_id: str) -> list[BaseEvent]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT payload_json FROM events WHERE artifact_id = ? ORDER BY seq",
                (artifact_id,),
            )
            return self._rows_to_events(cursor.fetchall())

    def query_by_type(self, event_type: EventType) -> list[BaseEvent]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT payload_json FROM events WHERE event_type = ? ORDER BY seq",
                (event_type.value,),
            )
            return self._rows_to_events(cursor.fetchall())

    def last_seq(self) -> int:
        """Return the highest assigned sequence number (0 if empty)."""
        with self._lock:
            row = self._conn.execute("SELECT COALESCE(MAX(seq), 0) FROM events").fetchone()
            return int(row[0])

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


def record_event(event_log: EventLog | None, event: BaseEvent) -> BaseEvent | None:
    """Append ``event`` for a write that has already committed.

    The write stands whether or not the log accepts the event, so a failing
    log is reported here instead of being raised to the writer.
    """
    if event_log is None:
        return None
    try:
        return event_log.append(event)
    except Exception:
        logger.exception(
            "Could not record %s event for %s", event.event_type.value, event.artifact_id
        )
        return None
