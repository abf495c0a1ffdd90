"""Shared test fixtures for ArtifactOS."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from artifactos.core.config import EngineConfig
from artifactos.core.errors import StorageError
from artifactos.runtime.engine import ArtifactEngine
from artifactos.runtime.event_log import SQLiteEventLog
from artifactos.schemas.artifact import ArtifactCreate, Content, Provenance, RetentionClass
from artifactos.schemas.events import BaseEvent, EventType
from artifactos.storage.blob_store import BlobStore
from artifactos.storage.database import Database
from artifactos.storage.object_store import InMemoryObjectStore

from artifactplatform.server import create_app
from artifactplatform.settings import SettingsManager


# ── Clock ──────────────────────────────────────────────────────────


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ── Test doubles with injected failures ────────────────────────────


class FlakyObjectStore(InMemoryObjectStore):
    """Fails the first ``put_failures`` puts, every delete while ``fail_deletes``
    is set, and deletes of the keys in ``fail_delete_keys``."""

    def __init__(self, put_failures: int = 0, fail_deletes: bool = False) -> None:
        super().__init__()
        self.put_failures = put_failures
        self.fail_deletes = fail_deletes
        self.fail_delete_keys: set[str] = set()
        self.put_calls = 0

    def put(self, key: str, data: bytes) -> str:
        self.put_calls += 1
        if self.put_failures > 0:
            self.put_failures -= 1
            raise StorageError("object store unavailable")
        return super().put(key, data)

    def delete(self, key: str) -> None:
        if self.fail_deletes or key in self.fail_delete_keys:
            raise StorageError("object store unavailable")
        super().delete(key)


class UnwritableEventLog(SQLiteEventLog):
    """Event log whose appends always fail, as on a full disk."""

    def __init__(self) -> None:
        super().__init__(":memory:")
        self.append_calls = 0

    def append(self, event: BaseEvent) -> BaseEvent:
        self.append_calls += 1
        raise sqlite3.OperationalError("database or disk is full")


# ── Fixtures ───────────────────────────────────────────────────────


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db() -> Iterator[Database]:
    """In-memory metadata database."""
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture()
def db_file(tmp_path) -> Iterator[Database]:
    """File-backed database (for WAL/thread tests)."""
    database = Database(tmp_path / "artifacts.db")
    yield database
    database.close()


@pytest.fixture()
def objects() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture()
def blob_store(db: Database, objects: InMemoryObjectStore, clock: FakeClock) -> BlobStore:
    return BlobStore(db, objects, backoff_seconds=0.0, clock=clock)


@pytest.fixture()
def event_log() -> Iterator[SQLiteEventLog]:
    """In-memory SQLiteEventLog."""
    log = SQLiteEventLog(":memory:")
    yield log
    log.close()


@pytest.fixture()
def engine(clock: FakeClock) -> Iterator[ArtifactEngine]:
    """Fully in-memory engine driven by the fake clock."""
    eng = ArtifactEngine(EngineConfig(put_backoff_seconds=0.0), clock=clock)
    yield eng
    eng.close()


@pytest.fixture()
def engine_file(tmp_path, clock: FakeClock) -> Iterator[ArtifactEngine]:
    """Engine on a real database file and filesystem object store."""
    config = EngineConfig(
        database_path=str(tmp_path / "artifacts.db"),
        object_store_dir=str(tmp_path / "objects"),
        put_backoff_seconds=0.0,
    )
    eng = ArtifactEngine(config, clock=clock)
    yield eng
    eng.close()


@pytest.fixture()
def api_engine() -> ArtifactEngine:
    """In-memory engine handed to the API app, which closes it on shutdown."""
    return ArtifactEngine(EngineConfig(put_backoff_seconds=0.0, base_url="http://test"))


@pytest.fixture()
def client(api_engine: ArtifactEngine, tmp_path: Path) -> Iterator[TestClient]:
    app = create_app(
        engine=api_engine,
        settings_manager=SettingsManager(str(tmp_path)),
        start_sweeper=False,
    )
    with TestClient(app) as c:
        yield c


# ── Builders ───────────────────────────────────────────────────────


def make_meta(tenant_id: str = "tenant-a", **overrides: Any) -> ArtifactCreate:
    """ArtifactCreate with sensible defaults."""
    fields: dict[str, Any] = {
        "tenant_id": tenant_id,
        "artifact_type": "report",
        "title": "Quarterly report",
        "provenance": Provenance(producer_id="agent-1", session_id="s-1", task_id="t-1"),
        "retention_class": RetentionClass.STANDARD,
    }
    fields.update(overrides)
    return ArtifactCreate(**fields)


def text(value: str, media_type: str = "text/plain") -> Content:
    return Content(data=value.encode("utf-8"), media_type=media_type, encoding="utf-8")


def artifact_body(data: str = "hello", **overrides: Any) -> dict[str, Any]:
    """JSON body for POST /artifacts."""
    body: dict[str, Any] = {
        "tenant_id": "tenant-a",
        "artifact_type": "report",
        "title": "Draft report",
        "content": {"data": data, "media_type": "text/markdown"},
        "provenance": {"producer_id": "writer", "session_id": "s-1", "task_id": "t-1"},
        "tags": ["q3"],
    }
    body.update(overrides)
    return body


def create_via_api(client: TestClient, data: str = "hello", **overrides: Any) -> dict[str, Any]:
    resp = client.post("/artifacts", json=artifact_body(data, **overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Assertion Helpers ──────────────────────────────────────────────


def assert_event_sequence(events: list[BaseEvent], expected_types: list[EventType]) -> None:
    """Assert that events match the expected EventType sequence."""
    actual = [e.event_type for e in events]
    assert actual == expected_types, (
        f"Event sequence mismatch.\n"
        f"  Expected: {[t.value for t in expected_types]}\n"
        f"  Actual:   {[t.value for t in actual]}"
    )


def assert_has_event(
    events: list[BaseEvent],
    event_type: EventType,
    **payload_checks: Any,
) -> BaseEvent:
    """Assert that at least one event of the given type exists and matches payload checks.

    Returns the first matching event.
    """
    matching = [e for e in events if e.event_type == event_type]
    assert matching, f"No event of type {event_type.value} found in {len(events)} events"

    if payload_checks:
        for event in matching:
            if all(event.payload.get(k) == v for k, v in payload_checks.items()):
                return event
        raise AssertionError(
            f"Found {len(matching)} {event_type.value} event(s) but none matched "
            f"payload checks: {payload_checks}\n"
            f"Payloads: {[e.payload for e in matching]}"
        )

    return matching[0]
