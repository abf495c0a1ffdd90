"""Artifact engine — wires the storage components together from one config."""

from __future__ import annotations

import logging
from pathlib import Path

from artifactos.core.clock import Clock, utc_now
from artifactos.core.config import EngineConfig
from artifactos.handoff.coordinator import HandoffCoordinator
from artifactos.lineage.graph import LineageGraph
from artifactos.retention.sweeper import RetentionSweeper
from artifactos.runtime.event_log import SQLiteEventLog
from artifactos.storage.blob_store import BlobStore
from artifactos.storage.database import Database
from artifactos.storage.object_store import (
    FilesystemObjectStore,
    InMemoryObjectStore,
    ObjectStore,
)
from artifactos.versioning.chain import VersionChainManager

logger = logging.getLogger(__name__)


def _events_path(database_path: str) -> str:
    if database_path == ":memory:":
        return ":memory:"
    path = Path(database_path)
    return str(path.with_name(f"{path.stem}-events{path.suffix or '.db'}"))


class ArtifactEngine:
    """Every engine component, sharing one database and one object store.

    Args:
        config: Engine configuration. Defaults to fully in-memory storage.
        objects: Object store override (e.g. a failing store in tests).
        clock: Source of "now" shared by every component.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        objects: ObjectStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or EngineConfig()
        if self.config.database_path != ":memory:":
            Path(self.config.database_path).parent.mkdir(parents=True, exist_ok=True)

        self.db = Database(self.config.database_path)
        self.events = SQLiteEventLog(_events_path(self.config.database_path))
        if objects is None:
            if self.config.object_store_dir:
                objects = FilesystemObjectStore(self.config.object_store_dir)
            else:
                objects = InMemoryObjectStore()
        self.objects = objects

        self.blobs = BlobStore(
            self.db,
            objects,
            max_attempts=self.config.put_max_attempts,
            backoff_seconds=self.config.put_backoff_seconds,
            clock=clock,
        )
        self.chain = VersionChainManager(
            self.db, self.blobs, config=self.config, event_log=self.events, clock=clock
        )
        self.lineage = LineageGraph(
            self.db,
            max_depth=self.config.lineage_max_depth,
            event_log=self.events,
            clock=clock,
        )
        self.handoffs = HandoffCoordinator(self.db, event_log=self.events, clock=clock)
        self.sweeper = RetentionSweeper(
            self.chain,
            self.blobs,
            self.handoffs,
            interval_seconds=self.config.sweep_interval_seconds,
            batch_size=self.config.sweep_batch_size,
            event_log=self.events,
            clock=clock,
        )
        logger.debug("Engine opened (db=%s)", self.config.database_path)

    def artifact_url(self, artifact_id: str) -> str:
        """Canonical URL of an artifact."""
        return f"{self.config.base_url.rstrip('/')}/artifacts/{artifact_id}"

    def close(self) -> None:
        """Stop the sweeper and release database connections."""
        if self.sweeper.running:
            self.sweeper.stop()
        self.events.close()
        self.db.close()
