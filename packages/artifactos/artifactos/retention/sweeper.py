"""Retention sweeper — periodic reclamation of expired artifacts and blobs.

One pass:

1. expire overdue ``pending`` handoffs,
2. delete expired, non-archived artifacts (each deletion is its own
   atomic unit that re-checks eligibility, so an artifact archived after
   the scan is kept),
3. reclaim blobs whose reference count is zero (payload first, row after),
4. remove payloads that no blob row refers to.

A payload that cannot be deleted is logged, counted in the report and
left for the next pass.
"""

from __future__ import annotations

import logging
import threading

from pydantic import BaseModel, Field

from artifactos.core.clock import Clock, utc_now
from artifactos.core.errors import ArtifactOSError, ReclamationError
from artifactos.core.identifiers import ArtifactId, BlobId, HandoffId
from artifactos.handoff.coordinator import HandoffCoordinator
from artifactos.runtime.event_log import EventLog, record_event
from artifactos.schemas.blob import BlobRecord
from artifactos.schemas.events import BlobReclaimed
from artifactos.storage.blob_store import BlobStore
from artifactos.versioning.chain import VersionChainManager

logger = logging.getLogger(__name__)


class SweepReport(BaseModel):
    """What one sweep pass did."""

    expired_handoffs: list[HandoffId] = Field(default_factory=list)
    deleted_artifacts: list[ArtifactId] = Field(default_factory=list)
    reclaimed_blobs: list[BlobId] = Field(default_factory=list)
    reclamation_failures: list[BlobId] = Field(default_factory=list)
    orphan_payloads_removed: int = 0
    orphan_failures: list[str] = Field(default_factory=list)


class RetentionSweeper:
    """Runs sweep passes on demand or on a background thread.

    Args:
        chain: Version chain manager used for artifact deletion.
        blobs: Blob store to reclaim from.
        handoffs: Coordinator whose overdue handoffs are expired.
        interval_seconds: Delay between passes when started.
        batch_size: Maximum artifacts and blobs handled per pass.
        event_log: Optional sink for ``BlobReclaimed`` events.
        clock: Source of "now".
    """

    def __init__(
        self,
        chain: VersionChainManager,
        blobs: BlobStore,
        handoffs: HandoffCoordinator,
        *,
        interval_seconds: float = 60.0,
        batch_size: int = 500,
        event_log: EventLog | None = None,
        clock: Clock = utc_now,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._chain = chain
        self._blobs = blobs
        self._handoffs = handoffs
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._event_log = event_log
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._pass_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SweepReport:
        """Run one full pass and report what it did."""
        with self._pass_lock:
            return self._sweep()

    def _sweep(self) -> SweepReport:
        report = SweepReport()
        now = self._clock()

        report.expired_handoffs = self._handoffs.expire_overdue(now)

        for artifact_id in self._chain.expired(now, limit=self._batch_size):
            try:
                deleted = self._chain.delete_if_expired(artifact_id, now)
            except ArtifactOSError as exc:
                logger.warning("Could not delete expired artifact %s: %s", artifact_id, exc)
                continue
            if deleted is None:
                logger.debug("Artifact %s no longer eligible for expiry", artifact_id)
                continue
            report.deleted_artifacts.append(artifact_id)

        self._reclaim_blobs(report)

        removed, failed = self._blobs.remove_orphan_payloads()
        report.orphan_payloads_removed = len(removed)
        report.orphan_failures = failed

        logger.info(
            "Sweep: %d handoff(s) expired, %d artifact(s) deleted, %d blob(s) reclaimed, "
            "%d reclamation failure(s), %d orphan payload(s) removed, %d orphan failure(s)",
            len(report.expired_handoffs),
            len(report.deleted_artifacts),
            len(report.reclaimed_blobs),
            len(report.reclamation_failures),
            report.orphan_payloads_removed,
            len(report.orphan_failures),
        )
        return report

    def _reclaim_blobs(self, report: SweepReport) -> None:
        # Pages past blobs that fail, so they cannot use up the whole batch.
        last: BlobRecord | None = None
        while len(report.reclaimed_blobs) < self._batch_size:
            page = self._blobs.collectible(limit=self._batch_size, after=last)
            if not page:
                return
            for blob in page:
                last = blob
                try:
                    reclaimed = self._blobs.reclaim(blob.id)
                except ReclamationError as exc:
                    logger.warning("%s; will retry next sweep", exc)
                    report.reclamation_failures.append(blob.id)
                    continue
                if not reclaimed:
                    continue
                report.reclaimed_blobs.append(blob.id)
                record_event(self._event_log, BlobReclaimed(
                    payload={"blob_id": blob.id, "sha256": blob.sha256,
                             "size_bytes": blob.size_bytes},
                ))
                if len(report.reclaimed_blobs) >= self._batch_size:
                    return

    # ── Background thread ─────────────────────────────────────────────

    def start(self) -> None:
        """Start sweeping every ``interval_seconds`` on a daemon thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="artifactos-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("Retention sweeper started (interval=%.1fs)", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Retention sweeper stopped")

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweep failed; retrying next interval")
