"""Engine configuration — the knobs the storage engine itself understands."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from artifactos.schemas.artifact import RetentionClass

DEFAULT_RETENTION_DAYS: dict[str, int | None] = {
    RetentionClass.EPHEMERAL.value: 1,
    RetentionClass.STANDARD.value: 30,
    RetentionClass.PERMANENT.value: None,
}


class EngineConfig(BaseModel):
    """Configuration for an :class:`~artifactos.runtime.engine.ArtifactEngine`.

    ``database_path`` and ``object_store_dir`` default to in-memory
    storage, which is what tests and throwaway engines want.
    """

    database_path: str = ":memory:"
    object_store_dir: str | None = None
    base_url: str = "http://localhost:8430"

    retention_days: dict[str, int | None] = Field(
        default_factory=lambda: dict(DEFAULT_RETENTION_DAYS),
        description="Retention class -> lifetime in days; None never expires",
    )

    put_max_attempts: int = Field(default=5, ge=1)
    put_backoff_seconds: float = Field(default=0.05, ge=0.0)
    append_max_attempts: int = Field(default=5, ge=1)

    lineage_max_depth: int = Field(default=32, ge=1)

    sweep_interval_seconds: float = Field(default=60.0, gt=0.0)
    sweep_batch_size: int = Field(default=500, ge=1)

    def expiry_for(self, retention_class: RetentionClass | str, created_at: datetime) -> datetime | None:
        """Return when an artifact created at ``created_at`` expires."""
        days = self.retention_days.get(str(retention_class))
        if days is None:
            return None
        return created_at + timedelta(days=days)
