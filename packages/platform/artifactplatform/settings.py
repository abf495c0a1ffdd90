"""Platform settings — local configuration persistence."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

from artifactos.core.config import DEFAULT_RETENTION_DAYS, EngineConfig

logger = logging.getLogger(__name__)

_DEFAULT_DIR = os.path.expanduser("~/.artifactos")
_SETTINGS_FILE = "settings.json"


class PlatformSettings(BaseModel):
    """User-configurable platform settings, persisted to local filesystem."""

    # Storage locations
    data_dir: str = Field(
        default_factory=lambda: os.path.expanduser("~/.artifactos/data")
    )
    database_path: str | None = None
    object_store_dir: str | None = None

    # Canonical artifact URLs are built from this
    base_url: str = "http://localhost:8430"

    # Retention
    sweeper_enabled: bool = True
    sweep_interval_seconds: float = Field(default=60.0, gt=0.0)
    retention_days: dict[str, int | None] = Field(
        default_factory=lambda: dict(DEFAULT_RETENTION_DAYS)
    )

    # Write-path retry budgets
    put_max_attempts: int = Field(default=5, ge=1)
    put_backoff_seconds: float = Field(default=0.05, ge=0.0)
    append_max_attempts: int = Field(default=5, ge=1)

    lineage_max_depth: int = Field(default=32, ge=1)

    log_level: str = "info"

    def resolved_database_path(self) -> str:
        return self.database_path or str(Path(self.data_dir) / "artifacts.db")

    def resolved_object_store_dir(self) -> str:
        return self.object_store_dir or str(Path(self.data_dir) / "objects")

    def to_engine_config(self) -> EngineConfig:
        """Build the engine configuration these settings describe."""
        return EngineConfig(
            database_path=self.resolved_database_path(),
            object_store_dir=self.resolved_object_store_dir(),
            base_url=self.base_url,
            retention_days=self.retention_days,
            put_max_attempts=self.put_max_attempts,
            put_backoff_seconds=self.put_backoff_seconds,
            append_max_attempts=self.append_max_attempts,
            lineage_max_depth=self.lineage_max_depth,
            sweep_interval_seconds=self.sweep_interval_seconds,
        )


class SettingsManager:
    """Manages loading and saving platform settings from local filesystem."""

    def __init__(self, config_dir: str | None = None) -> None:
        self._config_dir = Path(config_dir or _DEFAULT_DIR)

    @property
    def _settings_path(self) -> Path:
        return self._config_dir / _SETTINGS_FILE

    def load(self) -> PlatformSettings:
        """Load settings from disk. Returns defaults if file doesn't exist."""
        if not self._settings_path.exists():
            return PlatformSettings()
        try:
            data = json.loads(self._settings_path.read_text())
            return PlatformSettings.model_validate(data)
        except Exception as exc:
            logger.warning("Failed to load settings from %s: %s", self._settings_path, exc)
            return PlatformSettings()

    def save(self, settings: PlatformSettings) -> None:
        """Save settings to disk."""
        self._config_dir.mkdir(parents=True, exist_ok=True)
        self._settings_path.write_text(
            settings.model_dump_json(indent=2) + "\n"
        )

    def update(self, updates: dict) -> PlatformSettings:
        """Load current settings, apply updates, save, and return."""
        settings = self.load()
        updated = settings.model_copy(update={
            k: v for k, v in updates.items() if v is not None
        })
        self.save(updated)
        return updated
