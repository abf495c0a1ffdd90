"""ArtifactOS retention — background reclamation of expired data."""

from artifactos.retention.sweeper import RetentionSweeper, SweepReport

__all__ = ["RetentionSweeper", "SweepReport"]
