"""ArtifactOS handoffs — deadline-bound requests between producers."""

from artifactos.handoff.coordinator import HandoffCoordinator

__all__ = ["HandoffCoordinator"]
