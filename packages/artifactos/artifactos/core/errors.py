"""Core error hierarchy for ArtifactOS."""

from __future__ import annotations


class ArtifactOSError(Exception):
    """Base exception for all ArtifactOS errors."""


class RequestValidationError(ArtifactOSError):
    """Raised when a request is malformed or missing required fields."""


class ConflictError(ArtifactOSError):
    """Raised when a write conflicts with existing state.

    Covers duplicate producer-supplied identifiers, version-number races
    that could not be resolved within the retry budget, and conflicting
    re-links.
    """


class InvalidTransitionError(ConflictError):
    """Raised when a handoff transition is not valid from its current state."""


class NotFoundError(ArtifactOSError):
    """Raised when a referenced artifact, version, blob, or handoff does not exist."""


class StorageError(ArtifactOSError):
    """Raised when the object store or database is unavailable."""


class ReclamationError(ArtifactOSError):
    """Raised when a zero-reference blob payload could not be deleted."""
