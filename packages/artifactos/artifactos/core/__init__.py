"""ArtifactOS core — identifiers, errors, and clock helpers."""

from artifactos.core.clock import Clock, from_iso, to_iso, utc_now
from artifactos.core.errors import (
    ArtifactOSError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ReclamationError,
    RequestValidationError,
    StorageError,
)
from artifactos.core.identifiers import (
    ArtifactId,
    BlobId,
    HandoffId,
    RelationshipId,
    VersionId,
    generate_artifact_id,
    generate_blob_id,
    generate_handoff_id,
    generate_id,
    generate_relationship_id,
    generate_version_id,
)

__all__ = [
    "ArtifactId",
    "ArtifactOSError",
    "BlobId",
    "Clock",
    "ConflictError",
    "HandoffId",
    "InvalidTransitionError",
    "NotFoundError",
    "ReclamationError",
    "RelationshipId",
    "RequestValidationError",
    "StorageError",
    "VersionId",
    "from_iso",
    "generate_artifact_id",
    "generate_blob_id",
    "generate_handoff_id",
    "generate_id",
    "generate_relationship_id",
    "generate_version_id",
    "to_iso",
    "utc_now",
]
