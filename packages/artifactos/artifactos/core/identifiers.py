"""Core identifier types for ArtifactOS."""

from __future__ import annotations

import uuid
from typing import NewType

ArtifactId = NewType("ArtifactId", str)
VersionId = NewType("VersionId", str)
BlobId = NewType("BlobId", str)
RelationshipId = NewType("RelationshipId", str)
HandoffId = NewType("HandoffId", str)


def generate_id() -> str:
    """Generate a unique identifier (UUID4)."""
    return str(uuid.uuid4())


def generate_artifact_id() -> ArtifactId:
    """Generate a new ArtifactId."""
    return ArtifactId(generate_id())


def generate_version_id() -> VersionId:
    """Generate a new VersionId."""
    return VersionId(generate_id())


def generate_blob_id() -> BlobId:
    """Generate a new BlobId."""
    return BlobId(generate_id())


def generate_relationship_id() -> RelationshipId:
    """Generate a new RelationshipId."""
    return RelationshipId(generate_id())


def generate_handoff_id() -> HandoffId:
    """Generate a new HandoffId."""
    return HandoffId(generate_id())
