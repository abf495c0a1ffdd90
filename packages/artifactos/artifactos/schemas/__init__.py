"""ArtifactOS schemas — Pydantic v2 models for all core data structures."""

from artifactos.schemas.artifact import (
    ArtifactCreate,
    ArtifactFilter,
    ArtifactRecord,
    ArtifactStatus,
    Content,
    Provenance,
    RetentionClass,
    UsageCounters,
    VersionRecord,
    Visibility,
)
from artifactos.schemas.blob import BlobRecord, BlobRef
from artifactos.schemas.events import (
    ArtifactCreated,
    ArtifactDeleted,
    ArtifactUpdated,
    BaseEvent,
    BlobReclaimed,
    EventType,
    HandoffCreated,
    HandoffTransitioned,
    RelationshipCreated,
    RelationshipDeleted,
    VersionAppended,
)
from artifactos.schemas.handoff import Handoff, HandoffCreate, HandoffPriority, HandoffState
from artifactos.schemas.lineage import Direction, LineageNode, Relationship, RelationshipType

__all__ = [
    "ArtifactCreate",
    "ArtifactCreated",
    "ArtifactDeleted",
    "ArtifactFilter",
    "ArtifactRecord",
    "ArtifactStatus",
    "ArtifactUpdated",
    "BaseEvent",
    "BlobReclaimed",
    "BlobRecord",
    "BlobRef",
    "Content",
    "Direction",
    "EventType",
    "Handoff",
    "HandoffCreate",
    "HandoffCreated",
    "HandoffPriority",
    "HandoffState",
    "HandoffTransitioned",
    "LineageNode",
    "Provenance",
    "Relationship",
    "RelationshipCreated",
    "RelationshipDeleted",
    "RelationshipType",
    "RetentionClass",
    "UsageCounters",
    "VersionAppended",
    "VersionRecord",
    "Visibility",
]
