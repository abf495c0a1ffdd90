"""Event schemas for the append-only write-event log."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from artifactos.core.clock import utc_now


class EventType(StrEnum):
    """All recognized event types."""

    ARTIFACT_CREATED = "ArtifactCreated"
    VERSION_APPENDED = "VersionAppended"
    ARTIFACT_UPDATED = "ArtifactUpdated"
    ARTIFACT_DELETED = "ArtifactDeleted"
    RELATIONSHIP_CREATED = "RelationshipCreated"
    RELATIONSHIP_DELETED = "RelationshipDeleted"
    HANDOFF_CREATED = "HandoffCreated"
    HANDOFF_TRANSITIONED = "HandoffTransitioned"
    BLOB_RECLAIMED = "BlobReclaimed"


class BaseEvent(BaseModel):
    """Base schema for all events in the event log.

    ``seq`` is assigned by the log on append; the value passed in is ignored.
    """

    seq: int = Field(default=0, ge=0, description="Global sequence number")
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: EventType
    artifact_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class ArtifactCreated(BaseEvent):
    """Emitted when an artifact and its first version are committed."""

    event_type: EventType = EventType.ARTIFACT_CREATED


class VersionAppended(BaseEvent):
    event_type: EventType = EventType.VERSION_APPENDED


class ArtifactUpdated(BaseEvent):
    """Emitted on metadata-only changes."""

    event_type: EventType = EventType.ARTIFACT_UPDATED


class ArtifactDeleted(BaseEvent):
    event_type: EventType = EventType.ARTIFACT_DELETED


class RelationshipCreated(BaseEvent):
    event_type: EventType = EventType.RELATIONSHIP_CREATED


class RelationshipDeleted(BaseEvent):
    event_type: EventType = EventType.RELATIONSHIP_DELETED


class HandoffCreated(BaseEvent):
    event_type: EventType = EventType.HANDOFF_CREATED


class HandoffTransitioned(BaseEvent):
    """Emitted on every handoff state change, including expiry."""

    event_type: EventType = EventType.HANDOFF_TRANSITIONED


class BlobReclaimed(BaseEvent):
    """Emitted when a zero-reference blob is physically removed."""

    event_type: EventType = EventType.BLOB_RECLAIMED
