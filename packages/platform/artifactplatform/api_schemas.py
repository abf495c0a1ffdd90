"""API request/response schemas for the ArtifactOS Platform server."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from artifactos.core.errors import RequestValidationError
from artifactos.schemas.artifact import (
    ArtifactRecord,
    ArtifactStatus,
    Content,
    Provenance,
    RetentionClass,
    VersionRecord,
    Visibility,
)
from artifactos.schemas.lineage import Direction, LineageNode, RelationshipType


# ── Requests ────────────────────────────────────────────────────────


class ContentIn(BaseModel):
    """Content as carried in JSON: text or base64 plus a media type."""

    data: str
    encoding: Literal["utf-8", "base64"] = "utf-8"
    media_type: str = "text/plain"
    token_count: int | None = Field(default=None, ge=0)

    def to_content(self) -> Content:
        if self.encoding == "base64":
            try:
                raw = base64.b64decode(self.data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise RequestValidationError(f"Content is not valid base64: {exc}") from exc
            return Content(data=raw, media_type=self.media_type, token_count=self.token_count)
        return Content(
            data=self.data.encode("utf-8"),
            media_type=self.media_type,
            encoding="utf-8",
            token_count=self.token_count,
        )


class LifecycleIn(BaseModel):
    retention_class: RetentionClass = RetentionClass.STANDARD
    visibility: Visibility = Visibility.TENANT
    status: ArtifactStatus = ArtifactStatus.DRAFT
    expires_at: datetime | None = None


class CreateArtifactRequest(BaseModel):
    """Request body for POST /artifacts."""

    tenant_id: str = Field(min_length=1)
    owner_id: str | None = None
    external_id: str | None = None
    artifact_type: str = Field(min_length=1)
    title: str = ""
    summary: str = ""
    content: ContentIn
    provenance: Provenance = Field(default_factory=Provenance)
    lifecycle: LifecycleIn = Field(default_factory=LifecycleIn)
    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None


class AppendVersionRequest(BaseModel):
    """Request body for POST /artifacts/{id}/versions."""

    content: ContentIn
    change_summary: str | None = None
    created_by: str | None = None


class UpdateArtifactRequest(BaseModel):
    """Request body for PATCH /artifacts/{id}. Only provided fields change."""

    title: str | None = None
    summary: str | None = None
    status: ArtifactStatus | None = None
    tags: list[str] | None = None


class CreateRelationshipRequest(BaseModel):
    """Request body for POST /relationships."""

    parent_id: str
    child_id: str
    type: RelationshipType
    parent_version: int | None = Field(default=None, ge=1)
    child_version: int | None = Field(default=None, ge=1)
    context: dict[str, Any] = Field(default_factory=dict)


class CompleteHandoffRequest(BaseModel):
    """Request body for POST /handoffs/{id}/complete."""

    response_artifact_id: str


# ── Responses ───────────────────────────────────────────────────────


class CreateArtifactResponse(BaseModel):
    artifact_id: str
    version_id: str
    version: int
    url: str
    created_at: datetime
    expires_at: datetime | None = None


class AppendVersionResponse(BaseModel):
    artifact_id: str
    version_id: str
    version: int
    blob_id: str
    sha256: str


class ArtifactDetailResponse(BaseModel):
    """Artifact metadata plus its resolved current version."""

    artifact: ArtifactRecord
    url: str
    current_version: VersionRecord | None = None
    blob_location: str | None = None


class RelationshipCreatedResponse(BaseModel):
    relationship_id: str


class LineageResponse(BaseModel):
    artifact_id: str
    direction: Direction
    depth: int
    nodes: list[LineageNode]


class HandoffCreatedResponse(BaseModel):
    handoff_id: str
    state: str


class EventResponse(BaseModel):
    """A single event from the write-event log."""

    seq: int
    timestamp: str
    event_type: str
    artifact_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
