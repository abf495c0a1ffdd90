"""Artifact and version schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from artifactos.core.identifiers import ArtifactId, BlobId, VersionId


class ArtifactStatus(StrEnum):
    """Artifact lifecycle statuses."""

    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    SUPERSEDED = "superseded"
    ARCHIVED = "archived"


class RetentionClass(StrEnum):
    """Retention classes; each maps to a default lifetime."""

    EPHEMERAL = "ephemeral"
    STANDARD = "standard"
    PERMANENT = "permanent"


class Visibility(StrEnum):
    PRIVATE = "private"
    TENANT = "tenant"
    PUBLIC = "public"


class Provenance(BaseModel):
    """Who and what produced an artifact. Opaque to the engine."""

    producer_id: str | None = None
    producer_role: str | None = None
    framework: str | None = None
    session_id: str | None = None
    task_id: str | None = None
    model: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class Content(BaseModel):
    """Raw bytes plus how they should be interpreted."""

    data: bytes
    media_type: str = "application/octet-stream"
    encoding: str | None = None
    token_count: int | None = Field(default=None, ge=0)


class ArtifactCreate(BaseModel):
    """Everything needed to create an artifact, minus its content."""

    tenant_id: str = Field(min_length=1)
    owner_id: str | None = None
    external_id: str | None = Field(
        default=None, description="Producer-supplied identifier, unique per tenant"
    )
    artifact_type: str = Field(min_length=1)
    title: str = ""
    summary: str = ""
    provenance: Provenance = Field(default_factory=Provenance)
    retention_class: RetentionClass = RetentionClass.STANDARD
    visibility: Visibility = Visibility.TENANT
    status: ArtifactStatus = ArtifactStatus.DRAFT
    expires_at: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None


class ArtifactRecord(BaseModel):
    """Persisted artifact metadata."""

    id: ArtifactId
    tenant_id: str
    owner_id: str | None = None
    external_id: str | None = None
    artifact_type: str
    title: str = ""
    summary: str = ""
    current_version_id: VersionId | None = None
    current_version: int = Field(default=0, ge=0, description="Number of the current version")
    version_count: int = Field(default=0, ge=0)
    provenance: Provenance = Field(default_factory=Provenance)
    retention_class: RetentionClass = RetentionClass.STANDARD
    visibility: Visibility = Visibility.TENANT
    status: ArtifactStatus = ArtifactStatus.DRAFT
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    tags: list[str] = Field(default_factory=list)


class VersionRecord(BaseModel):
    """An immutable snapshot of an artifact."""

    id: VersionId
    artifact_id: ArtifactId
    number: int = Field(ge=1)
    blob_id: BlobId
    sha256: str
    media_type: str
    encoding: str | None = None
    size_bytes: int = Field(ge=0)
    token_count: int | None = None
    change_summary: str | None = None
    created_by: str | None = None
    created_at: datetime


class ArtifactFilter(BaseModel):
    """Criteria for listing artifacts. Unset fields do not filter."""

    tenant_id: str | None = None
    session_id: str | None = None
    task_id: str | None = None
    producer_id: str | None = None
    artifact_type: str | None = None
    status: ArtifactStatus | None = None
    tag: str | None = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class UsageCounters(BaseModel):
    """Per-tenant storage usage."""

    tenant_id: str
    artifact_count: int = 0
    version_count: int = 0
    logical_bytes: int = Field(default=0, description="Sum of version sizes")
    stored_bytes: int = Field(default=0, description="Sum of distinct blob sizes")
