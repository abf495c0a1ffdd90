"""Lineage schemas — typed edges between artifacts."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from artifactos.core.identifiers import ArtifactId, RelationshipId


class RelationshipType(StrEnum):
    DERIVED_FROM = "derived-from"
    SUPERSEDES = "supersedes"
    REFERENCES = "references"
    RESPONDS_TO = "responds-to"


class Direction(StrEnum):
    ANCESTORS = "ancestors"
    DESCENDANTS = "descendants"


class Relationship(BaseModel):
    """A directed edge from a parent artifact to a child artifact."""

    id: RelationshipId
    parent_id: ArtifactId
    child_id: ArtifactId
    type: RelationshipType
    parent_version: int | None = Field(default=None, ge=1)
    child_version: int | None = Field(default=None, ge=1)
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class LineageNode(BaseModel):
    """One step of a lineage traversal."""

    artifact_id: ArtifactId
    depth: int = Field(ge=1)
    via: Relationship
