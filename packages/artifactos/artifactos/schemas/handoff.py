"""Handoff schemas — deadline-bound requests between producers."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from artifactos.core.identifiers import ArtifactId, HandoffId


class HandoffState(StrEnum):
    """Handoff lifecycle states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({HandoffState.COMPLETED, HandoffState.EXPIRED, HandoffState.CANCELLED})


class HandoffPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class HandoffCreate(BaseModel):
    artifact_id: ArtifactId
    version: int | None = Field(default=None, ge=1, description="Pinned version; None means current")
    target: str = Field(min_length=1, description="Target producer id or role")
    expects_response: bool = True
    deadline: datetime | None = None
    priority: HandoffPriority = HandoffPriority.NORMAL
    context: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None


class Handoff(BaseModel):
    """Persisted handoff with its current state."""

    id: HandoffId
    artifact_id: ArtifactId
    version: int | None = None
    target: str
    expects_response: bool = True
    deadline: datetime | None = None
    priority: HandoffPriority = HandoffPriority.NORMAL
    context: dict[str, Any] = Field(default_factory=dict)
    state: HandoffState = HandoffState.PENDING
    response_artifact_id: ArtifactId | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime
