"""Blob schemas — content-addressed payload records."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from artifactos.core.identifiers import BlobId


class BlobRef(BaseModel):
    """Handle returned by a blob put; identifies one stored payload."""

    id: BlobId
    sha256: str = Field(description="SHA-256 hex digest of the raw bytes")
    storage_key: str = Field(description="Key of the payload in the object store")
    size_bytes: int = Field(ge=0)
    media_type: str = "application/octet-stream"


class BlobRecord(BlobRef):
    """Full blob metadata row, including its reference count."""

    ref_count: int = Field(ge=0, description="Number of live versions referencing this blob")
    created_at: datetime

    def to_ref(self) -> BlobRef:
        return BlobRef(
            id=self.id,
            sha256=self.sha256,
            storage_key=self.storage_key,
            size_bytes=self.size_bytes,
            media_type=self.media_type,
        )
