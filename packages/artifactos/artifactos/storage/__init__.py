"""ArtifactOS storage — metadata database, object stores, and the blob store."""

from artifactos.storage.blob_store import BlobStore
from artifactos.storage.database import Database
from artifactos.storage.object_store import (
    FilesystemObjectStore,
    InMemoryObjectStore,
    ObjectStore,
)

__all__ = [
    "BlobStore",
    "Database",
    "FilesystemObjectStore",
    "InMemoryObjectStore",
    "ObjectStore",
]
