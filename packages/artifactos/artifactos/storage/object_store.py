"""Object stores — where blob payloads physically live.

Payloads are keyed by their sha256 hash. Writes are idempotent (same key,
same bytes) and deletes of a missing key are a no-op, so both can be
retried freely.
"""

from __future__ import annotations

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path

from artifactos.core.errors import NotFoundError, StorageError
from artifactos.integrity.hashing import CHUNK_SIZE, sha256_chunks, sha256_hash


class ObjectStore(ABC):
    """Abstract interface for payload storage."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> str:
        """Durably store ``data`` under ``key`` and return its location."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the payload for ``key``. Raises NotFoundError if absent."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """True if a payload is stored under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the payload for ``key``. Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> Iterator[str]:
        """Iterate over every stored key."""

    def location(self, key: str) -> str:
        """Return a human-readable location for ``key``."""
        return key

    def digest(self, key: str) -> str:
        """SHA-256 of the stored payload. Raises NotFoundError if absent."""
        return sha256_hash(self.get(key))


class FilesystemObjectStore(ObjectStore):
    """Object store on the local filesystem.

    Payloads are stored in a two-level directory structure using the first
    two characters of the key as the prefix::

        <root>/ab/ab1234...

    Writes go to a temporary file in the same directory, are fsynced, and
    are renamed into place, so a reader never sees a partial payload.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        safe_key = Path(key).name
        return self._root / safe_key[:2] / safe_key

    def put(self, key: str, data: bytes) -> str:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to store payload '{key}': {exc}") from exc
        return str(path)

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"Payload '{key}' not found") from None
        except OSError as exc:
            raise StorageError(f"Failed to read payload '{key}': {exc}") from exc

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def digest(self, key: str) -> str:
        path = self._path_for(key)
        try:
            with path.open("rb") as f:
                return sha256_chunks(iter(lambda: f.read(CHUNK_SIZE), b""))
        except FileNotFoundError:
            raise NotFoundError(f"Payload '{key}' not found") from None
        except OSError as exc:
            raise StorageError(f"Failed to read payload '{key}': {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete payload '{key}': {exc}") from exc

    def keys(self) -> Iterator[str]:
        if not self._root.exists():
            return
        for path in self._root.glob("??/*"):
            if path.is_file() and not path.name.startswith(".tmp-"):
                yield path.name

    def location(self, key: str) -> str:
        return str(self._path_for(key))


class InMemoryObjectStore(ObjectStore):
    """Dict-backed object store for tests and ephemeral engines."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes) -> str:
        with self._lock:
            self._objects[key] = bytes(data)
        return self.location(key)

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._objects[key]
            except KeyError:
                raise NotFoundError(f"Payload '{key}' not found") from None

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def keys(self) -> Iterator[str]:
        with self._lock:
            snapshot = list(self._objects)
        yield from snapshot

    def location(self, key: str) -> str:
        return f"memory://{key}"
