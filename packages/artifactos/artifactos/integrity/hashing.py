"""Content hashing — the digests blobs are addressed by.

A blob is identified by the lowercase hex SHA-256 of its raw bytes, which
is also its storage key. Free-form JSON payloads (relationship contexts)
are stored in canonical form so equal payloads compare equal as text.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

DIGEST_HEX_LENGTH = 64
CHUNK_SIZE = 64 * 1024

_HEX_DIGITS = frozenset("0123456789abcdef")


def sha256_hash(data: str | bytes) -> str:
    """Hex SHA-256 of ``data``. Text is hashed as UTF-8."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def sha256_chunks(chunks: Iterable[bytes]) -> str:
    """Hex SHA-256 of a payload read in pieces."""
    digest = hashlib.sha256()
    for chunk in chunks:
        digest.update(chunk)
    return digest.hexdigest()


def is_sha256_hex(value: str) -> bool:
    return len(value) == DIGEST_HEX_LENGTH and set(value) <= _HEX_DIGITS


def canonical_json(data: Any) -> str:
    """Serialize with sorted keys and no whitespace.

    Accepts dicts, lists, Pydantic models, or any JSON-serializable value.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
