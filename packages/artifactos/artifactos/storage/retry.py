"""Retrying transactions — bounded attempts with exponential backoff."""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from typing import TypeVar

from artifactos.core.errors import ConflictError, StorageError
from artifactos.storage.database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_retry(
    db: Database,
    work: Callable[[sqlite3.Connection], T],
    *,
    description: str,
    max_attempts: int = 5,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``work`` as one transaction, retrying transient failures.

    ``StorageError`` is retried with exponential backoff. A lost race on a
    unique constraint (``sqlite3.IntegrityError``) is retried immediately:
    the winner's row is visible on the next attempt. Any other exception
    rolls back and propagates at once.

    Raises:
        StorageError: If every attempt failed on the storage layer.
        ConflictError: If every attempt lost a uniqueness race.
    """
    last_exc: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            with db.transaction() as conn:
                return work(conn)
        except sqlite3.IntegrityError as exc:
            last_exc = exc
            logger.debug("%s lost a uniqueness race (attempt %d)", description, attempt)
        except StorageError as exc:
            last_exc = exc
            if attempt < max_attempts:
                delay = backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.3fs",
                    description, attempt, max_attempts, exc, delay,
                )
                sleep(delay)

    if isinstance(last_exc, sqlite3.IntegrityError):
        raise ConflictError(
            f"{description}: unresolved conflict after {max_attempts} attempts"
        ) from last_exc
    raise StorageError(
        f"{description}: failed after {max_attempts} attempts: {last_exc}"
    ) from last_exc
