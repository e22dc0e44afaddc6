"""Content addressing for resources."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

_READ_CHUNK = 1024 * 1024


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: Path | str) -> str | None:
    """
    Hash a file's raw bytes.

    A missing or unreadable file yields None. Callers must treat None as an
    unknown state, never as "unchanged".

    Args:
        path: File to hash

    Returns:
        SHA-256 hex digest, or None
    """
    path = Path(path)
    if not path.is_file():
        return None

    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
                digest.update(chunk)
    except OSError as e:
        logger.warning(f"Could not hash {path}: {e}")
        return None
    return digest.hexdigest()


def short_hash(digest: str | None, length: int = 7) -> str:
    """Shorten a digest for display."""
    if not digest:
        return "N/A"
    return digest[:length]


__all__ = ["hash_bytes", "hash_file", "short_hash"]
