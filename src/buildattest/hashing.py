"""Content hashing helpers."""

from __future__ import annotations

import hashlib
from pathlib import Path

CHUNK_SIZE = 65536


def hash_file(path: Path) -> str:
    """Compute the SHA-256 of a file.

    Args:
        path: Path to file (symlinks are followed)

    Returns:
        Lowercase hex digest of file content
    """
    hasher = hashlib.sha256()

    # Read in chunks to handle large artifacts
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)

    return hasher.hexdigest()


def hash_content(content: bytes | str) -> str:
    """Compute the SHA-256 of in-memory content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()
