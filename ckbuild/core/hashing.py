"""
Content digests for snapshot entries.

Provides deterministic SHA-256 identifiers for file contents without
relying on timestamps or paths.
"""

import hashlib
import os

ZERO_DIGEST = "0" * 64

CHUNK_SIZE = 1024 * 1024


def digest_bytes(data: bytes) -> str:
    """
    SHA-256 of raw bytes.

    Returns:
        Hex string (64 characters)
    """
    return hashlib.sha256(data).hexdigest()


def file_digest(path: str) -> str:
    """
    SHA-256 of a file entry.

    Symlinks are hashed by their target string, never followed, so a
    dangling link still has a stable digest.
    """
    if os.path.islink(path):
        return digest_bytes(os.fsencode(os.readlink(path)))

    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()
