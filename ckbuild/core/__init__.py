"""
Core primitives for checkpointed builds.

This module provides:
- WorkingTree: Explicit handle on a build root
- Canonical: Deterministic manifest serialization
- Hashing: Content digests
- Errors: Failure taxonomy shared by every phase
"""

from .tree import WorkingTree, TreeEntry, MODE_FILE, MODE_EXECUTABLE, MODE_SYMLINK
from .canonical import canonicalize, canonical_json_bytes, canonical_json_str
from .hashing import ZERO_DIGEST, digest_bytes, file_digest
from .errors import (
    CheckpointBuildError,
    CaptureError,
    DiffComputationError,
    ReconciliationError,
    PatchConflictError,
    BuildCommandError,
)

__all__ = [
    "WorkingTree",
    "TreeEntry",
    "MODE_FILE",
    "MODE_EXECUTABLE",
    "MODE_SYMLINK",
    "canonicalize",
    "canonical_json_bytes",
    "canonical_json_str",
    "ZERO_DIGEST",
    "digest_bytes",
    "file_digest",
    "CheckpointBuildError",
    "CaptureError",
    "DiffComputationError",
    "ReconciliationError",
    "PatchConflictError",
    "BuildCommandError",
]
