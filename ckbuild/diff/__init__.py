"""
Source differences between a snapshot and a working tree.

Provides:
- SourceDifference/FileChange/Hunk model with unified-diff serialization
- compute_difference: snapshot vs tree comparison
- apply_difference: conflict-checked application onto a tree
"""

from .model import ADDED, DELETED, MODIFIED, FileChange, Hunk, SourceDifference
from .compute import compute_difference
from .apply import apply_difference

__all__ = [
    "ADDED",
    "DELETED",
    "MODIFIED",
    "FileChange",
    "Hunk",
    "SourceDifference",
    "compute_difference",
    "apply_difference",
]
