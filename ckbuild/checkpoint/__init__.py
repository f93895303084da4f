"""
Checkpoint artifacts: capture, storage and snapshots.

Provides:
- CheckpointArtifact: immutable sources/outputs snapshot pair
- Snapshot backends: DirectorySnapshot, ManifestSnapshot
- SnapshotCapture with DirectoryTarget and StoreTarget
- ArtifactStore: content-addressed storage with gc and verification
"""

from .model import CheckpointArtifact, SOURCES_DIR, OUTPUTS_DIR
from .snapshot import Snapshot, DirectorySnapshot, ManifestSnapshot, RestoreStats
from .manifest import ArtifactManifest, SnapshotManifest, ManifestEntry
from .store import ArtifactStore, ObjectStore, StoreVerification
from .capture import SnapshotCapture, CaptureTarget, DirectoryTarget, StoreTarget, copy_tree

__all__ = [
    "CheckpointArtifact",
    "SOURCES_DIR",
    "OUTPUTS_DIR",
    "Snapshot",
    "DirectorySnapshot",
    "ManifestSnapshot",
    "RestoreStats",
    "ArtifactManifest",
    "SnapshotManifest",
    "ManifestEntry",
    "ArtifactStore",
    "ObjectStore",
    "StoreVerification",
    "SnapshotCapture",
    "CaptureTarget",
    "DirectoryTarget",
    "StoreTarget",
    "copy_tree",
]
