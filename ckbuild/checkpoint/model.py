"""
Checkpoint artifact model.

An artifact pairs two snapshots of the same build invocation:
- sources: build root after source preparation, before compilation
- outputs: build root after compilation (sources + generated files)

Artifacts are immutable once captured and are only ever read by replays.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from ..core.errors import ReconciliationError
from .snapshot import DirectorySnapshot, Snapshot

SOURCES_DIR = "sources"
OUTPUTS_DIR = "outputs"


@dataclass(frozen=True)
class CheckpointArtifact:
    """
    Immutable pair of snapshots captured from one build.

    Fields:
        name: Caller-facing name (directory name or store key)
        location: Where the artifact lives (directory or store root)
        sources: Snapshot before compilation
        outputs: Snapshot after compilation
        meta: Optional metadata
    """
    name: str
    location: str
    sources: Snapshot
    outputs: Snapshot
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def open_directory(cls, path: str) -> "CheckpointArtifact":
        """
        Open a directory artifact (exactly sources/ and outputs/).

        Raises:
            ReconciliationError: If either snapshot directory is missing
        """
        root = Path(path).absolute()
        for sub in (SOURCES_DIR, OUTPUTS_DIR):
            if not (root / sub).is_dir():
                raise ReconciliationError(f"Checkpoint artifact {root} has no {sub}/ directory")

        return cls(
            name=root.name,
            location=str(root),
            sources=DirectorySnapshot(str(root / SOURCES_DIR)),
            outputs=DirectorySnapshot(str(root / OUTPUTS_DIR)),
        )
