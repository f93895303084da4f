"""
Snapshot manifests for the content-addressed artifact store.

A manifest maps relative paths to object digests plus the metadata a
restore needs (mode, size, modification time). Serialized through
canonical JSON so the same snapshot always gives the same bytes.
"""

from typing import Any, Dict, List, Set

from pydantic import BaseModel, Field, field_validator

from ..core.canonical import canonical_json_str
from ..core.tree import MODE_EXECUTABLE, MODE_FILE, MODE_SYMLINK

MANIFEST_VERSION = 1


class ManifestEntry(BaseModel):
    digest: str = Field(pattern=r"^[0-9a-f]{64}$")
    mode: int
    size: int = Field(ge=0)
    mtime_ns: int

    @field_validator("mode")
    @classmethod
    def _known_mode(cls, v: int) -> int:
        if v not in (MODE_FILE, MODE_EXECUTABLE, MODE_SYMLINK):
            raise ValueError(f"unsupported file mode {v:o}")
        return v


def _check_relative(path: str) -> None:
    parts = path.split("/")
    if path.startswith("/") or any(p in ("", ".", "..") for p in parts):
        raise ValueError(f"manifest path must be relative and normalized: {path!r}")


class SnapshotManifest(BaseModel):
    """
    Path -> entry mapping for one snapshot (sources or outputs).

    Empty directories have no content to store and are listed by path
    in directories.
    """

    entries: Dict[str, ManifestEntry] = Field(default_factory=dict)
    directories: List[str] = Field(default_factory=list)

    @field_validator("entries")
    @classmethod
    def _relative_paths(cls, v: Dict[str, ManifestEntry]) -> Dict[str, ManifestEntry]:
        for path in v:
            _check_relative(path)
        return v

    @field_validator("directories")
    @classmethod
    def _relative_dirs(cls, v: List[str]) -> List[str]:
        for path in v:
            _check_relative(path)
        return sorted(set(v))

    def digests(self) -> Set[str]:
        return {e.digest for e in self.entries.values()}

    def total_size(self) -> int:
        return sum(e.size for e in self.entries.values())


class ArtifactManifest(BaseModel):
    """
    Stored checkpoint artifact.

    Fields:
        version: Format version (currently 1)
        name: Artifact name, unique within a store
        sources: Snapshot taken before compilation
        outputs: Snapshot taken after compilation
        meta: Free-form metadata (preserve-unknown)
    """

    version: int = MANIFEST_VERSION
    name: str
    sources: SnapshotManifest
    outputs: SnapshotManifest
    meta: Dict[str, Any] = Field(default_factory=dict)

    def digests(self) -> Set[str]:
        return self.sources.digests() | self.outputs.digests()

    def to_json(self) -> str:
        return canonical_json_str(self.model_dump())

    @classmethod
    def from_json(cls, json_str: str) -> "ArtifactManifest":
        return cls.model_validate_json(json_str)
