"""
Content-addressed artifact store.

Layout under the store root:
- objects/{digest[:2]}/{digest}: file contents keyed by SHA-256
- artifacts/{name}.json: ArtifactManifest (canonical JSON)

Identical files are stored once no matter how many artifacts reference
them; gc() drops objects no manifest references any more.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from pydantic import ValidationError

from ..core.errors import CaptureError, ReconciliationError
from ..core.hashing import digest_bytes, file_digest
from ..core.tree import WorkingTree
from .manifest import ArtifactManifest, ManifestEntry, SnapshotManifest
from .model import OUTPUTS_DIR, SOURCES_DIR, CheckpointArtifact
from .snapshot import ManifestSnapshot, Snapshot

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_name(name: str) -> str:
    if not _NAME_RE.match(name):
        raise ValueError(f"Invalid artifact name: {name!r}")
    return name


class ObjectStore:
    """
    Files keyed by the SHA-256 of their content.

    Objects are written to a temporary file and renamed into place, so a
    reader never sees a partial object.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path(self, digest: str) -> Path:
        return self.directory / digest[:2] / digest

    def exists(self, digest: str) -> bool:
        return self.path(digest).is_file()

    def put_bytes(self, data: bytes) -> str:
        digest = digest_bytes(data)
        if not self.exists(digest):
            self._commit(digest, data)
        return digest

    def put_file(self, source: str) -> str:
        """Store a file (or a symlink's target string) and return its digest."""
        if os.path.islink(source):
            return self.put_bytes(os.fsencode(os.readlink(source)))

        digest = file_digest(source)
        if self.exists(digest):
            return digest
        with open(source, "rb") as f:
            self._commit(digest, f.read())
        return digest

    def _commit(self, digest: str, data: bytes) -> None:
        target = self.path(digest)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def read(self, digest: str) -> bytes:
        """
        Read an object and check it against its digest.

        Raises:
            ReconciliationError: If the object is missing or corrupt
        """
        try:
            data = self.path(digest).read_bytes()
        except FileNotFoundError:
            raise ReconciliationError(f"Object {digest} is missing from the store") from None
        if digest_bytes(data) != digest:
            raise ReconciliationError(f"Object {digest} is corrupt")
        return data

    def is_intact(self, digest: str) -> bool:
        p = self.path(digest)
        return p.is_file() and file_digest(str(p)) == digest

    def iter_digests(self) -> Iterator[str]:
        for sub in sorted(self.directory.iterdir()):
            if not sub.is_dir():
                continue
            for obj in sorted(sub.iterdir()):
                if not obj.name.startswith(".tmp-"):
                    yield obj.name

    def remove(self, digest: str) -> None:
        os.remove(self.path(digest))


@dataclass
class StoreVerification:
    """
    Result of verifying a stored artifact.

    Fields:
        valid: Every referenced object is present and intact
        checked: Number of distinct objects checked
        missing: Digests with no object
        corrupt: Digests whose object content does not hash to the digest
    """
    valid: bool
    checked: int = 0
    missing: List[str] = field(default_factory=list)
    corrupt: List[str] = field(default_factory=list)


class ArtifactStore:
    """
    Manage checkpoint artifacts in a content-addressed store.

    Artifacts are immutable: saving a name twice is refused.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.objects = ObjectStore(str(self.directory / "objects"))
        self.artifacts_dir = self.directory / "artifacts"
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)

    def manifest_path(self, name: str) -> Path:
        return self.artifacts_dir / f"{validate_name(name)}.json"

    def exists(self, name: str) -> bool:
        return self.manifest_path(name).is_file()

    def snapshot_tree(self, tree: WorkingTree, exclude: Iterable[str] = ()) -> SnapshotManifest:
        """Store every file of a tree and describe it, empty directories included."""
        entries = {}
        for rel in tree.iter_files(exclude=exclude):
            entry = tree.entry(rel)
            digest = self.objects.put_file(str(tree.path(rel)))
            entries[rel] = ManifestEntry(digest=digest, mode=entry.mode, size=entry.size, mtime_ns=entry.mtime_ns)
        return SnapshotManifest(entries=entries, directories=tree.iter_empty_dirs(exclude=exclude))

    def snapshot_of(self, snapshot: Snapshot) -> SnapshotManifest:
        """Store every entry of another snapshot."""
        entries = {}
        for entry in snapshot.entries():
            digest = self.objects.put_bytes(snapshot.read(entry.path))
            entries[entry.path] = ManifestEntry(
                digest=digest, mode=entry.mode, size=entry.size, mtime_ns=entry.mtime_ns
            )
        return SnapshotManifest(entries=entries, directories=snapshot.directories())

    def save(self, manifest: ArtifactManifest) -> str:
        """
        Write an artifact manifest.

        Returns:
            Path to the manifest file

        Raises:
            CaptureError: If an artifact with this name already exists
        """
        path = self.manifest_path(manifest.name)
        if path.exists():
            raise CaptureError(f"Artifact {manifest.name} already exists in {self.directory}")

        fd, tmp = tempfile.mkstemp(dir=str(self.artifacts_dir), prefix=".tmp-")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(manifest.to_json())
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        return str(path)

    def load_manifest(self, name: str) -> ArtifactManifest:
        """
        Raises:
            ReconciliationError: If the manifest is missing or invalid
        """
        path = self.manifest_path(name)
        try:
            return ArtifactManifest.from_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ReconciliationError(f"Artifact {name} not found in {self.directory}") from None
        except ValidationError as e:
            raise ReconciliationError(f"Artifact {name} has an invalid manifest: {e}") from e

    def open(self, name: str) -> CheckpointArtifact:
        manifest = self.load_manifest(name)
        return CheckpointArtifact(
            name=manifest.name,
            location=str(self.directory),
            sources=ManifestSnapshot(manifest.sources, self.objects),
            outputs=ManifestSnapshot(manifest.outputs, self.objects),
            meta=manifest.meta,
        )

    def list_artifacts(self) -> List[str]:
        """Artifact names, sorted."""
        return sorted(p.stem for p in self.artifacts_dir.glob("*.json"))

    def delete(self, name: str) -> None:
        """Delete a manifest. Its objects stay until gc()."""
        path = self.manifest_path(name)
        if not path.exists():
            raise ReconciliationError(f"Artifact {name} not found in {self.directory}")
        os.remove(path)

    def gc(self) -> int:
        """
        Remove objects no artifact references.

        Returns:
            Number of objects removed
        """
        referenced = set()
        for name in self.list_artifacts():
            referenced |= self.load_manifest(name).digests()

        removed = 0
        for digest in list(self.objects.iter_digests()):
            if digest not in referenced:
                self.objects.remove(digest)
                removed += 1
        logger.info(f"Garbage collection removed {removed} objects")
        return removed

    def verify(self, name: str) -> StoreVerification:
        """Re-hash every object an artifact references."""
        manifest = self.load_manifest(name)
        result = StoreVerification(valid=True)
        for digest in sorted(manifest.digests()):
            result.checked += 1
            if not self.objects.path(digest).is_file():
                result.missing.append(digest)
            elif not self.objects.is_intact(digest):
                result.corrupt.append(digest)
        result.valid = not result.missing and not result.corrupt
        return result

    def import_directory(self, name: str, path: str, meta: Optional[dict] = None) -> str:
        """Copy a directory artifact into the store."""
        artifact = CheckpointArtifact.open_directory(path)
        manifest = ArtifactManifest(
            name=validate_name(name),
            sources=self.snapshot_of(artifact.sources),
            outputs=self.snapshot_of(artifact.outputs),
            meta=meta or {"imported_from": artifact.location},
        )
        return self.save(manifest)

    def export(self, name: str, dest: str, workers: int = 1) -> CheckpointArtifact:
        """
        Materialize a stored artifact as a directory artifact.

        Raises:
            ReconciliationError: If dest exists and is not empty
        """
        root = Path(dest)
        if root.exists() and any(root.iterdir()):
            raise ReconciliationError(f"Export destination is not empty: {root}")

        artifact = self.open(name)
        artifact.sources.restore_into(WorkingTree(str(root / SOURCES_DIR), create=True), workers=workers)
        artifact.outputs.restore_into(WorkingTree(str(root / OUTPUTS_DIR), create=True), workers=workers)
        return CheckpointArtifact.open_directory(str(root))
