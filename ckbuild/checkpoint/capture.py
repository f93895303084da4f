"""
Snapshot capture around a build.

The full build root is copied twice: once after source preparation and
before compilation (sources), once after compilation (outputs). Generated
files are never filtered out, since many build tools compile in place.

A failed copy removes whatever was written for the artifact and aborts
the build: an incomplete artifact is worse than none.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..config import Settings
from ..core.errors import CaptureError
from ..core.tree import WorkingTree
from ..metrics import track_duration
from .manifest import ArtifactManifest, SnapshotManifest
from .model import OUTPUTS_DIR, SOURCES_DIR, CheckpointArtifact
from .store import ArtifactStore, validate_name

logger = logging.getLogger(__name__)


def copy_tree(tree: WorkingTree, dest: str, exclude: Iterable[str] = (), workers: int = 1) -> int:
    """
    Copy every file and symlink of a tree, keeping modes and mtimes.

    Empty directories are recreated; they do not count as entries.

    Returns:
        Number of entries copied
    """
    dest_root = Path(dest)
    dest_root.mkdir(parents=True, exist_ok=True)
    paths = tree.iter_files(exclude=exclude)
    for rel in tree.iter_empty_dirs(exclude=exclude):
        (dest_root / rel).mkdir(parents=True, exist_ok=True)

    def copy_one(rel: str) -> None:
        target = dest_root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(tree.path(rel), target, follow_symlinks=False)

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            list(pool.map(copy_one, paths))
    else:
        for rel in paths:
            copy_one(rel)
    return len(paths)


class CaptureTarget(ABC):
    """Where a capture writes its two snapshots."""

    name: str

    @abstractmethod
    def begin(self) -> None:
        """Claim the artifact location; fails if it is already taken."""
        ...

    @abstractmethod
    def write_snapshot(self, kind: str, tree: WorkingTree, exclude: List[str], workers: int) -> int:
        ...

    @abstractmethod
    def commit(self, meta: dict) -> CheckpointArtifact:
        ...

    @abstractmethod
    def abort(self) -> None:
        ...


class DirectoryTarget(CaptureTarget):
    """Artifact as a directory holding exactly sources/ and outputs/."""

    def __init__(self, path: str):
        self.path = Path(path).absolute()
        self.name = self.path.name
        self._created = False

    def begin(self) -> None:
        if self.path.exists() and any(self.path.iterdir()):
            raise CaptureError(f"Artifact directory is not empty: {self.path}")
        self._created = not self.path.exists()
        self.path.mkdir(parents=True, exist_ok=True)

    def write_snapshot(self, kind: str, tree: WorkingTree, exclude: List[str], workers: int) -> int:
        return copy_tree(tree, str(self.path / kind), exclude=exclude, workers=workers)

    def commit(self, meta: dict) -> CheckpointArtifact:
        return CheckpointArtifact.open_directory(str(self.path))

    def abort(self) -> None:
        if not self.path.exists():
            return
        if self._created:
            shutil.rmtree(self.path, ignore_errors=True)
        else:
            for sub in (SOURCES_DIR, OUTPUTS_DIR):
                shutil.rmtree(self.path / sub, ignore_errors=True)


class StoreTarget(CaptureTarget):
    """Artifact saved as a manifest in an ArtifactStore."""

    def __init__(self, store: ArtifactStore, name: str):
        self.store = store
        self.name = validate_name(name)
        self.manifests = {}
        self.committed = False

    def begin(self) -> None:
        if self.store.exists(self.name):
            raise CaptureError(f"Artifact {self.name} already exists in {self.store.directory}")

    def write_snapshot(self, kind: str, tree: WorkingTree, exclude: List[str], workers: int) -> int:
        manifest = self.store.snapshot_tree(tree, exclude=exclude)
        self.manifests[kind] = manifest
        return len(manifest.entries)

    def commit(self, meta: dict) -> CheckpointArtifact:
        self.store.save(
            ArtifactManifest(
                name=self.name,
                sources=self.manifests.get(SOURCES_DIR, SnapshotManifest()),
                outputs=self.manifests.get(OUTPUTS_DIR, SnapshotManifest()),
                meta=meta,
            )
        )
        self.committed = True
        return self.store.open(self.name)

    def abort(self) -> None:
        # Objects already written are unreferenced and go with the next gc()
        self.manifests = {}
        if self.committed:
            self.store.delete(self.name)
            self.committed = False


class SnapshotCapture:
    """
    Capture one build into a checkpoint artifact.

    Usage:
        capture = SnapshotCapture(DirectoryTarget("/artifacts/linux"))
        capture.capture_sources(tree)
        ...compile...
        artifact = capture.capture_outputs(tree)
    """

    def __init__(self, target: CaptureTarget, settings: Optional[Settings] = None):
        self.target = target
        self.settings = settings or Settings.from_env()
        self.pre_checkpoint_install: List[Callable[[WorkingTree], None]] = []
        self.post_checkpoint_install: List[Callable[[WorkingTree], None]] = []
        self.artifact: Optional[CheckpointArtifact] = None
        self._begun = False
        self._sources_taken = False

    def _exclude(self, tree: WorkingTree) -> List[str]:
        excluded = [self.settings.diff_name]
        # Never copy the artifact into itself when it lives inside the build root
        target_path = getattr(self.target, "path", None)
        if target_path is not None:
            try:
                rel = Path(target_path).relative_to(tree.root)
            except ValueError:
                return excluded
            excluded.append(rel.as_posix())
            prefix = rel.as_posix() + "/"
            excluded.extend(p for p in tree.iter_files() if p.startswith(prefix))
        return excluded

    def _write(self, kind: str, tree: WorkingTree) -> int:
        if not tree.exists():
            self.abort()
            raise CaptureError(f"Build root does not exist: {tree.root}")
        try:
            with track_duration("capture"):
                count = self.target.write_snapshot(kind, tree, self._exclude(tree), self.settings.copy_workers)
        except (OSError, shutil.Error) as e:
            self.abort()
            raise CaptureError(f"Copying {kind} snapshot of {tree.root} failed: {e}") from e
        logger.info(f"Captured {kind} snapshot: {count} files from {tree.root}")
        return count

    def capture_sources(self, tree: WorkingTree) -> int:
        """
        Snapshot the tree after source preparation, before compilation.

        Returns:
            Number of files captured
        """
        try:
            self.target.begin()
        except OSError as e:
            raise CaptureError(f"Cannot create artifact {self.target.name}: {e}") from e
        self._begun = True
        count = self._write(SOURCES_DIR, tree)
        self._sources_taken = True
        return count

    def capture_outputs(self, tree: WorkingTree, meta: Optional[dict] = None) -> CheckpointArtifact:
        """
        Snapshot the tree after compilation and seal the artifact.

        Raises:
            CaptureError: If the sources snapshot was not taken first or a
                copy fails
        """
        if not self._sources_taken:
            raise CaptureError("Outputs captured before sources")
        self._write(OUTPUTS_DIR, tree)
        try:
            artifact = self.target.commit(dict(meta or {}))
        except OSError as e:
            self.abort()
            raise CaptureError(f"Sealing artifact {self.target.name} failed: {e}") from e
        logger.info(f"Checkpoint artifact {artifact.name} ready at {artifact.location}")
        self.artifact = artifact
        return artifact

    def abort(self) -> None:
        """Discard everything this capture wrote. No-op before capture_sources."""
        if not self._begun:
            return
        logger.warning(f"Discarding incomplete artifact {self.target.name}")
        self.target.abort()
        self.artifact = None
        self._begun = False
        self._sources_taken = False

    def capture_build(
        self,
        tree: WorkingTree,
        build: Callable[[WorkingTree], None],
        meta: Optional[dict] = None,
    ) -> CheckpointArtifact:
        """
        Capture sources, run the build, capture outputs.

        A failing build discards the sources snapshot and re-raises.
        """
        self.capture_sources(tree)
        try:
            build(tree)
        except Exception:
            self.abort()
            raise
        return self.capture_outputs(tree, meta=meta)
