"""
Snapshots: read-only views of a build root at one point in time.

Two backends share the Snapshot interface:
- DirectorySnapshot: a literal recursive copy on disk
- ManifestSnapshot: a manifest over a content-addressed object store

Restoring a snapshot into a tree follows checksum resync semantics:
entries whose content is already in place are not rewritten, and every
restored entry gets the snapshot's recorded modification time so build
tools see it as already built. Empty directories are recreated as well.
"""

import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from ..core.errors import ReconciliationError
from ..core.hashing import file_digest
from ..core.tree import TreeEntry, WorkingTree
from .manifest import SnapshotManifest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoreStats:
    """
    Result of restoring a snapshot.

    Fields:
        restored: Entries whose content was written
        preserved: Entries whose content was already in place
    """
    restored: int
    preserved: int

    @property
    def total(self) -> int:
        return self.restored + self.preserved


class Snapshot(ABC):
    """
    Read-only view of a build root.

    Implementations never modify their backing storage.
    """

    @abstractmethod
    def entries(self) -> List[TreeEntry]:
        """All files and symlinks, sorted by path."""
        ...

    @abstractmethod
    def read(self, rel: str) -> bytes:
        """Content of one entry (link target for symlinks)."""
        ...

    @abstractmethod
    def digest(self, rel: str) -> str:
        """SHA-256 of one entry's content."""
        ...

    @abstractmethod
    def directories(self) -> List[str]:
        """Empty directories, sorted by path."""
        ...

    def restore_into(self, tree: WorkingTree, exclude: Iterable[str] = (), workers: int = 1) -> RestoreStats:
        """
        Copy the snapshot into a tree.

        Args:
            tree: Destination tree (usually just cleared)
            exclude: Paths that must not be overwritten
            workers: Threads used for copying

        Returns:
            RestoreStats

        Raises:
            ReconciliationError: If the snapshot is unreadable, collides with
                an excluded path, or a write fails
        """
        protected = set(exclude)
        try:
            entries = self.entries()
            directories = self.directories()
        except OSError as e:
            raise ReconciliationError(f"Cannot list snapshot: {e}") from e

        for path in [entry.path for entry in entries] + directories:
            if path in protected:
                raise ReconciliationError(f"Snapshot contains reserved path {path}")

        tree.root.mkdir(parents=True, exist_ok=True)
        for rel in directories:
            try:
                tree.make_dir(rel)
            except OSError as e:
                raise ReconciliationError(f"Cannot restore directory {rel}: {e}") from e

        def restore_one(entry: TreeEntry) -> bool:
            try:
                current = tree.lookup(entry.path)
                if (
                    current is not None
                    and current.mode == entry.mode
                    and file_digest(str(tree.path(entry.path))) == self.digest(entry.path)
                ):
                    tree.set_mtime(entry.path, entry.mtime_ns)
                    return False
                tree.write(entry.path, self.read(entry.path), mode=entry.mode, mtime_ns=entry.mtime_ns)
                return True
            except OSError as e:
                raise ReconciliationError(f"Cannot restore {entry.path}: {e}") from e

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                written = list(pool.map(restore_one, entries))
        else:
            written = [restore_one(entry) for entry in entries]

        restored = sum(1 for w in written if w)
        return RestoreStats(restored=restored, preserved=len(written) - restored)


class DirectorySnapshot(Snapshot):
    """Snapshot stored as a plain directory tree."""

    def __init__(self, root: str):
        self.tree = WorkingTree(root)
        self._entries: Optional[List[TreeEntry]] = None

    def __repr__(self) -> str:
        return f"DirectorySnapshot({str(self.tree.root)!r})"

    @property
    def root(self) -> Path:
        return self.tree.root

    def entries(self) -> List[TreeEntry]:
        if self._entries is None:
            if not self.tree.exists():
                raise ReconciliationError(f"Snapshot directory is missing: {self.tree.root}")
            self._entries = [self.tree.entry(p) for p in self.tree.iter_files()]
        return self._entries

    def directories(self) -> List[str]:
        if not self.tree.exists():
            raise ReconciliationError(f"Snapshot directory is missing: {self.tree.root}")
        return self.tree.iter_empty_dirs()

    def read(self, rel: str) -> bytes:
        return self.tree.read(rel)

    def digest(self, rel: str) -> str:
        return file_digest(str(self.tree.path(rel)))


class ManifestSnapshot(Snapshot):
    """Snapshot described by a manifest over an ObjectStore."""

    def __init__(self, manifest: SnapshotManifest, objects):
        self.manifest = manifest
        self.objects = objects

    def entries(self) -> List[TreeEntry]:
        return [
            TreeEntry(path=path, mode=e.mode, size=e.size, mtime_ns=e.mtime_ns)
            for path, e in sorted(self.manifest.entries.items())
        ]

    def directories(self) -> List[str]:
        return list(self.manifest.directories)

    def read(self, rel: str) -> bytes:
        return self.objects.read(self._entry(rel).digest)

    def digest(self, rel: str) -> str:
        return self._entry(rel).digest

    def _entry(self, rel: str):
        try:
            return self.manifest.entries[rel]
        except KeyError:
            raise FileNotFoundError(os.fspath(rel)) from None
