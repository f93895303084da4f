"""
Working tree handle.

The build root is never taken from the process working directory: every
operation receives a WorkingTree explicitly, so independent roots can be
handled side by side.
"""

import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

MODE_FILE = 0o100644
MODE_EXECUTABLE = 0o100755
MODE_SYMLINK = 0o120000


def normalize_mode(st_mode: int) -> int:
    """Collapse a stat mode to the three modes a difference can express."""
    if stat.S_ISLNK(st_mode):
        return MODE_SYMLINK
    if st_mode & stat.S_IXUSR:
        return MODE_EXECUTABLE
    return MODE_FILE


@dataclass(frozen=True)
class TreeEntry:
    """
    Metadata of one file or symlink in a tree.

    Fields:
        path: POSIX path relative to the tree root
        mode: Normalized mode (MODE_FILE, MODE_EXECUTABLE or MODE_SYMLINK)
        size: Size in bytes (link target length for symlinks)
        mtime_ns: Modification time in nanoseconds
    """
    path: str
    mode: int
    size: int
    mtime_ns: int

    @property
    def is_symlink(self) -> bool:
        return self.mode == MODE_SYMLINK


class WorkingTree:
    """
    Mutable build root under exclusive use of one build invocation.

    Regular files and symlinks are tracked as entries. Directories exist
    as parents of entries, except empty ones, which are listed separately
    by iter_empty_dirs().
    """

    def __init__(self, root: str, create: bool = False):
        self.root = Path(root).absolute()
        if create:
            self.root.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return f"WorkingTree({str(self.root)!r})"

    def exists(self) -> bool:
        return self.root.is_dir()

    def path(self, rel: str) -> Path:
        """
        Resolve a relative path inside the tree.

        Symlinks are not followed, so a link pointing outside the tree can
        still be read or replaced.

        Raises:
            PermissionError: If the path escapes the tree
        """
        joined = os.path.normpath(os.path.join(str(self.root), rel))
        root = str(self.root)
        if joined != root and not joined.startswith(root + os.sep):
            raise PermissionError(f"Path escapes working tree: {rel}")
        return Path(joined)

    def iter_files(self, exclude: Iterable[str] = ()) -> List[str]:
        """
        List every file and symlink below the root.

        Args:
            exclude: Relative paths to leave out

        Returns:
            Sorted POSIX paths relative to the root
        """
        skip = set(exclude)
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root, followlinks=False):
            rel_dir = os.path.relpath(dirpath, self.root)
            prefix = "" if rel_dir == "." else rel_dir.replace(os.sep, "/") + "/"

            # Symlinked directories are entries, not something to descend into
            linked = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
            dirnames[:] = sorted(d for d in dirnames if d not in linked)

            for name in list(filenames) + linked:
                rel = prefix + name
                if rel not in skip:
                    found.append(rel)
        found.sort()
        return found

    def iter_empty_dirs(self, exclude: Iterable[str] = ()) -> List[str]:
        """
        List directories below the root that have no children at all.

        An excluded path also hides everything below it.

        Returns:
            Sorted POSIX paths relative to the root
        """
        skip = set(exclude)
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root, followlinks=False):
            rel_dir = os.path.relpath(dirpath, self.root)
            if rel_dir == ".":
                continue
            rel = rel_dir.replace(os.sep, "/")
            if rel in skip:
                dirnames[:] = []
                continue
            if not dirnames and not filenames:
                found.append(rel)
        found.sort()
        return found

    def make_dir(self, rel: str) -> None:
        """Create a directory and its parents; an existing one is kept."""
        self.path(rel).mkdir(parents=True, exist_ok=True)

    def entry(self, rel: str) -> TreeEntry:
        """Stat one entry without following symlinks."""
        st = os.lstat(self.path(rel))
        return TreeEntry(path=rel, mode=normalize_mode(st.st_mode), size=st.st_size, mtime_ns=st.st_mtime_ns)

    def lookup(self, rel: str) -> Optional[TreeEntry]:
        """
        Like entry() but returns None for missing paths and directories.

        A path below a regular file counts as missing.
        """
        try:
            st = os.lstat(self.path(rel))
        except (FileNotFoundError, NotADirectoryError):
            return None
        if stat.S_ISDIR(st.st_mode):
            return None
        return TreeEntry(path=rel, mode=normalize_mode(st.st_mode), size=st.st_size, mtime_ns=st.st_mtime_ns)

    def read(self, rel: str) -> bytes:
        """Read file content, or the link target for symlinks."""
        p = self.path(rel)
        if os.path.islink(p):
            return os.fsencode(os.readlink(p))
        return p.read_bytes()

    def write(self, rel: str, data: bytes, mode: int = MODE_FILE, mtime_ns: Optional[int] = None) -> None:
        """
        Create or replace one entry.

        Regular files are always left user-writable. When mtime_ns is None
        the entry keeps the fresh time stamped by the write.
        """
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        if os.path.lexists(p) and (os.path.islink(p) or mode == MODE_SYMLINK or p.is_dir()):
            self.remove(rel)

        if mode == MODE_SYMLINK:
            os.symlink(os.fsdecode(data), p)
        else:
            if p.exists():
                os.chmod(p, stat.S_IMODE(os.stat(p).st_mode) | stat.S_IWUSR)
            with open(p, "wb") as f:
                f.write(data)
            os.chmod(p, 0o755 if mode == MODE_EXECUTABLE else 0o644)

        if mtime_ns is not None:
            self.set_mtime(rel, mtime_ns)

    def set_mtime(self, rel: str, mtime_ns: int) -> None:
        p = self.path(rel)
        if os.path.islink(p):
            if os.utime not in os.supports_follow_symlinks:
                return
            os.utime(p, ns=(mtime_ns, mtime_ns), follow_symlinks=False)
        else:
            os.utime(p, ns=(mtime_ns, mtime_ns))

    def remove(self, rel: str) -> None:
        p = self.path(rel)
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p)
        else:
            os.unlink(p)

    def prune_empty_parents(self, rel: str) -> None:
        """Remove directories left empty above a deleted entry, up to the root."""
        parent = self.path(rel).parent
        while parent != self.root:
            try:
                parent.rmdir()
            except OSError:
                return
            parent = parent.parent

    def clear(self, keep: Iterable[str] = ()) -> int:
        """
        Delete everything under the root except the named top-level entries.

        Returns:
            Number of top-level entries removed
        """
        kept = set(keep)
        removed = 0
        for child in sorted(os.listdir(self.root)):
            if child in kept:
                continue
            p = self.root / child
            if p.is_dir() and not p.is_symlink():
                shutil.rmtree(p)
            else:
                os.unlink(p)
            removed += 1
        return removed

