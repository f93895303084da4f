"""
Apply a source difference to a working tree.

Every change is checked against the tree before anything is written, so a
conflicting difference leaves the tree untouched instead of half patched.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from ..core.errors import PatchConflictError, ReconciliationError
from ..core.hashing import digest_bytes
from ..core.tree import MODE_FILE, WorkingTree
from .model import ADDED, DELETED, FileChange, Hunk, SourceDifference, split_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Planned:
    path: str
    data: Optional[bytes]  # None means delete
    mode: Optional[int] = None


def apply_hunks(path: str, old: bytes, hunks: Sequence[Hunk]) -> bytes:
    """
    Apply text hunks to baseline content.

    No fuzz and no offset search: context and removed lines must match
    the baseline exactly where the hunk header says.

    Raises:
        PatchConflictError: If the baseline does not match
    """
    try:
        lines = [line.decode("utf-8") for line in split_lines(old)]
    except UnicodeDecodeError:
        raise PatchConflictError(path, "text hunks against binary content") from None

    out: List[str] = []
    pos = 0
    for hunk in hunks:
        start = hunk.old_start - 1 if hunk.old_count > 0 else hunk.old_start
        if start < pos or start > len(lines):
            raise PatchConflictError(path, f"hunk {hunk.header()} out of range")
        out.extend(lines[pos:start])
        pos = start

        for tag, text in hunk.lines:
            if tag == "+":
                out.append(text)
                continue
            if pos >= len(lines) or lines[pos] != text:
                raise PatchConflictError(path, f"hunk {hunk.header()} does not match line {pos + 1}")
            if tag == " ":
                out.append(text)
            pos += 1

    out.extend(lines[pos:])
    return "".join(out).encode("utf-8")


def _check_room(path: str, tree: WorkingTree, deleting: Set[str]) -> None:
    """Make sure an added path will be free once the deletions are done."""
    parts = path.split("/")
    for i in range(1, len(parts)):
        parent = "/".join(parts[:i])
        if tree.lookup(parent) is None:
            continue
        if parent not in deleting:
            raise PatchConflictError(path, f"{parent} is not a directory")
        # Nothing can exist below a file, so deeper parents are free too
        return

    target = tree.path(path)
    if target.is_dir() and not target.is_symlink():
        below = WorkingTree(str(target)).iter_files()
        if any(f"{path}/{rel}" not in deleting for rel in below):
            raise PatchConflictError(path, "a directory is in the way")


def _plan_change(change: FileChange, tree: WorkingTree, deleting: Set[str]) -> _Planned:
    current = tree.lookup(change.path)

    if change.kind == ADDED:
        if current is not None:
            raise PatchConflictError(change.path, "file to add already exists")
        _check_room(change.path, tree, deleting)
        old = b""
    else:
        if current is None:
            raise PatchConflictError(change.path, "file to change is missing")
        if change.old_mode is not None and current.mode != change.old_mode:
            raise PatchConflictError(
                change.path, f"mode is {current.mode:06o}, expected {change.old_mode:06o}"
            )
        old = tree.read(change.path)
        if change.old_digest is not None and digest_bytes(old) != change.old_digest:
            raise PatchConflictError(change.path, "content does not match the baseline")

    if change.kind == DELETED:
        if change.hunks:
            # Deletions without a digest are verified by their hunks
            apply_hunks(change.path, old, change.hunks)
        return _Planned(path=change.path, data=None)

    if change.binary:
        data = change.literal if change.literal is not None else old
    elif change.hunks:
        data = apply_hunks(change.path, old, change.hunks)
    else:
        # Mode-only change, content untouched
        data = old

    if change.new_digest is not None and digest_bytes(data) != change.new_digest:
        raise PatchConflictError(change.path, "patched content does not match the recorded result")

    mode = change.new_mode if change.new_mode is not None else (current.mode if current else None)
    return _Planned(path=change.path, data=data, mode=mode)


def apply_difference(difference: SourceDifference, tree: WorkingTree) -> List[str]:
    """
    Apply a difference on top of a tree.

    All deletions run before any write, so a file may turn into a
    directory of the same name and back. Written files get a fresh
    modification time so build tools see them as changed. Directories
    left empty by deletions are removed.

    Args:
        difference: Difference computed against the tree's current baseline
        tree: Tree to patch

    Returns:
        Paths touched, in difference order

    Raises:
        PatchConflictError: If any change does not match the tree; nothing
            is written in that case
        ReconciliationError: If writing fails after every change was
            verified; the tree is left partially patched
    """
    deleting = {change.path for change in difference if change.kind == DELETED}
    try:
        plan = [_plan_change(change, tree, deleting) for change in difference]
    except PermissionError as e:
        raise PatchConflictError("<tree>", str(e)) from e
    except OSError as e:
        raise PatchConflictError(getattr(e, "filename", None) or "<tree>", str(e)) from e

    deletions = [item for item in plan if item.data is None]
    writes = [item for item in plan if item.data is not None]
    item = None
    try:
        for item in deletions:
            tree.remove(item.path)
            tree.prune_empty_parents(item.path)
            logger.debug(f"deleted {item.path}")
        for item in writes:
            tree.write(item.path, item.data, mode=item.mode if item.mode is not None else MODE_FILE)
            logger.debug(f"patched {item.path}")
    except OSError as e:
        raise ReconciliationError(f"Patching {item.path} failed, {tree.root} is incomplete: {e}") from e

    return [item.path for item in plan]
