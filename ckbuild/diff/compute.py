"""
Source difference computation.

Compares a snapshot with a working tree and records every change needed
to turn the snapshot into the tree. The result only depends on the two
inputs: identical inputs give byte-identical serialized differences.
"""

import difflib
import logging
from typing import Iterable, List, Optional, Tuple

from ..core.errors import DiffComputationError
from ..core.hashing import ZERO_DIGEST, digest_bytes
from ..core.tree import WorkingTree
from .model import ADDED, DELETED, MODIFIED, FileChange, Hunk, SourceDifference, split_lines

logger = logging.getLogger(__name__)


def is_binary(data: Optional[bytes]) -> bool:
    """Content is binary if it has a NUL byte or is not valid UTF-8."""
    if data is None:
        return False
    if b"\0" in data:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


def make_hunks(old: List[str], new: List[str], context: int = 3) -> Tuple[Hunk, ...]:
    """
    Group line differences into unified hunks.

    Same grouping as difflib.unified_diff, kept as structured hunks so
    the serializer controls the exact text.
    """
    if old == new:
        return ()

    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)
    hunks = []
    for group in matcher.get_grouped_opcodes(context):
        first, last = group[0], group[-1]
        old_count = last[2] - first[1]
        new_count = last[4] - first[3]

        lines = []
        for tag, i1, i2, j1, j2 in group:
            if tag == "equal":
                lines.extend((" ", text) for text in old[i1:i2])
                continue
            if tag in ("replace", "delete"):
                lines.extend(("-", text) for text in old[i1:i2])
            if tag in ("replace", "insert"):
                lines.extend(("+", text) for text in new[j1:j2])

        hunks.append(
            Hunk(
                old_start=first[1] + 1 if old_count else first[1],
                old_count=old_count,
                new_start=first[3] + 1 if new_count else first[3],
                new_count=new_count,
                lines=tuple(lines),
            )
        )
    return tuple(hunks)


def diff_file(
    path: str,
    old: Optional[bytes],
    new: Optional[bytes],
    old_mode: Optional[int],
    new_mode: Optional[int],
    context: int = 3,
) -> FileChange:
    """
    Describe the change of one path.

    Args:
        old: Baseline content, None if the path is absent from the baseline
        new: Current content, None if the path is absent from the tree
    """
    if old is None:
        kind = ADDED
    elif new is None:
        kind = DELETED
    else:
        kind = MODIFIED

    old_digest = digest_bytes(old) if old is not None else ZERO_DIGEST
    new_digest = digest_bytes(new) if new is not None else ZERO_DIGEST

    binary = old != new and (is_binary(old) or is_binary(new))
    hunks: Tuple[Hunk, ...] = ()
    literal = None
    if binary:
        literal = new
    elif old != new:
        hunks = make_hunks(
            [line.decode("utf-8") for line in split_lines(old or b"")],
            [line.decode("utf-8") for line in split_lines(new or b"")],
            context,
        )

    return FileChange(
        path=path,
        kind=kind,
        old_mode=old_mode if kind != ADDED else None,
        new_mode=new_mode if kind != DELETED else None,
        old_digest=old_digest,
        new_digest=new_digest,
        hunks=hunks,
        binary=binary,
        literal=literal,
    )


def compute_difference(
    baseline,
    tree: WorkingTree,
    context: int = 3,
    exclude: Iterable[str] = (),
) -> SourceDifference:
    """
    Compute the difference that turns a snapshot into the tree.

    Args:
        baseline: Snapshot the difference is relative to (sources snapshot)
        tree: Current working tree
        context: Unchanged lines kept around each hunk
        exclude: Relative paths ignored on both sides

    Returns:
        SourceDifference (empty when both sides are identical)

    Raises:
        DiffComputationError: If either side cannot be read or a path cannot
            be represented
    """
    skip = set(exclude)
    if not tree.exists():
        raise DiffComputationError(f"Working tree does not exist: {tree.root}")

    try:
        old_entries = {e.path: e for e in baseline.entries() if e.path not in skip}
        new_entries = {p: tree.entry(p) for p in tree.iter_files(exclude=skip)}
    except OSError as e:
        raise DiffComputationError(f"Cannot list files for difference: {e}") from e

    changes = []
    for path in sorted(set(old_entries) | set(new_entries)):
        if "\n" in path:
            raise DiffComputationError(f"File name with newline cannot be represented: {path!r}")

        old_entry = old_entries.get(path)
        new_entry = new_entries.get(path)
        try:
            old = baseline.read(path) if old_entry is not None else None
            new = tree.read(path) if new_entry is not None else None
        except OSError as e:
            raise DiffComputationError(f"Cannot read {path}: {e}") from e

        old_mode = old_entry.mode if old_entry is not None else None
        new_mode = new_entry.mode if new_entry is not None else None
        if old == new and old_mode == new_mode:
            continue

        change = diff_file(path, old, new, old_mode, new_mode, context)
        logger.debug(f"{change.kind}: {path}")
        changes.append(change)

    return SourceDifference(changes=tuple(changes))
