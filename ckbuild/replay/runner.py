"""
Replay runner: position a working tree on a checkpoint before a build.

Protocol (strictly sequential):
1. Compute the difference between the artifact's sources and the tree
2. Persist it inside the tree, then clear everything else
3. Restore the artifact's outputs
4. Re-apply the persisted difference
5. Hand the tree back to the build

An interrupted replay leaves the tree inconsistent; rerun from a clean
tree instead of resuming.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..checkpoint.model import CheckpointArtifact
from ..config import Settings
from ..core.errors import ReconciliationError
from ..core.tree import WorkingTree
from ..diff.apply import apply_difference
from ..diff.compute import compute_difference
from ..diff.model import SourceDifference
from ..logging_config import get_logger
from ..metrics import record_replay, track_duration


@dataclass(frozen=True)
class ReplayResult:
    """
    Result of a replay.

    Fields:
        artifact: Name of the artifact replayed
        difference: Source difference re-applied on top of the outputs
        restored: Files written from the outputs snapshot
        preserved: Files of the outputs snapshot already in place
        patched: Paths touched by the difference
    """
    artifact: str
    difference: SourceDifference
    restored: int
    preserved: int
    patched: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact": self.artifact,
            "changes": self.difference.summary(),
            "restored": self.restored,
            "preserved": self.preserved,
            "patched": list(self.patched),
        }


def write_difference(tree: WorkingTree, name: str, difference: SourceDifference) -> str:
    """Write a serialized difference into the tree root and fsync it."""
    path = tree.path(name)
    with open(path, "wb") as f:
        f.write(difference.to_bytes())
        f.flush()
        os.fsync(f.fileno())
    return str(path)


def read_difference(tree: WorkingTree, name: str, strip: int = 1) -> SourceDifference:
    return SourceDifference.from_bytes(tree.read(name), strip=strip)


def replay(
    artifact: CheckpointArtifact,
    tree: WorkingTree,
    settings: Optional[Settings] = None,
) -> ReplayResult:
    """
    Replay an artifact's outputs under the current sources of a tree.

    Args:
        artifact: Checkpoint artifact (only read)
        tree: Working tree after source preparation
        settings: Runtime settings (default: from environment)

    Returns:
        ReplayResult

    Raises:
        DiffComputationError: If the difference cannot be computed
        ReconciliationError: If the tree cannot be cleared or the outputs
            snapshot cannot be restored
        PatchConflictError: If the difference does not apply to the
            restored tree; the difference file is left in place
    """
    settings = settings or Settings.from_env()
    logger = get_logger(__name__, trace_id=artifact.name)
    name = settings.diff_name

    with track_duration("replay"):
        if tree.lookup(name) is not None:
            raise ReconciliationError(f"{name} already exists in {tree.root}; start from a clean tree")

        logger.info(f"Computing source difference against {artifact.name}")
        with track_duration("diff"):
            difference = compute_difference(
                artifact.sources, tree, context=settings.diff_context, exclude=[name]
            )
        summary = difference.summary()
        logger.info(
            f"Source difference: {summary['added']} added, {summary['modified']} modified, "
            f"{summary['deleted']} deleted"
        )

        try:
            empty_dirs = tree.iter_empty_dirs(exclude=[name])
            diff_path = write_difference(tree, name, difference)
            removed = tree.clear(keep=[name])
        except OSError as e:
            raise ReconciliationError(f"Cannot prepare {tree.root} for restore: {e}") from e
        logger.info(f"Cleared {removed} entries, difference kept at {diff_path}")

        stats = artifact.outputs.restore_into(tree, exclude=[name], workers=settings.copy_workers)
        logger.info(f"Restored outputs: {stats.restored} written, {stats.preserved} already in place")

        try:
            persisted = read_difference(tree, name, strip=settings.patch_strip)
        except OSError as e:
            raise ReconciliationError(f"Persisted difference is unreadable: {e}") from e
        patched = apply_difference(persisted, tree)
        try:
            # Empty directories carry no content for the difference to hold
            for rel in empty_dirs:
                tree.make_dir(rel)
            tree.remove(name)
        except OSError as e:
            raise ReconciliationError(f"Cannot finish replay in {tree.root}: {e}") from e
        logger.info(f"Applied difference to {len(patched)} paths")

    record_replay(stats.restored, stats.preserved, len(patched))
    return ReplayResult(
        artifact=artifact.name,
        difference=difference,
        restored=stats.restored,
        preserved=stats.preserved,
        patched=patched,
    )
