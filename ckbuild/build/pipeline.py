"""
Build pipeline with checkpoint hooks.

The compile step itself is opaque: a shell command or a Python callable
run inside the working tree. Checkpointing only inserts steps at three
points of the pipeline:

    prepare -> pre_build hooks -> build -> post_build hooks -> install

- prepare_checkpoint_build: sources capture appended to pre_build, install
  replaced by the outputs capture
- make_checkpoint_build: replay appended to pre_build
"""

import logging
import os
import subprocess
import warnings
from typing import Callable, Dict, List, Optional, Sequence, Union

from ..checkpoint.capture import CaptureTarget, SnapshotCapture
from ..checkpoint.model import CheckpointArtifact
from ..config import Settings
from ..core.errors import BuildCommandError
from ..core.tree import WorkingTree
from ..metrics import track_duration
from ..replay.runner import ReplayResult, replay

logger = logging.getLogger(__name__)

Hook = Callable[[WorkingTree], None]
Step = Union[None, str, Sequence[str], Hook]


def run_command(phase: str, command: Union[str, Sequence[str]], tree: WorkingTree, env: Optional[Dict[str, str]] = None) -> None:
    """
    Run an external build command inside the tree.

    Strings run through the shell, sequences run directly.

    Raises:
        BuildCommandError: If the command cannot start or exits non-zero
    """
    shell = isinstance(command, str)
    display = command if shell else " ".join(command)
    merged_env = dict(os.environ)
    merged_env.update(env or {})

    logger.info(f"Running {phase}: {display}")
    try:
        result = subprocess.run(command, shell=shell, cwd=str(tree.root), env=merged_env)
    except FileNotFoundError as e:
        raise BuildCommandError(phase, 127, display) from e
    if result.returncode != 0:
        raise BuildCommandError(phase, result.returncode, display)


class BuildPipeline:
    """
    A build of one working tree.

    Attributes:
        pre_build: Hooks run after prepare, before build
        post_build: Hooks run after build, before install
        on_failure: Hooks run (in order) when any step raises
    """

    def __init__(
        self,
        tree: WorkingTree,
        prepare: Step = None,
        build: Step = None,
        install: Step = None,
        env: Optional[Dict[str, str]] = None,
    ):
        self.tree = tree
        self.prepare = prepare
        self.build = build
        self.install = install
        self.env = dict(env or {})
        self.pre_build: List[Hook] = []
        self.post_build: List[Hook] = []
        self.on_failure: List[Callable[[], None]] = []

    def run_step(self, phase: str, step: Step) -> None:
        if step is None:
            return
        if callable(step):
            logger.info(f"Running {phase} hook {getattr(step, '__name__', step)}")
            step(self.tree)
        else:
            run_command(phase, step, self.tree, self.env)

    def run(self) -> None:
        """
        Run every phase in order.

        Raises:
            BuildCommandError: If an external command fails
            CheckpointBuildError: If a checkpoint hook fails
        """
        try:
            self.run_step("prepare", self.prepare)
            for hook in self.pre_build:
                self.run_step("pre_build", hook)
            with track_duration("build"):
                self.run_step("build", self.build)
            for hook in self.post_build:
                self.run_step("post_build", hook)
            self.run_step("install", self.install)
        except Exception:
            for cleanup in self.on_failure:
                cleanup()
            raise


def prepare_checkpoint_build(
    pipeline: BuildPipeline,
    target: CaptureTarget,
    settings: Optional[Settings] = None,
) -> SnapshotCapture:
    """
    Turn a pipeline into one that produces a checkpoint artifact.

    The sources snapshot runs after any existing pre_build hooks, so
    patches applied there are part of the baseline. The install phase is
    replaced by the outputs snapshot, wrapped by the capture's
    pre_checkpoint_install and post_checkpoint_install hooks.

    Returns:
        The SnapshotCapture; its artifact attribute is set once the
        pipeline has run
    """
    capture = SnapshotCapture(target, settings)

    def capture_sources(tree: WorkingTree) -> None:
        capture.capture_sources(tree)

    def checkpoint_install(tree: WorkingTree) -> None:
        for hook in capture.pre_checkpoint_install:
            hook(tree)
        capture.capture_outputs(tree)
        for hook in capture.post_checkpoint_install:
            hook(tree)

    pipeline.pre_build.append(capture_sources)
    pipeline.install = checkpoint_install
    pipeline.on_failure.append(capture.abort)
    return capture


class ReplayHook:
    """pre_build hook running the replay protocol; keeps the last result."""

    def __init__(self, artifact: CheckpointArtifact, settings: Optional[Settings] = None):
        self.artifact = artifact
        self.settings = settings
        self.result: Optional[ReplayResult] = None
        self.__name__ = f"replay[{artifact.name}]"

    def __call__(self, tree: WorkingTree) -> None:
        self.result = replay(self.artifact, tree, self.settings)


def make_checkpoint_build(
    pipeline: BuildPipeline,
    artifact: CheckpointArtifact,
    settings: Optional[Settings] = None,
) -> ReplayHook:
    """
    Turn a pipeline into an incremental build on top of an artifact.

    The replay runs after existing pre_build hooks and right before the
    build step, which is otherwise unchanged.
    """
    hook = ReplayHook(artifact, settings)
    pipeline.pre_build.append(hook)
    return hook


def make_checkpointed_build(
    pipeline: BuildPipeline,
    artifact: CheckpointArtifact,
    settings: Optional[Settings] = None,
) -> ReplayHook:
    """Deprecated alias of make_checkpoint_build."""
    warnings.warn(
        "make_checkpointed_build is deprecated, use make_checkpoint_build instead",
        DeprecationWarning,
        stacklevel=2,
    )
    return make_checkpoint_build(pipeline, artifact, settings)
