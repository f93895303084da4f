"""
Build command: incremental build on top of a checkpoint artifact
"""

import json
import os
from pathlib import Path
from typing import Optional

import typer

from ckbuild.build import BuildPipeline, make_checkpoint_build, prepare_checkpoint_build, run_command
from ckbuild.checkpoint import ArtifactStore, DirectoryTarget, StoreTarget
from ckbuild.core import CheckpointBuildError, WorkingTree

from ._common import console, fail, flush_metrics, init_settings, open_artifact


def build_command(
    tree_path: str = typer.Option(".", "--tree", "-t", help="Build root"),
    artifact_ref: str = typer.Option(..., "--artifact", "-a", help="Artifact directory, or name with --store"),
    store_dir: Optional[str] = typer.Option(None, "--store", help="Artifact store directory"),
    prepare: Optional[str] = typer.Option(None, "--prepare", help="Source preparation command"),
    build: str = typer.Option(..., "--build", "-b", help="Build command"),
    install: Optional[str] = typer.Option(None, "--install", help="Install command"),
    capture_to: Optional[str] = typer.Option(
        None,
        "--capture-to",
        help="Also capture this build as a new artifact (directory, or name with --store)",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Replay an artifact, then run the build.

    Examples:
        ckbuild build --tree linux --artifact /ckpt/linux --build "make -j8"
        ckbuild build --tree linux --store /ckpt --artifact linux-6.8 --build "make -j8" --capture-to linux-6.9
    """
    settings = init_settings()
    store_dir = store_dir or settings.store_dir
    tree = WorkingTree(tree_path)

    if capture_to:
        # The replay clears the tree, which would take the new artifact with it
        destination = Path(os.path.abspath(store_dir or capture_to))
        root = Path(os.path.abspath(tree.root))
        if destination == root or root in destination.parents:
            fail(json_output, f"Capture destination {destination} is inside the build root {root}", 2)

    try:
        artifact = open_artifact(artifact_ref, store_dir)
        pipeline = BuildPipeline(tree, prepare=prepare, build=build, install=install)

        capture = None
        if capture_to:
            # The new baseline is the prepared sources, taken before the replay
            target = StoreTarget(ArtifactStore(store_dir), capture_to) if store_dir else DirectoryTarget(capture_to)
            capture = prepare_checkpoint_build(pipeline, target, settings)
            if install:
                capture.post_checkpoint_install.append(lambda t: run_command("install", install, t, pipeline.env))
        hook = make_checkpoint_build(pipeline, artifact, settings)

        pipeline.run()
    except (CheckpointBuildError, ValueError) as e:
        flush_metrics(settings)
        fail(json_output, str(e), 1)
    flush_metrics(settings)

    result = hook.result
    if json_output:
        out = {"success": True, **result.to_dict()}
        if capture is not None:
            out["captured"] = capture.artifact.name
        print(json.dumps(out, indent=2))
    else:
        summary = result.difference.summary()
        console.print(f"[green]✓ Incremental build on {result.artifact} finished[/green]")
        console.print(
            f"  Changes: {summary['added']} added, {summary['modified']} modified, {summary['deleted']} deleted"
        )
        console.print(f"  Restored: {result.restored} files")
        if capture is not None:
            console.print(f"  New artifact: [cyan]{capture.artifact.name}[/cyan]")
