"""
Capture command: run a build and record a checkpoint artifact
"""

import json
from typing import Optional

import typer

from ckbuild.build import BuildPipeline, prepare_checkpoint_build, run_command
from ckbuild.checkpoint import ArtifactStore, DirectoryTarget, StoreTarget
from ckbuild.core import CheckpointBuildError, WorkingTree

from ._common import console, fail, flush_metrics, init_settings


def capture_command(
    tree_path: str = typer.Option(".", "--tree", "-t", help="Build root"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Directory artifact to create"),
    store_dir: Optional[str] = typer.Option(None, "--store", help="Artifact store directory"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Artifact name in the store"),
    prepare: Optional[str] = typer.Option(None, "--prepare", help="Source preparation command"),
    build: str = typer.Option(..., "--build", "-b", help="Build command"),
    install: Optional[str] = typer.Option(None, "--install", help="Install command, run after the outputs snapshot"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Build and capture sources/outputs snapshots.

    Examples:
        ckbuild capture --tree linux --build "make -j8" --out /ckpt/linux
        ckbuild capture --tree linux --build "make -j8" --store /ckpt --name linux-6.8
    """
    settings = init_settings()
    store_dir = store_dir or settings.store_dir

    if out:
        target = DirectoryTarget(out)
    elif store_dir and name:
        try:
            target = StoreTarget(ArtifactStore(store_dir), name)
        except ValueError as e:
            fail(json_output, str(e), 2)
    else:
        fail(json_output, "Give --out, or --store with --name", 2)

    tree = WorkingTree(tree_path)
    pipeline = BuildPipeline(tree, prepare=prepare, build=build)
    capture = prepare_checkpoint_build(pipeline, target, settings)
    if install:
        capture.post_checkpoint_install.append(lambda t: run_command("install", install, t, pipeline.env))

    try:
        pipeline.run()
    except (CheckpointBuildError, ValueError) as e:
        flush_metrics(settings)
        fail(json_output, str(e), 1)
    flush_metrics(settings)

    artifact = capture.artifact
    if json_output:
        print(json.dumps({"success": True, "artifact": artifact.name, "location": artifact.location}, indent=2))
    else:
        console.print("[green]✓ Checkpoint artifact captured[/green]")
        console.print(f"  Artifact: [cyan]{artifact.name}[/cyan]")
        console.print(f"  Location: {artifact.location}")
        console.print(f"  Sources: {len(artifact.sources.entries())} files")
        console.print(f"  Outputs: {len(artifact.outputs.entries())} files")
